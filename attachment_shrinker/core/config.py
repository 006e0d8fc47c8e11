"""Application configuration handling."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from attachment_shrinker.core.errors import ConfigurationError

ENV_PREFIX = "ASHR_"
DEFAULT_CONFIG_PATH = Path("~/.config/attachment-shrinker/config.yaml")
BYTES_PER_MB = 1024 * 1024

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("kintone", "base_url"): "base_url",
    ("kintone", "api_token"): "api_token",
    ("kintone", "app_id"): "app_id",
    ("kintone", "attachment_fields"): "attachment_fields",
    ("kintone", "created_at_field"): "created_at_field",
    ("kintone", "request_timeout"): "request_timeout",
    ("compression", "max_file_size_mb"): "max_file_size_mb",
    ("compression", "target_quality"): "target_quality",
    ("compression", "batch_size"): "batch_size",
    ("retention", "enabled"): "enable_delete_old_images",
    ("retention", "months"): "retention_months",
    ("quota", "max_api_calls"): "max_api_calls",
    ("quota", "pause_seconds"): "rate_limit_pause",
    ("resume", "last_processed_id"): "last_processed_id",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file, environment and CLI overrides."""

    base_url: str = Field(min_length=1)
    api_token: str = Field(min_length=1)
    app_id: str = Field(min_length=1)
    attachment_fields: list[str] = Field(min_length=1)
    max_file_size_mb: float = Field(default=1.0, gt=0)
    target_quality: int = Field(default=80, ge=1, le=100)
    retention_months: int = Field(default=12, ge=0)
    enable_delete_old_images: bool = False
    max_api_calls: int = Field(default=10_000, ge=0)
    batch_size: int | None = Field(default=None, ge=0)
    last_processed_id: str | None = None
    created_at_field: str = "作成日時"
    rate_limit_pause: float = Field(default=0.2, ge=0)
    request_timeout: float = Field(default=60.0, gt=0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("attachment_fields", mode="before")
    @classmethod
    def _split_fields(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("app_id", "api_token", "last_processed_id", mode="before")
    @classmethod
    def _stringify_numbers(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("batch_size", "last_processed_id", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("last_processed_id")
    @classmethod
    def _numeric_watermark(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value.isdigit():
            raise ValueError("last_processed_id must be a numeric record id")
        return value

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_file_size_mb * BYTES_PER_MB)

    @classmethod
    def load(cls, path: Path | None = None, overrides: Mapping[str, Any] | None = None) -> "Settings":
        """Merge YAML, ``ASHR_*`` env vars and explicit overrides, in that order."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path is not None:
            if not config_path.exists():
                raise ConfigurationError(f"Config file not found: {config_path}")
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            if not isinstance(raw, Mapping):
                raise ConfigurationError(f"Config file {config_path} must contain a mapping")
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        if overrides:
            data.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(_describe_errors(exc)) from exc

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with ASHR_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "settings"
        if error["type"] == "missing":
            parts.append(f"{location} is required (set {ENV_PREFIX}{location.upper()})")
        else:
            parts.append(f"{location}: {error['msg']}")
    return "Invalid configuration: " + "; ".join(parts)


__all__ = ["BYTES_PER_MB", "ENV_PREFIX", "Settings"]

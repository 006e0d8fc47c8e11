"""Phase result data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

from attachment_shrinker.imaging.compressor import CompressionOutcome


@dataclass(slots=True)
class DeleteResult:
    """Outcome of pruning image attachments from one record."""

    record_id: str
    deleted_file_names: list[str] = field(default_factory=list)
    kept_file_names: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def to_dict(self) -> dict[str, object]:
        return {
            "record_id": self.record_id,
            "deleted_file_names": list(self.deleted_file_names),
            "kept_file_names": list(self.kept_file_names),
            "error": self.error,
        }


@dataclass(slots=True)
class ProcessResult:
    """Outcome of compressing the oversized images of one record."""

    record_id: str
    files: list[CompressionOutcome] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "record_id": self.record_id,
            "files": [outcome.to_dict() for outcome in self.files],
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class RetentionSummary:
    cutoff_date: str
    results: list[DeleteResult] = field(default_factory=list)
    stopped_by_api_limit: bool = False

    @property
    def deleted_count(self) -> int:
        return sum(len(r.deleted_file_names) for r in self.results)

    @property
    def error_count(self) -> int:
        return sum(len(r.errors) for r in self.results)

    def to_dict(self) -> dict[str, object]:
        return {
            "cutoff_date": self.cutoff_date,
            "records": len(self.results),
            "deleted": self.deleted_count,
            "errors": self.error_count,
            "stopped_by_api_limit": self.stopped_by_api_limit,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(slots=True)
class CompressionSummary:
    results: list[ProcessResult] = field(default_factory=list)
    records_scanned: int = 0
    max_processed_id: str | None = None
    stopped_by_api_limit: bool = False
    stopped_by_batch_limit: bool = False
    abandoned: ProcessResult | None = None

    @property
    def compressed_count(self) -> int:
        return sum(len(r.files) for r in self.results)

    @property
    def best_effort_count(self) -> int:
        return sum(1 for r in self.results for outcome in r.files if outcome.best_effort)

    @property
    def bytes_saved(self) -> int:
        return sum(outcome.saved_bytes for r in self.results for outcome in r.files)

    @property
    def error_count(self) -> int:
        count = sum(len(r.errors) for r in self.results)
        if self.abandoned is not None:
            count += len(self.abandoned.errors)
        return count

    def to_dict(self) -> dict[str, object]:
        return {
            "records_scanned": self.records_scanned,
            "records": len(self.results),
            "compressed": self.compressed_count,
            "best_effort": self.best_effort_count,
            "bytes_saved": self.bytes_saved,
            "errors": self.error_count,
            "max_processed_id": self.max_processed_id,
            "stopped_by_api_limit": self.stopped_by_api_limit,
            "stopped_by_batch_limit": self.stopped_by_batch_limit,
            "results": [r.to_dict() for r in self.results],
            "abandoned": self.abandoned.to_dict() if self.abandoned is not None else None,
        }


__all__ = [
    "CompressionSummary",
    "DeleteResult",
    "ProcessResult",
    "RetentionSummary",
]

"""CLI tests."""

from __future__ import annotations

import logging
from pathlib import Path

import orjson
import pytest
from PIL import Image
from typer.testing import CliRunner

from attachment_shrinker.cli import main
from conftest import StubEngine

BIG = b"x" * 2_000_000

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ASHR_BASE_URL", "https://example.cybozu.com")
    monkeypatch.setenv("ASHR_API_TOKEN", "secret")
    monkeypatch.setenv("ASHR_APP_ID", "42")
    monkeypatch.setenv("ASHR_ATTACHMENT_FIELDS", "photos")
    monkeypatch.setenv("ASHR_RATE_LIMIT_PAUSE", "0")


@pytest.fixture
def patched_store(monkeypatch: pytest.MonkeyPatch, store):
    real = main.Orchestrator

    def _factory(settings, metrics=None):
        return real(settings, store=store, engine=StubEngine(), sleep=lambda _: None, metrics=metrics)

    monkeypatch.setattr(main, "Orchestrator", _factory)
    return store


def test_missing_configuration_exits_2() -> None:
    result = runner.invoke(main.app, ["run", "--plain-logs"])
    assert result.exit_code == 2


def test_run_prints_watermark_and_writes_outputs(env, patched_store, tmp_path: Path) -> None:
    patched_store.add_record(1, {"photos": [("a.png", BIG)]})
    patched_store.add_record(2, {"photos": [("b.jpg", b"small")]})
    watermark = tmp_path / "watermark.txt"
    report = tmp_path / "report.json"
    metrics = tmp_path / "metrics" / "ashr.prom"

    result = runner.invoke(
        main.app,
        [
            "run",
            "--plain-logs",
            "--watermark-file",
            str(watermark),
            "--report-file",
            str(report),
            "--metrics-file",
            str(metrics),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "LAST_PROCESSED_ID=2" in result.stdout.splitlines()
    assert watermark.read_text(encoding="utf-8").strip() == "2"
    payload = orjson.loads(report.read_text(encoding="utf-8"))
    assert payload["compression"]["compressed"] == 1
    assert payload["api_calls_used"] == 4
    assert "ashr_files_compressed_total 1.0" in metrics.read_text(encoding="utf-8")


def test_cli_overrides_settings(env, patched_store) -> None:
    patched_store.add_record(5, {"docs": [("a.png", BIG)]})
    patched_store.add_record(9, {"docs": [("b.png", BIG)]})

    result = runner.invoke(
        main.app,
        ["run", "--plain-logs", "--field", "docs", "--last-processed-id", "5"],
    )

    assert result.exit_code == 0, result.output
    assert "LAST_PROCESSED_ID=9" in result.stdout.splitlines()
    assert patched_store.field_names(5, "docs") == ["a.png"]
    assert patched_store.field_names(9, "docs") == ["b.jpg"]


def test_accumulated_errors_exit_1(env, patched_store) -> None:
    patched_store.add_record(1, {"photos": [("broken.png", BIG)]})

    result = runner.invoke(main.app, ["run", "--plain-logs"])

    assert result.exit_code == 1


def test_fatal_store_error_exits_1(env, patched_store) -> None:
    patched_store.fail_query_on_call = 1

    result = runner.invoke(main.app, ["run", "--plain-logs"])

    assert result.exit_code == 1
    assert "LAST_PROCESSED_ID" not in result.stdout


def test_compress_file_writes_jpeg(tmp_path: Path, noise_image) -> None:
    source = tmp_path / "scan.png"
    data = noise_image(300, 300)
    source.write_bytes(data)
    budget_mb = (len(data) - 1) / (1024 * 1024)

    result = runner.invoke(main.app, ["compress-file", str(source), "--max-size-mb", str(budget_mb)])

    assert result.exit_code == 0, result.output
    payload = orjson.loads(result.stdout)
    assert payload["compressed"] is True
    assert payload["new_name"] == "scan.jpg"
    output = tmp_path / "scan-compressed.jpg"
    with Image.open(output) as decoded:
        assert decoded.format == "JPEG"


def test_compress_file_under_budget(tmp_path: Path, noise_image) -> None:
    source = tmp_path / "tiny.png"
    source.write_bytes(noise_image(16, 16))

    result = runner.invoke(main.app, ["compress-file", str(source)])

    assert result.exit_code == 0
    assert orjson.loads(result.stdout) == {"compressed": False, "size_bytes": source.stat().st_size}
    assert result.stdout.startswith('{\n  "compressed": false')

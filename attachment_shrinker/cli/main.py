"""CLI entrypoint for the attachment shrinker batch."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import orjson
import typer

from attachment_shrinker.core.config import BYTES_PER_MB, Settings
from attachment_shrinker.core.errors import ConfigurationError, ImageProcessingError, ShrinkerError
from attachment_shrinker.core.logging import configure_logging, get_logger
from attachment_shrinker.core.metrics import RunMetrics
from attachment_shrinker.imaging.compressor import compress_to_budget
from attachment_shrinker.pipeline.orchestrator import Orchestrator, RunReport

app = typer.Typer(name="ashr", help="Shrink oversized image attachments in a kintone app")

logger = get_logger("attachment_shrinker.cli")

WATERMARK_KEY = "LAST_PROCESSED_ID"


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    field: Optional[List[str]] = typer.Option(None, "--field", help="Attachment field code (repeatable)"),
    max_size_mb: Optional[float] = typer.Option(None, "--max-size-mb", help="Compress images larger than this"),
    quality: Optional[int] = typer.Option(None, "--quality", help="Starting JPEG quality"),
    max_api_calls: Optional[int] = typer.Option(None, "--max-api-calls", help="API call quota for this run"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Max records to compress (0 = no limit)"),
    last_processed_id: Optional[str] = typer.Option(None, "--last-processed-id", help="Resume after this record id"),
    delete_old_images: Optional[bool] = typer.Option(
        None, "--delete-old-images/--no-delete-old-images", help="Prune images from aged records first"
    ),
    retention_months: Optional[int] = typer.Option(None, "--retention-months", help="Retention window in months"),
    watermark_file: Optional[Path] = typer.Option(None, "--watermark-file", help="Write the next watermark here"),
    report_file: Optional[Path] = typer.Option(None, "--report-file", help="Write the run report as JSON"),
    metrics_file: Optional[Path] = typer.Option(None, "--metrics-file", help="Write Prometheus textfile metrics"),
    plain_logs: bool = typer.Option(False, "--plain-logs", help="Human-readable logs instead of JSON"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override ASHR_LOG_LEVEL"),
) -> None:
    """Run retention pruning (if enabled) and the compression pass."""
    if log_level:
        configure_logging(level=log_level.upper(), use_json=not plain_logs)
    else:
        configure_logging(use_json=not plain_logs)

    overrides = {
        "attachment_fields": list(field) if field else None,
        "max_file_size_mb": max_size_mb,
        "target_quality": quality,
        "max_api_calls": max_api_calls,
        "batch_size": batch_size,
        "last_processed_id": last_processed_id,
        "enable_delete_old_images": delete_old_images,
        "retention_months": retention_months,
    }
    try:
        settings = Settings.load(config, overrides)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2)

    metrics = RunMetrics()
    try:
        report = Orchestrator(settings, metrics=metrics).run()
    except ShrinkerError as exc:
        logger.exception("Fatal error, batch aborted: %s", exc)
        _write_metrics(metrics, metrics_file)
        raise typer.Exit(code=1)

    _write_metrics(metrics, metrics_file)
    _emit_report(report, watermark_file, report_file)
    raise typer.Exit(code=report.exit_code)


@app.command("compress-file")
def compress_file(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Local image file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination JPEG path"),
    max_size_mb: float = typer.Option(1.0, "--max-size-mb", help="Byte budget in MB"),
    quality: int = typer.Option(80, "--quality", min=1, max=100, help="Starting JPEG quality"),
) -> None:
    """Compress one local file with the same ladder the batch uses."""
    data = source.read_bytes()
    try:
        compressed = compress_to_budget(data, source.name, int(max_size_mb * BYTES_PER_MB), quality)
    except ImageProcessingError as exc:
        typer.echo(f"Compression failed: {exc}", err=True)
        raise typer.Exit(code=1)

    if compressed is None:
        typer.echo(_dump_json({"compressed": False, "size_bytes": len(data)}))
        return

    target = output or source.with_name(f"{source.stem}-compressed.jpg")
    target.write_bytes(compressed.data)
    payload = {"compressed": True, "output": str(target), **compressed.outcome.to_dict()}
    typer.echo(_dump_json(payload))


def _emit_report(report: RunReport, watermark_file: Path | None, report_file: Path | None) -> None:
    for message in report.errors():
        logger.error("%s", message)
    if report.last_processed_id is not None:
        typer.echo(f"{WATERMARK_KEY}={report.last_processed_id}")
        if watermark_file is not None:
            watermark_file.write_text(f"{report.last_processed_id}\n", encoding="utf-8")
    if report_file is not None:
        report_file.write_bytes(orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2))


def _dump_json(payload: dict[str, object]) -> str:
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8")


def _write_metrics(metrics: RunMetrics, metrics_file: Path | None) -> None:
    if metrics_file is not None:
        metrics.write(metrics_file)


if __name__ == "__main__":
    app()

"""Compression phase: replace oversized image attachments with smaller JPEGs."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from attachment_shrinker.core.errors import (
    ConfigurationError,
    ImageProcessingError,
    QuotaExhaustedError,
    RecordStoreError,
)
from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.core.metrics import RunMetrics
from attachment_shrinker.imaging.compressor import CompressionEngine, CompressionOutcome
from attachment_shrinker.pipeline.types import CompressionSummary, ProcessResult
from attachment_shrinker.store.client import RecordStoreClient
from attachment_shrinker.store.kintone import ID_FIELD
from attachment_shrinker.store.paginator import CursorPaginator
from attachment_shrinker.store.types import Attachment, FileRef, Record
from attachment_shrinker.utils.text import format_size

logger = get_logger(__name__)

# download + upload + update
CALLS_PER_FILE = 3


@dataclass(slots=True)
class _FieldPlan:
    refs: list[FileRef] = field(default_factory=list)
    outcomes: list[CompressionOutcome] = field(default_factory=list)


class _RecordAbandoned(Exception):
    def __init__(self, result: ProcessResult) -> None:
        super().__init__(result.record_id)
        self.result = result


class CompressionPass:
    """Walk records in id order and shrink every oversized image attachment.

    Records are handled one at a time. A record's field updates are issued
    only once all of its files are done and enough quota remains for every
    update, so a record is either fully written or left untouched. The
    highest visited id is reported as the next run's watermark.
    """

    def __init__(
        self,
        client: RecordStoreClient,
        paginator: CursorPaginator,
        engine: CompressionEngine,
        fields: Sequence[str],
        max_size_bytes: int,
        start_quality: int,
        batch_size: int | None = None,
        last_processed_id: str | None = None,
        pause_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        metrics: RunMetrics | None = None,
    ) -> None:
        if last_processed_id is not None and not last_processed_id.isdigit():
            raise ConfigurationError(f"Resume watermark must be numeric: {last_processed_id!r}")
        self.client = client
        self.paginator = paginator
        self.engine = engine
        self.fields = list(fields)
        self.max_size_bytes = max_size_bytes
        self.start_quality = start_quality
        self.batch_size = batch_size or None
        self.last_processed_id = last_processed_id
        self.pause_seconds = pause_seconds
        self.sleep = sleep
        self.metrics = metrics

    def run(self) -> CompressionSummary:
        summary = CompressionSummary()
        quota = self.client.quota
        logger.info(
            "Compression started: fields=%s threshold=%s quality=%s resume_after=%s",
            ",".join(self.fields),
            format_size(self.max_size_bytes),
            self.start_quality,
            self.last_processed_id or "-",
        )

        condition = f'{ID_FIELD} > "{self.last_processed_id}"' if self.last_processed_id else None
        try:
            for record in self.paginator.iter_records(condition, self.fields):
                if not self.needs_compression(record):
                    self._advance(summary, record)
                    continue
                if self.batch_size is not None and len(summary.results) >= self.batch_size:
                    logger.info("Batch size %s reached, stopping", self.batch_size)
                    summary.stopped_by_batch_limit = True
                    break
                if not quota.has_capacity(CALLS_PER_FILE):
                    logger.warning(
                        "API call limit reached, stopping compression (%s/%s)",
                        quota.consumed,
                        quota.ceiling,
                    )
                    summary.stopped_by_api_limit = True
                    break
                try:
                    result = self._process_record(record)
                except _RecordAbandoned as abandoned:
                    summary.abandoned = abandoned.result
                    logger.warning(
                        "API call limit reached inside record #%s; record left unchanged (%s/%s)",
                        record.id,
                        quota.consumed,
                        quota.ceiling,
                        extra={"ctx_record_id": record.id},
                    )
                    summary.stopped_by_api_limit = True
                    break
                summary.results.append(result)
                self._advance(summary, record)
        except QuotaExhaustedError as exc:
            logger.warning("Compression stopped while listing records: %s", exc)
            summary.stopped_by_api_limit = True

        self._log_summary(summary)
        return summary

    def needs_compression(self, record: Record) -> bool:
        return any(self._is_target(f) for name in self.fields for f in record.files(name))

    def _is_target(self, attachment: Attachment) -> bool:
        return attachment.is_image and attachment.is_oversized(self.max_size_bytes)

    def _process_record(self, record: Record) -> ProcessResult:
        result = ProcessResult(record_id=record.id)
        pending: dict[str, _FieldPlan] = {}

        for field_name in self.fields:
            plan = _FieldPlan()
            for attachment in record.files(field_name):
                if not self._is_target(attachment):
                    plan.refs.append(FileRef(attachment.key))
                    result.skipped += 1
                    continue
                replaced = self._compress_attachment(record, attachment, result)
                if replaced is None:
                    plan.refs.append(FileRef(attachment.key))
                    continue
                new_key, outcome = replaced
                plan.refs.append(FileRef(new_key))
                plan.outcomes.append(outcome)
            if plan.outcomes:
                pending[field_name] = plan

        if not pending:
            return result
        if not self.client.quota.has_capacity(len(pending)):
            raise _RecordAbandoned(result)

        for field_name, plan in pending.items():
            try:
                self.client.update_field(record.id, field_name, plan.refs)
            except RecordStoreError as exc:
                result.errors.append(f"update of {field_name} failed: {exc}")
                logger.error(
                    "Record #%s: update of %s failed - %s",
                    record.id,
                    field_name,
                    exc,
                    extra={"ctx_record_id": record.id},
                )
                self._count_error()
                continue
            result.files.extend(plan.outcomes)
            if self.metrics is not None:
                self.metrics.files_compressed.inc(len(plan.outcomes))
                self.metrics.bytes_saved.inc(sum(max(0, o.saved_bytes) for o in plan.outcomes))
            logger.info("Record #%s: %s updated", record.id, field_name, extra={"ctx_record_id": record.id})

        self.sleep(self.pause_seconds)
        return result

    def _compress_attachment(
        self,
        record: Record,
        attachment: Attachment,
        result: ProcessResult,
    ) -> tuple[str, CompressionOutcome] | None:
        logger.info(
            "Record #%s: compressing %s (%s)",
            record.id,
            attachment.name,
            format_size(attachment.size_bytes),
            extra={"ctx_record_id": record.id},
        )
        try:
            data = self.client.download_attachment(attachment.key)
            started = time.perf_counter()
            compressed = self.engine.compress(data, attachment.name, self.max_size_bytes, self.start_quality)
            if self.metrics is not None:
                self.metrics.compression_seconds.observe(time.perf_counter() - started)
            if compressed is None:
                logger.info("Record #%s: %s needs no compression", record.id, attachment.name)
                result.skipped += 1
                return None
            new_key = self.client.upload_attachment(compressed.outcome.new_name, compressed.data)
        except QuotaExhaustedError as exc:
            raise _RecordAbandoned(result) from exc
        except (RecordStoreError, ImageProcessingError) as exc:
            result.errors.append(f"{attachment.name}: {exc}")
            logger.error(
                "Record #%s: %s failed - %s",
                record.id,
                attachment.name,
                exc,
                extra={"ctx_record_id": record.id},
            )
            self._count_error()
            return None

        outcome = compressed.outcome
        if outcome.best_effort:
            logger.warning(
                "Record #%s: %s still above threshold after every step (%s)",
                record.id,
                outcome.new_name,
                format_size(outcome.compressed_size_bytes),
            )
        else:
            logger.info(
                "Record #%s: -> %s (%s)",
                record.id,
                outcome.new_name,
                format_size(outcome.compressed_size_bytes),
            )
        return new_key, outcome

    def _advance(self, summary: CompressionSummary, record: Record) -> None:
        summary.records_scanned += 1
        current = summary.max_processed_id
        if current is None or record.numeric_id > int(current):
            summary.max_processed_id = record.id
            if self.metrics is not None:
                self.metrics.last_processed_id.set(record.numeric_id)

    def _count_error(self) -> None:
        if self.metrics is not None:
            self.metrics.errors.labels(phase="compression").inc()

    def _log_summary(self, summary: CompressionSummary) -> None:
        logger.info(
            "Compression finished: %s records scanned, %s records processed, %s files compressed "
            "(%s best effort), %s saved, %s errors%s",
            summary.records_scanned,
            len(summary.results),
            summary.compressed_count,
            summary.best_effort_count,
            format_size(summary.bytes_saved),
            summary.error_count,
            " (stopped by API limit)" if summary.stopped_by_api_limit else "",
        )


__all__ = ["CALLS_PER_FILE", "CompressionPass"]

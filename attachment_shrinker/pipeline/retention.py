"""Retention phase: drop image attachments from aged records."""

from __future__ import annotations

import time
from datetime import date
from typing import Callable, Sequence

from attachment_shrinker.core.errors import QuotaExhaustedError, RecordStoreError
from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.core.metrics import RunMetrics
from attachment_shrinker.pipeline.types import DeleteResult, RetentionSummary
from attachment_shrinker.store.client import RecordStoreClient
from attachment_shrinker.store.paginator import CursorPaginator
from attachment_shrinker.store.types import FileRef, Record
from attachment_shrinker.utils.text import join_names
from attachment_shrinker.utils.time import cutoff_date

logger = get_logger(__name__)

DEFAULT_CREATED_AT_FIELD = "作成日時"


class RetentionPruner:
    """Remove image attachments from records created before the cutoff.

    Non-image attachments are always written back unchanged. Each field update
    needs one call of quota; when none is left the phase stops and reports it
    so the compression phase is skipped for this run.
    """

    def __init__(
        self,
        client: RecordStoreClient,
        paginator: CursorPaginator,
        fields: Sequence[str],
        retention_months: int,
        created_at_field: str = DEFAULT_CREATED_AT_FIELD,
        pause_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        today: date | None = None,
        metrics: RunMetrics | None = None,
    ) -> None:
        self.client = client
        self.paginator = paginator
        self.fields = list(fields)
        self.retention_months = retention_months
        self.created_at_field = created_at_field
        self.pause_seconds = pause_seconds
        self.sleep = sleep
        self.today = today
        self.metrics = metrics

    def run(self) -> RetentionSummary:
        cutoff = cutoff_date(self.retention_months, self.today)
        summary = RetentionSummary(cutoff_date=cutoff)
        logger.info(
            "Retention pruning started: %s months, records created before %s",
            self.retention_months,
            cutoff,
        )

        condition = f'{self.created_at_field} < "{cutoff}"'
        try:
            for record in self.paginator.iter_records(condition, self.fields):
                if not self._prune_record(record, summary):
                    summary.stopped_by_api_limit = True
                    break
        except QuotaExhaustedError as exc:
            logger.warning("Retention pruning stopped while listing records: %s", exc)
            summary.stopped_by_api_limit = True

        self._log_summary(summary)
        return summary

    def _prune_record(self, record: Record, summary: RetentionSummary) -> bool:
        """Return False when the quota ran out before all fields were handled."""
        result = DeleteResult(record_id=record.id)
        modified = False
        completed = True

        for field_name in self.fields:
            files = record.files(field_name)
            images = [f for f in files if f.is_image]
            if not images:
                continue
            kept = [f for f in files if not f.is_image]
            if not self.client.quota.has_capacity(1):
                logger.warning(
                    "API call limit reached, stopping retention pruning (%s/%s)",
                    self.client.quota.consumed,
                    self.client.quota.ceiling,
                )
                completed = False
                break

            try:
                self.client.update_field(record.id, field_name, [FileRef(f.key) for f in kept])
            except RecordStoreError as exc:
                result.errors.append(f"{field_name}: {exc}")
                logger.error(
                    "Record #%s: failed to delete images from %s - %s",
                    record.id,
                    field_name,
                    exc,
                    extra={"ctx_record_id": record.id},
                )
                if self.metrics is not None:
                    self.metrics.errors.labels(phase="retention").inc()
                continue

            modified = True
            result.deleted_file_names.extend(f.name for f in images)
            result.kept_file_names.extend(f.name for f in kept)
            if self.metrics is not None:
                self.metrics.images_deleted.inc(len(images))
            logger.info(
                "Record #%s: deleted %s (kept %s)",
                record.id,
                join_names([f.name for f in images]),
                join_names([f.name for f in kept]),
                extra={"ctx_record_id": record.id},
            )

        if result.deleted_file_names or result.errors:
            summary.results.append(result)
        if modified and completed:
            self.sleep(self.pause_seconds)
        return completed

    def _log_summary(self, summary: RetentionSummary) -> None:
        logger.info(
            "Retention pruning finished: %s records, %s images deleted, %s errors%s",
            len(summary.results),
            summary.deleted_count,
            summary.error_count,
            " (stopped by API limit)" if summary.stopped_by_api_limit else "",
        )


__all__ = ["DEFAULT_CREATED_AT_FIELD", "RetentionPruner"]

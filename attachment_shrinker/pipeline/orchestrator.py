"""Run the retention and compression phases against one shared quota."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Callable

from attachment_shrinker.core.config import Settings
from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.core.metrics import RunMetrics
from attachment_shrinker.imaging.compressor import CompressionEngine
from attachment_shrinker.pipeline.compression import CompressionPass
from attachment_shrinker.pipeline.retention import RetentionPruner
from attachment_shrinker.pipeline.types import CompressionSummary, RetentionSummary
from attachment_shrinker.store.client import RecordStoreClient
from attachment_shrinker.store.kintone import KintoneRecordStore, RecordStore
from attachment_shrinker.store.paginator import CursorPaginator
from attachment_shrinker.store.quota import QuotaTracker

logger = get_logger(__name__)


@dataclass(slots=True)
class RunReport:
    retention: RetentionSummary | None
    compression: CompressionSummary | None
    api_calls_used: int
    api_call_limit: int
    stopped_by_api_limit: bool
    last_processed_id: str | None

    @property
    def error_count(self) -> int:
        count = 0
        if self.retention is not None:
            count += self.retention.error_count
        if self.compression is not None:
            count += self.compression.error_count
        return count

    @property
    def exit_code(self) -> int:
        """Non-zero only for accumulated failures; running out of quota is not one."""
        return 1 if self.error_count else 0

    def errors(self) -> list[str]:
        messages: list[str] = []
        if self.retention is not None:
            for result in self.retention.results:
                messages.extend(f"retention record #{result.record_id}: {e}" for e in result.errors)
        if self.compression is not None:
            results = list(self.compression.results)
            if self.compression.abandoned is not None:
                results.append(self.compression.abandoned)
            for result in results:
                messages.extend(f"compression record #{result.record_id}: {e}" for e in result.errors)
        return messages

    def to_dict(self) -> dict[str, object]:
        return {
            "retention": self.retention.to_dict() if self.retention is not None else None,
            "compression": self.compression.to_dict() if self.compression is not None else None,
            "api_calls_used": self.api_calls_used,
            "api_call_limit": self.api_call_limit,
            "stopped_by_api_limit": self.stopped_by_api_limit,
            "last_processed_id": self.last_processed_id,
            "error_count": self.error_count,
        }


class Orchestrator:
    """Build the per-run collaborators and drive both phases in order."""

    def __init__(
        self,
        settings: Settings,
        store: RecordStore | None = None,
        engine: CompressionEngine | None = None,
        sleep: Callable[[float], None] = time.sleep,
        metrics: RunMetrics | None = None,
        today: date | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.engine = engine or CompressionEngine()
        self.sleep = sleep
        self.metrics = metrics
        self.today = today

    def run(self) -> RunReport:
        settings = self.settings
        owned_store: KintoneRecordStore | None = None
        store = self.store
        if store is None:
            owned_store = KintoneRecordStore(
                settings.base_url,
                settings.api_token,
                settings.app_id,
                timeout=settings.request_timeout,
            )
            store = owned_store

        quota = QuotaTracker(settings.max_api_calls)
        client = RecordStoreClient(store, quota, self.metrics)
        logger.info(
            "Batch started: app=%s fields=%s api_limit=%s",
            settings.app_id,
            ",".join(settings.attachment_fields),
            settings.max_api_calls,
        )
        retention: RetentionSummary | None = None
        compression: CompressionSummary | None = None
        try:
            if settings.enable_delete_old_images:
                retention = RetentionPruner(
                    client,
                    CursorPaginator(client),
                    settings.attachment_fields,
                    settings.retention_months,
                    created_at_field=settings.created_at_field,
                    pause_seconds=settings.rate_limit_pause,
                    sleep=self.sleep,
                    today=self.today,
                    metrics=self.metrics,
                ).run()

            if retention is not None and retention.stopped_by_api_limit:
                logger.warning("API call limit reached during retention pruning; compression skipped")
            else:
                compression = CompressionPass(
                    client,
                    CursorPaginator(client),
                    self.engine,
                    settings.attachment_fields,
                    settings.max_size_bytes,
                    settings.target_quality,
                    batch_size=settings.batch_size,
                    last_processed_id=settings.last_processed_id,
                    pause_seconds=settings.rate_limit_pause,
                    sleep=self.sleep,
                    metrics=self.metrics,
                ).run()
        finally:
            if owned_store is not None:
                owned_store.close()

        stopped = bool(
            (retention is not None and retention.stopped_by_api_limit)
            or (compression is not None and compression.stopped_by_api_limit)
        )
        watermark = settings.last_processed_id
        if compression is not None and compression.max_processed_id is not None:
            watermark = compression.max_processed_id

        report = RunReport(
            retention=retention,
            compression=compression,
            api_calls_used=quota.consumed,
            api_call_limit=quota.ceiling,
            stopped_by_api_limit=stopped,
            last_processed_id=watermark,
        )
        logger.info(
            "Batch finished: %s/%s API calls, %s errors%s",
            report.api_calls_used,
            report.api_call_limit,
            report.error_count,
            " (stopped by API limit, resumable)" if stopped else "",
        )
        return report


__all__ = ["Orchestrator", "RunReport"]

"""Quota-counting facade over a record store."""

from __future__ import annotations

from typing import Sequence

from attachment_shrinker.core.errors import QuotaExhaustedError
from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.core.metrics import RunMetrics
from attachment_shrinker.store.kintone import RecordStore
from attachment_shrinker.store.quota import QuotaTracker
from attachment_shrinker.store.types import FileRef, Record

logger = get_logger(__name__)


class RecordStoreClient:
    """Issue record store calls, charging each one to the shared quota.

    A call that would exceed the ceiling is never sent; ``QuotaExhaustedError``
    is raised instead. A call that is sent counts once even if it then fails.
    """

    def __init__(self, store: RecordStore, quota: QuotaTracker, metrics: RunMetrics | None = None) -> None:
        self.store = store
        self.quota = quota
        self.metrics = metrics

    def query_records(self, query: str, fields: Sequence[str]) -> list[Record]:
        self._charge("query")
        return self.store.query_records(query, fields)

    def download_attachment(self, key: str) -> bytes:
        self._charge("download")
        return self.store.download_attachment(key)

    def upload_attachment(self, name: str, data: bytes) -> str:
        self._charge("upload")
        return self.store.upload_attachment(name, data)

    def update_field(self, record_id: str, field_name: str, refs: Sequence[FileRef]) -> None:
        self._charge("update")
        self.store.update_field(record_id, field_name, list(refs))

    def _charge(self, operation: str) -> None:
        if not self.quota.has_capacity(1):
            logger.debug("Refusing %s call: %r", operation, self.quota)
            raise QuotaExhaustedError(self.quota.consumed, self.quota.ceiling)
        self.quota.increment()
        if self.metrics is not None:
            self.metrics.remote_calls.labels(operation=operation).inc()


__all__ = ["RecordStoreClient"]

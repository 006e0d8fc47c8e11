"""Identifier-cursor pagination over the record store."""

from __future__ import annotations

from typing import Iterator, Sequence

from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.store.client import RecordStoreClient
from attachment_shrinker.store.kintone import ID_FIELD
from attachment_shrinker.store.types import Record

logger = get_logger(__name__)

PAGE_SIZE = 500


def build_page_query(last_seen_id: str, condition: str | None, page_size: int = PAGE_SIZE) -> str:
    id_condition = f'{ID_FIELD} > "{last_seen_id}"'
    where = f"{id_condition} and ({condition})" if condition else id_condition
    return f"{where} order by {ID_FIELD} asc limit {page_size}"


class CursorPaginator:
    """Enumerate every matching record in ascending id order.

    The cursor is anchored on the last id of the previous page rather than a
    numeric offset, so the store's offset ceiling never applies.
    """

    def __init__(self, client: RecordStoreClient, page_size: int = PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.client = client
        self.page_size = page_size
        self.last_seen_id = "0"
        self.pages_fetched = 0

    def iter_records(self, condition: str | None, fields: Sequence[str]) -> Iterator[Record]:
        fields_with_id = list(fields) if ID_FIELD in fields else [ID_FIELD, *fields]
        self.last_seen_id = "0"
        self.pages_fetched = 0
        while True:
            query = build_page_query(self.last_seen_id, condition, self.page_size)
            page = self.client.query_records(query, fields_with_id)
            self.pages_fetched += 1
            logger.debug("Fetched page %s with %s records", self.pages_fetched, len(page))
            yield from page
            if len(page) < self.page_size:
                return
            self.last_seen_id = page[-1].id

    def fetch_all(self, condition: str | None, fields: Sequence[str]) -> list[Record]:
        return list(self.iter_records(condition, fields))


__all__ = ["PAGE_SIZE", "CursorPaginator", "build_page_query"]

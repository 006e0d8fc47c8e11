"""kintone REST adapter implementing the record store contract."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, Sequence

import requests

from attachment_shrinker.core.errors import RecordStoreError
from attachment_shrinker.core.logging import get_logger
from attachment_shrinker.store.types import Attachment, FileRef, Record

logger = get_logger(__name__)

ID_FIELD = "$id"
DEFAULT_TIMEOUT = 60.0


class RecordStore(Protocol):
    """Remote record store operations the pipeline depends on."""

    def query_records(self, query: str, fields: Sequence[str]) -> list[Record]: ...

    def download_attachment(self, key: str) -> bytes: ...

    def upload_attachment(self, name: str, data: bytes) -> str: ...

    def update_field(self, record_id: str, field_name: str, refs: Sequence[FileRef]) -> None: ...


class KintoneRecordStore:
    """Talk to one kintone app through its REST API using an API token."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        app_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.timeout = timeout
        self._api_token = api_token
        self._session = session or requests.Session()

    def query_records(self, query: str, fields: Sequence[str]) -> list[Record]:
        params: list[tuple[str, str]] = [("app", self.app_id), ("query", query)]
        params.extend(("fields[]", name) for name in fields)
        resp = self._request("GET", "/k/v1/records.json", "get records", params=params)
        payload = _json(resp, "get records")
        rows = payload.get("records")
        if not isinstance(rows, list):
            raise RecordStoreError("Malformed records response: 'records' is not a list")
        attachment_fields = [name for name in fields if name != ID_FIELD]
        return [parse_record(row, attachment_fields) for row in rows]

    def download_attachment(self, key: str) -> bytes:
        resp = self._request("GET", "/k/v1/file.json", "download file", params={"fileKey": key})
        return resp.content

    def upload_attachment(self, name: str, data: bytes) -> str:
        resp = self._request(
            "POST",
            "/k/v1/file.json",
            "upload file",
            files={"file": (name, data)},
        )
        payload = _json(resp, "upload file")
        file_key = payload.get("fileKey")
        if not isinstance(file_key, str) or not file_key:
            raise RecordStoreError("Malformed upload response: missing fileKey")
        return file_key

    def update_field(self, record_id: str, field_name: str, refs: Sequence[FileRef]) -> None:
        body = {
            "app": self.app_id,
            "id": record_id,
            "record": {field_name: {"value": [ref.to_payload() for ref in refs]}},
        }
        self._request("PUT", "/k/v1/record.json", "update record", json=body)

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, action: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        headers = {"X-Cybozu-API-Token": self._api_token}
        try:
            resp = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RecordStoreError(f"Failed to {action}: {exc}") from exc
        if not resp.ok:
            logger.debug("kintone %s %s -> %s", method, path, resp.status_code)
            raise RecordStoreError(
                f"Failed to {action}: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp


def parse_record(row: Mapping[str, Any], attachment_fields: Iterable[str]) -> Record:
    """Validate one wire record; absent attachment fields become empty lists."""
    record_id = _field_value(row, ID_FIELD)
    if not isinstance(record_id, str) or not record_id.isdigit():
        raise RecordStoreError(f"Malformed record id: {record_id!r}")
    by_field: dict[str, list[Attachment]] = {}
    for name in attachment_fields:
        value = _field_value(row, name)
        if value is None:
            by_field[name] = []
            continue
        if not isinstance(value, list):
            raise RecordStoreError(f"Field {name} of record {record_id} is not a file field")
        by_field[name] = [parse_attachment(item, record_id) for item in value]
    return Record(id=record_id, attachments_by_field=by_field)


def parse_attachment(item: Any, record_id: str = "?") -> Attachment:
    if not isinstance(item, Mapping):
        raise RecordStoreError(f"Malformed file entry in record {record_id}")
    key = item.get("fileKey")
    name = item.get("name")
    raw_size = item.get("size")
    if not isinstance(key, str) or not isinstance(name, str):
        raise RecordStoreError(f"File entry in record {record_id} lacks fileKey or name")
    try:
        size = int(raw_size)
    except (TypeError, ValueError) as exc:
        raise RecordStoreError(f"Invalid size {raw_size!r} for {name} in record {record_id}") from exc
    if size < 0:
        raise RecordStoreError(f"Negative size for {name} in record {record_id}")
    content_type = item.get("contentType")
    return Attachment(
        key=key,
        name=name,
        size_bytes=size,
        content_type=content_type if isinstance(content_type, str) else None,
    )


def _field_value(row: Mapping[str, Any], name: str) -> Any:
    field = row.get(name)
    if not isinstance(field, Mapping):
        return None
    return field.get("value")


def _json(resp: requests.Response, action: str) -> dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError as exc:
        raise RecordStoreError(f"Failed to {action}: response is not JSON") from exc
    if not isinstance(payload, dict):
        raise RecordStoreError(f"Failed to {action}: unexpected response shape")
    return payload


__all__ = ["ID_FIELD", "KintoneRecordStore", "RecordStore", "parse_attachment", "parse_record"]

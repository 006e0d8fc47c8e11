"""Test fixtures for the attachment shrinker."""

from __future__ import annotations

import io
import os
import random
import re
import sys
from datetime import date
from pathlib import Path
from typing import Callable, Sequence

import pytest
from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from attachment_shrinker.core.errors import ImageProcessingError, RecordStoreError  # noqa: E402
from attachment_shrinker.imaging.compressor import (  # noqa: E402
    CompressedImage,
    CompressionOutcome,
    to_jpeg_name,
)
from attachment_shrinker.store.types import Attachment, FileRef, Record  # noqa: E402

_ID_BOUND_RE = re.compile(r'\$id > "(\d+)"')
_LIMIT_RE = re.compile(r"limit (\d+)")
_CREATED_RE = re.compile(r'(\S+) < "(\d{4}-\d{2}-\d{2})"')


class FakeRecordStore:
    """In-memory record store that understands the paginator's query text."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, list[Attachment]]] = {}
        self.created: dict[str, date] = {}
        self.blobs: dict[str, bytes] = {}
        self.attachments: dict[str, Attachment] = {}
        self.queries: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.updates: list[tuple[str, str, list[str]]] = []
        self.fail_downloads: set[str] = set()
        self.fail_uploads: set[str] = set()
        self.fail_updates: set[tuple[str, str]] = set()
        self.fail_query_on_call: int | None = None
        self._upload_seq = 0

    def add_record(
        self,
        record_id: int | str,
        files: dict[str, list[tuple[str, bytes]]] | None = None,
        created: date | None = None,
    ) -> None:
        rid = str(record_id)
        by_field: dict[str, list[Attachment]] = {}
        for field_name, items in (files or {}).items():
            by_field[field_name] = []
            for index, (name, data) in enumerate(items):
                key = f"k{rid}-{field_name}-{index}"
                attachment = Attachment(key=key, name=name, size_bytes=len(data))
                self.blobs[key] = data
                self.attachments[key] = attachment
                by_field[field_name].append(attachment)
        self.records[rid] = by_field
        self.created[rid] = created or date(2024, 1, 1)

    def field_names(self, record_id: int | str, field_name: str) -> list[str]:
        return [a.name for a in self.records[str(record_id)].get(field_name, [])]

    # RecordStore protocol -------------------------------------------

    def query_records(self, query: str, fields: Sequence[str]) -> list[Record]:
        self.queries.append(query)
        self.calls.append(("query", query))
        if self.fail_query_on_call is not None and len(self.queries) >= self.fail_query_on_call:
            raise RecordStoreError("Failed to get records: 500 boom", status_code=500)
        bound = max((int(m) for m in _ID_BOUND_RE.findall(query)), default=0)
        limit_match = _LIMIT_RE.search(query)
        limit = int(limit_match.group(1)) if limit_match else 500
        created_match = _CREATED_RE.search(query)
        cutoff = date.fromisoformat(created_match.group(2)) if created_match else None

        matches = []
        for rid in sorted(self.records, key=int):
            if int(rid) <= bound:
                continue
            if cutoff is not None and not self.created[rid] < cutoff:
                continue
            wanted = {name: list(self.records[rid].get(name, [])) for name in fields if name != "$id"}
            matches.append(Record(id=rid, attachments_by_field=wanted))
        return matches[:limit]

    def download_attachment(self, key: str) -> bytes:
        self.calls.append(("download", key))
        if key in self.fail_downloads:
            raise RecordStoreError(f"Failed to download file: 404 {key}", status_code=404)
        return self.blobs[key]

    def upload_attachment(self, name: str, data: bytes) -> str:
        self.calls.append(("upload", name))
        if name in self.fail_uploads:
            raise RecordStoreError("Failed to upload file: 413", status_code=413)
        self._upload_seq += 1
        key = f"up{self._upload_seq}"
        self.blobs[key] = data
        self.attachments[key] = Attachment(key=key, name=name, size_bytes=len(data))
        return key

    def update_field(self, record_id: str, field_name: str, refs: Sequence[FileRef]) -> None:
        self.calls.append(("update", f"{record_id}:{field_name}"))
        if (record_id, field_name) in self.fail_updates:
            raise RecordStoreError("Failed to update record: 409 revision conflict", status_code=409)
        keys = [ref.key for ref in refs]
        self.updates.append((record_id, field_name, keys))
        self.records[record_id][field_name] = [self.attachments[key] for key in keys]

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class StubEngine:
    """Deterministic stand-in for the codec-driven engine."""

    def __init__(self, output: bytes = b"jpeg-bytes", best_effort: bool = False) -> None:
        self.output = output
        self.best_effort = best_effort
        self.seen: list[str] = []

    def compress(self, data: bytes, file_name: str, max_size_bytes: int, start_quality: int):
        self.seen.append(file_name)
        if "broken" in file_name:
            raise ImageProcessingError("Cannot decode image: truncated")
        if "incompressible" in file_name:
            return None
        return CompressedImage(
            data=self.output,
            outcome=CompressionOutcome(
                original_size_bytes=len(data),
                compressed_size_bytes=len(self.output),
                original_name=file_name,
                new_name=to_jpeg_name(file_name),
                quality=start_quality,
                best_effort=self.best_effort,
            ),
        )


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate settings from the developer's environment and home config."""
    for key in list(os.environ):
        if key.startswith("ASHR_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def stub_engine() -> StubEngine:
    return StubEngine()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def record_sleep(sleeps: list[float]) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture(scope="session")
def noise_image() -> Callable[..., bytes]:
    """Return encoded random-noise images, which compress poorly and predictably."""

    def _make(width: int, height: int, fmt: str = "PNG", seed: int = 7, mode: str = "RGB") -> bytes:
        rng = random.Random(seed)
        channels = len(mode)
        image = Image.frombytes(mode, (width, height), rng.randbytes(width * height * channels))
        buffer = io.BytesIO()
        image.save(buffer, format=fmt)
        return buffer.getvalue()

    return _make

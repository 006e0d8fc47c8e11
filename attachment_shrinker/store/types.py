"""Record store data structures."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field

from attachment_shrinker.imaging.compressor import is_image_file


@dataclass(slots=True, frozen=True)
class Attachment:
    """A file attached to one field of one record."""

    key: str
    name: str
    size_bytes: int
    content_type: str | None = None

    @property
    def mime_hint(self) -> str:
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return is_image_file(self.name)

    def is_oversized(self, max_size_bytes: int) -> bool:
        return self.size_bytes > max_size_bytes


@dataclass(slots=True, frozen=True)
class FileRef:
    """Entry of a field update plan; the plan replaces the field's whole value."""

    key: str

    def to_payload(self) -> dict[str, str]:
        return {"fileKey": self.key}


@dataclass(slots=True)
class Record:
    id: str
    attachments_by_field: dict[str, list[Attachment]] = field(default_factory=dict)

    @property
    def numeric_id(self) -> int:
        return int(self.id)

    def files(self, field_name: str) -> list[Attachment]:
        return list(self.attachments_by_field.get(field_name, ()))


__all__ = ["Attachment", "FileRef", "Record"]

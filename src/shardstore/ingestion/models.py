"""Data models for stored objects."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel

from shardstore.formats import MediaFormat, extension_for


class MediaObject(BaseModel):
    """A content-addressed object held by the store.

    The storage path is never recorded; it is always derived from ``digest``.
    """

    digest: str
    format: MediaFormat = MediaFormat.IMAGE

    @property
    def extension(self) -> str:
        return extension_for(self.format)


class StoredObject(BaseModel):
    """Result of placing a temporary file into the store."""

    media: MediaObject
    path: Path
    created: bool


__all__ = ["MediaObject", "StoredObject"]

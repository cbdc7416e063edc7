"""Canonical media formats understood by the store."""

from __future__ import annotations

from enum import Enum


class MediaFormat(str, Enum):
    """Identifier for the canonical encoding of a stored object."""

    IMAGE = "IMAGE"


_EXTENSIONS = {MediaFormat.IMAGE: ".jpg"}
_CONTENT_TYPES = {MediaFormat.IMAGE: "image/jpeg"}


def coerce_format(value: MediaFormat | str) -> MediaFormat:
    """Return the MediaFormat named by ``value`` (case-insensitive).

    Raises:
        ValueError: If ``value`` does not name a known format.
    """
    if isinstance(value, MediaFormat):
        return value
    return MediaFormat(value.strip().upper())


def extension_for(value: MediaFormat | str) -> str:
    """Return the file extension for a format, or an empty string when unknown."""
    try:
        return _EXTENSIONS[coerce_format(value)]
    except ValueError:
        return ""


def content_type_for(value: MediaFormat | str) -> str:
    """Return the MIME type sent alongside a stored object."""
    try:
        return _CONTENT_TYPES[coerce_format(value)]
    except ValueError:
        return "application/octet-stream"


__all__ = ["MediaFormat", "coerce_format", "extension_for", "content_type_for"]

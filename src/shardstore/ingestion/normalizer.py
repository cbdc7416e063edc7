"""Conversion of uploaded images into the store's canonical JPEG encoding."""

from __future__ import annotations

import base64
import binascii
import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, ImageColor

from shardstore.config.models import NormalizationSettings
from shardstore.errors import IOFailure, UnsupportedFormat

from .detectors import TypeDetector

LOGGER = logging.getLogger(__name__)

CANONICAL_ENCODING = "JPEG"
_ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}
_ENCODING_ALIASES = {"jpg": "jpeg", "image/jpeg": "jpeg", "image/png": "png"}


def _has_transparency(img: Image.Image) -> bool:
    return img.mode in _ALPHA_MODES or "transparency" in img.info


def _normalize_encoding_name(value: str) -> str:
    lowered = value.strip().lower()
    return _ENCODING_ALIASES.get(lowered, lowered)


class ImageNormalizer:
    """Decode supported image encodings and re-encode them as canonical JPEG.

    Transparent images are flattened onto an opaque background colour first;
    the canonical format has no alpha channel.
    """

    def __init__(
        self,
        settings: Optional[NormalizationSettings] = None,
        *,
        detector: Optional[TypeDetector] = None,
    ) -> None:
        self.settings = settings or NormalizationSettings()
        self.detector = detector or TypeDetector()
        self._background = ImageColor.getrgb(self.settings.background)[:3]

    def normalize(self, source: bytes, declared_encoding: Optional[str] = None) -> bytes:
        """Return the canonical JPEG bytes for ``source``.

        Args:
            source: Raw bytes of the uploaded image.
            declared_encoding: Encoding reported by the caller; detected when omitted.

        Returns:
            bytes: JPEG data encoded at the configured quality.

        Raises:
            UnsupportedFormat: If the encoding is not accepted or decoding fails.
        """
        encoding = _normalize_encoding_name(declared_encoding or self.detector.detect(source))
        if encoding not in self.settings.accepted_encodings:
            raise UnsupportedFormat(f"Encoding not recognized for image: {encoding}")

        try:
            with Image.open(io.BytesIO(source), formats=[encoding.upper()]) as img:
                img.load()
                canvas = self._flatten(img)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise UnsupportedFormat(f"Unable to decode {encoding} image: {exc}") from exc

        buffer = io.BytesIO()
        canvas.save(buffer, format=CANONICAL_ENCODING, quality=self.settings.quality)
        return buffer.getvalue()

    def normalize_to_file(
        self,
        source: bytes,
        destination: Path,
        declared_encoding: Optional[str] = None,
    ) -> Path:
        """Write the canonical encoding of ``source`` to ``destination``.

        Nothing is left at ``destination`` when conversion or the write fails.

        Raises:
            UnsupportedFormat: If the image cannot be converted.
            IOFailure: If the output file cannot be written.
        """
        canonical = self.normalize(source, declared_encoding)
        destination = Path(destination)
        LOGGER.debug("Creating file: %s", destination)
        try:
            destination.write_bytes(canonical)
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise IOFailure(f"Unable to write {destination}: {exc}") from exc
        LOGGER.debug("Created image: %s", destination)
        return destination

    @staticmethod
    def decode_base64(payload: str) -> bytes:
        """Decode a base64 payload, accepting an optional ``data:`` URI prefix.

        Raises:
            UnsupportedFormat: If the payload is empty or not valid base64.
        """
        text = (payload or "").strip()
        if text.startswith("data:") and "," in text:
            text = text.split(",", 1)[1]
        if not text:
            raise UnsupportedFormat("Image payload is empty.")
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UnsupportedFormat(f"Error decoding base64: {exc}") from exc

    def _flatten(self, img: Image.Image) -> Image.Image:
        if not _has_transparency(img):
            return img.convert("RGB")
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, self._background + (255,))
        return Image.alpha_composite(background, rgba).convert("RGB")


__all__ = ["CANONICAL_ENCODING", "ImageNormalizer"]

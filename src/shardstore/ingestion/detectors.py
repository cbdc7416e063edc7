"""Encoding detection and content hashing utilities."""

from __future__ import annotations

import hashlib
import io
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from shardstore.errors import IOFailure, UnsupportedFormat

DEFAULT_CHUNK_SIZE = 8192


class TypeDetector:
    """Identify the self-reported encoding of an uploaded image."""

    def detect(self, data: bytes) -> str:
        """Return the lower-cased encoding name Pillow reports for ``data``.

        Raises:
            UnsupportedFormat: If the bytes are not a recognizable image.
        """
        if not data:
            raise UnsupportedFormat("Image payload is empty.")
        try:
            with Image.open(io.BytesIO(data)) as img:
                encoding = img.format
        except (UnidentifiedImageError, OSError) as exc:
            raise UnsupportedFormat(f"Encoding not recognized for image: {exc}") from exc
        if not encoding:
            raise UnsupportedFormat("Encoding not recognized for image.")
        return encoding.lower()


class HashComputer:
    """Compute content digests used as store keys."""

    def __init__(self, algorithm: str = "md5", chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """Validate the digest algorithm eagerly.

        Args:
            algorithm: Any name accepted by :func:`hashlib.new`.
            chunk_size: Number of bytes read per step when hashing files.

        Raises:
            ValueError: If the algorithm is unknown or the chunk size is not positive.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        hashlib.new(algorithm)
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    def compute(self, path: Path) -> str:
        """Return the hex digest of the file at ``path``, read in fixed-size chunks.

        Raises:
            IOFailure: If the file is missing or cannot be read.
        """
        digest = hashlib.new(self.algorithm)
        try:
            with Path(path).open("rb") as fh:
                for chunk in iter(lambda: fh.read(self.chunk_size), b""):
                    digest.update(chunk)
        except OSError as exc:
            raise IOFailure(f"Unable to hash {path}: {exc}") from exc
        return digest.hexdigest()

    def compute_bytes(self, data: bytes) -> str:
        """Return the hex digest of an in-memory buffer."""
        return hashlib.new(self.algorithm, data).hexdigest()

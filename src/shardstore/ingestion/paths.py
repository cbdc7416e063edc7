"""Sharded path derivation for content-addressed objects.

Objects live at ``{root}/{digest[0:2]}/{digest[2:4]}/{digest}{ext}``. The two
shard levels cap each directory at 256 entries per level no matter how large
the store grows. Existing stores depend on this layout, so it must not change.
"""

from __future__ import annotations

import string
from pathlib import Path

from shardstore.errors import InvalidDigest

MIN_DIGEST_LENGTH = 4
_HEX_DIGITS = frozenset(string.hexdigits)


def validate_digest(digest: str) -> str:
    """Return ``digest`` unchanged when it can be used as a store key.

    Raises:
        InvalidDigest: If the digest is shorter than four characters or not hex.
    """
    if len(digest) < MIN_DIGEST_LENGTH:
        raise InvalidDigest(f"Invalid hash length: {len(digest)}")
    if not _HEX_DIGITS.issuperset(digest):
        raise InvalidDigest(f"Digest must be hexadecimal: {digest!r}")
    return digest


class PathMapper:
    """Map digests to their shard directory and file name under a store root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser()

    def derive_path(self, digest: str, extension: str = "") -> tuple[Path, str]:
        """Return the ``(directory, filename)`` pair for ``digest``.

        ``extension`` may be a bare suffix (``".jpg"``) or any file name whose
        suffix should be reused (``"<digest>.jpg"``). No I/O is performed.

        Raises:
            InvalidDigest: If the digest cannot be used as a store key.
        """
        validate_digest(digest)
        directory = self.root / digest[0:2] / digest[2:4]
        return directory, digest + _suffix(extension)

    def full_path(self, digest: str, extension: str = "") -> Path:
        """Return the joined path for ``digest``."""
        directory, filename = self.derive_path(digest, extension)
        return directory / filename


def _suffix(extension: str) -> str:
    if not extension:
        return ""
    if extension.startswith(".") and extension.count(".") == 1:
        return extension
    return Path(extension).suffix

"""Content-addressed file store with idempotent, rename-based ingestion."""

from __future__ import annotations

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from shardstore.config.models import StoreSettings
from shardstore.errors import IOFailure, ObjectNotFound
from shardstore.formats import MediaFormat, coerce_format, extension_for

from .models import MediaObject, StoredObject
from .paths import PathMapper

LOGGER = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class IngestionStore:
    """Place normalized files at their content-addressed path.

    Correctness under concurrent ingestion of the same digest relies on the
    atomicity of ``rename`` within one filesystem; no locks are taken. The
    temporary directory must live on the same filesystem as the store root.
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        *,
        mapper: Optional[PathMapper] = None,
    ) -> None:
        self.settings = settings or StoreSettings()
        self.mapper = mapper or PathMapper(self.settings.root)
        self.temp_dir = Path(self.settings.temp_dir).expanduser()

    @property
    def root(self) -> Path:
        """Return the store root directory."""
        return self.mapper.root

    def ensure_directories(self) -> None:
        """Create the store root and temporary directory when missing.

        Raises:
            IOFailure: If either directory cannot be created.
        """
        for directory in (self.root, self.temp_dir):
            self._make_dir(directory)

    def temp_path(self, owner_id: str, extension: str = ".jpg") -> Path:
        """Return a fresh temporary file path for an upload owned by ``owner_id``."""
        self._make_dir(self.temp_dir)
        safe_owner = _UNSAFE_NAME_CHARS.sub("_", owner_id).strip("._") or "upload"
        return self.temp_dir / f"{safe_owner}-{uuid.uuid4().hex}{extension}"

    def ingest(
        self,
        temp_path: Path,
        digest: str,
        media_format: MediaFormat | str = MediaFormat.IMAGE,
    ) -> StoredObject:
        """Move ``temp_path`` to the canonical path for ``digest``.

        If the digest is already stored the temporary file is deleted instead.
        Either way, on success exactly one file exists at the canonical path and
        ``temp_path`` is gone.

        Args:
            temp_path: Normalized file awaiting ingestion.
            digest: Hex digest of the file contents.
            media_format: Canonical format of the file.

        Returns:
            StoredObject: Stored media, its path, and whether it was newly created.

        Raises:
            InvalidDigest: If ``digest`` cannot be used as a store key.
            IOFailure: If the move, directory creation, or delete fails.
        """
        temp_path = Path(temp_path)
        directory, filename = self.mapper.derive_path(digest, temp_path.suffix)
        target = directory / filename
        media = MediaObject(digest=digest, format=coerce_format(media_format))
        LOGGER.debug("New fully qualified path: %s", target)

        if not temp_path.is_file():
            raise IOFailure(f"Temporary file does not exist: {temp_path}")

        if target.exists():
            self._discard(temp_path)
            LOGGER.info("Digest %s already stored; discarded %s", digest, temp_path.name)
            return StoredObject(media=media, path=target, created=False)

        self._make_dir(directory)
        try:
            temp_path.rename(target)
        except FileExistsError:
            self._discard(temp_path)
            return StoredObject(media=media, path=target, created=False)
        except OSError as exc:
            raise IOFailure(f"Unable to move file to location: {directory} - {exc}") from exc

        LOGGER.info("Ingested %s", target)
        return StoredObject(media=media, path=target, created=True)

    def path_for(self, digest: str, media_format: MediaFormat | str = MediaFormat.IMAGE) -> Path:
        """Return the canonical path for ``digest`` without touching the filesystem."""
        return self.mapper.full_path(digest, extension_for(media_format))

    def exists(self, digest: str, media_format: MediaFormat | str = MediaFormat.IMAGE) -> bool:
        """Return True when a file is stored for ``digest``."""
        return self.path_for(digest, media_format).is_file()

    def locate(self, digest: str, media_format: MediaFormat | str = MediaFormat.IMAGE) -> Path:
        """Return the path of the stored file for ``digest``.

        Raises:
            InvalidDigest: If ``digest`` cannot be used as a store key.
            ObjectNotFound: If nothing is stored for the digest.
        """
        path = self.path_for(digest, media_format)
        LOGGER.debug("Resolved path: %s", path)
        if not path.is_file():
            raise ObjectNotFound(f"Specified image file does not exist: {path}")
        return path

    def read(self, digest: str, media_format: MediaFormat | str = MediaFormat.IMAGE) -> bytes:
        """Return the stored bytes for ``digest``.

        Raises:
            ObjectNotFound: If nothing is stored for the digest.
            IOFailure: If the file exists but cannot be read.
        """
        path = self.locate(digest, media_format)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise IOFailure(f"Error reading bytes from path {path}: {exc}") from exc

    def _make_dir(self, directory: Path) -> None:
        try:
            directory.mkdir(mode=self.settings.dir_permissions, parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"Unable to create directory {directory}: {exc}") from exc

    def _discard(self, temp_path: Path) -> None:
        try:
            temp_path.unlink()
        except OSError as exc:
            raise IOFailure(f"Unable to delete file {temp_path}: {exc}") from exc


__all__ = ["IngestionStore"]

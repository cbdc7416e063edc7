"""High-level ingestion pipeline orchestration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from shardstore.analysis.dispatcher import AnalysisDispatcher
from shardstore.analysis.models import AnalysisOutcome, AnalysisRequest
from shardstore.config.models import ShardStoreConfig
from shardstore.errors import IOFailure
from shardstore.formats import MediaFormat

from .detectors import HashComputer
from .normalizer import ImageNormalizer
from .store import IngestionStore

LOGGER = logging.getLogger(__name__)


class IngestionResult(BaseModel):
    """Outcome of ingesting one upload.

    Attributes:
        digest: Digest of the canonical bytes.
        format: Canonical format of the stored object.
        path: Canonical path of the stored object.
        created: False when identical content was already stored.
        outcomes: Analysis outcomes, one per dispatched endpoint.
        errors: Analysis failures; these never undo the ingest.
    """

    digest: str
    format: MediaFormat
    path: Path
    created: bool
    outcomes: List[AnalysisOutcome] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class IngestionPipeline:
    """Normalize, hash, store, and then dispatch uploads for analysis."""

    def __init__(
        self,
        normalizer: ImageNormalizer,
        hasher: HashComputer,
        store: IngestionStore,
        dispatcher: Optional[AnalysisDispatcher] = None,
    ) -> None:
        self.normalizer = normalizer
        self.hasher = hasher
        self.store = store
        self.dispatcher = dispatcher

    @classmethod
    def from_config(
        cls,
        config: ShardStoreConfig,
        *,
        analyze: bool = True,
        client: Optional[httpx.Client] = None,
    ) -> "IngestionPipeline":
        """Build a pipeline whose components are configured from ``config``.

        Args:
            config: Loaded shardstore configuration.
            analyze: Whether to attach an analysis dispatcher.
            client: Optional HTTP client shared with the dispatcher.
        """
        store = IngestionStore(config.store)
        store.ensure_directories()
        dispatcher = None
        if analyze and any(True for _ in config.analysis.endpoints()):
            dispatcher = AnalysisDispatcher(config.analysis, store, client=client)
        return cls(
            normalizer=ImageNormalizer(config.normalization),
            hasher=HashComputer(config.store.hash_algorithm, config.store.chunk_size),
            store=store,
            dispatcher=dispatcher,
        )

    def close(self) -> None:
        """Release the dispatcher's HTTP resources."""
        if self.dispatcher is not None:
            self.dispatcher.close()

    def ingest_base64(self, owner_id: str, payload: str) -> IngestionResult:
        """Ingest a base64-encoded image on behalf of ``owner_id``.

        Raises:
            ValueError: If ``owner_id`` is empty.
            UnsupportedFormat: If the payload is not a supported image.
            IOFailure: If the normalized file cannot be written, hashed, or stored.
        """
        self._require_owner(owner_id)
        return self.ingest_bytes(owner_id, self.normalizer.decode_base64(payload))

    def ingest_file(self, owner_id: str, path: Path) -> IngestionResult:
        """Ingest the image at ``path`` on behalf of ``owner_id``."""
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise IOFailure(f"Unable to read file {path}: {exc}") from exc
        return self.ingest_bytes(owner_id, data)

    def ingest_bytes(
        self,
        owner_id: str,
        data: bytes,
        declared_encoding: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest raw image bytes on behalf of ``owner_id``.

        The temporary file is either moved into the store or deleted; a failure
        in any stage before the move removes it. Analysis runs only after the
        object is stored and its failures are reported in the result.
        """
        self._require_owner(owner_id)
        temp_path = self.store.temp_path(owner_id)
        try:
            self.normalizer.normalize_to_file(data, temp_path, declared_encoding)
            digest = self.hasher.compute(temp_path)
            stored = self.store.ingest(temp_path, digest, MediaFormat.IMAGE)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        result = IngestionResult(
            digest=stored.media.digest,
            format=stored.media.format,
            path=stored.path,
            created=stored.created,
        )
        if self.dispatcher is not None:
            self._dispatch(owner_id, result)
        return result

    def _dispatch(self, owner_id: str, result: IngestionResult) -> None:
        request = AnalysisRequest(owner_id=owner_id, digest=result.digest, format=result.format)
        for outcome in self.dispatcher.dispatch_all(request):
            result.outcomes.append(outcome)
            if outcome.is_error:
                result.errors.append(f"{outcome.endpoint}: {outcome.detail}")
        if result.errors:
            LOGGER.warning(
                "Stored %s but %d analysis request(s) failed", result.digest, len(result.errors)
            )

    @staticmethod
    def _require_owner(owner_id: str) -> None:
        if not owner_id or not owner_id.strip():
            raise ValueError("Missing arguments: owner_id must not be empty.")


__all__ = ["IngestionPipeline", "IngestionResult"]

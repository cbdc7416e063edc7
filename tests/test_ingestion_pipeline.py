"""Tests covering the end-to-end ingestion pipeline."""

from __future__ import annotations

import base64
from pathlib import Path

import httpx
import pytest
from PIL import Image

from shardstore.analysis import AnalysisDispatcher
from shardstore.config import ShardStoreConfig
from shardstore.config.models import AnalysisSettings, EndpointSettings
from shardstore.errors import IOFailure, UnsupportedFormat
from shardstore.ingestion import (
    HashComputer,
    ImageNormalizer,
    IngestionPipeline,
    IngestionStore,
)


def _pipeline(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    dispatcher: AnalysisDispatcher | None = None,
) -> IngestionPipeline:
    return IngestionPipeline(normalizer=normalizer, hasher=hasher, store=store, dispatcher=dispatcher)


def test_ingest_round_trip_stores_normalized_bytes(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
) -> None:
    pipeline = _pipeline(store, normalizer, hasher)

    result = pipeline.ingest_bytes("owner-1", png_bytes)

    canonical = normalizer.normalize(png_bytes)
    assert result.created is True
    assert result.digest == hasher.compute_bytes(canonical)
    assert store.read(result.digest) == canonical
    assert result.path == store.locate(result.digest)
    assert result.outcomes == []
    assert not list(store.temp_dir.iterdir())


def test_same_image_from_two_owners_is_stored_once(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
) -> None:
    pipeline = _pipeline(store, normalizer, hasher)

    first = pipeline.ingest_bytes("alice", png_bytes)
    second = pipeline.ingest_bytes("bob", png_bytes)

    assert first.digest == second.digest
    assert (first.created, second.created) == (True, False)
    assert len([path for path in store.root.rglob("*") if path.is_file()]) == 1
    assert not list(store.temp_dir.iterdir())


def test_ingest_base64_and_file_agree(
    tmp_path: Path,
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
) -> None:
    pipeline = _pipeline(store, normalizer, hasher)
    source = tmp_path / "upload.png"
    source.write_bytes(png_bytes)

    from_payload = pipeline.ingest_base64("owner-1", base64.b64encode(png_bytes).decode("ascii"))
    from_file = pipeline.ingest_file("owner-1", source)

    assert from_payload.digest == from_file.digest


def test_unsupported_input_leaves_no_files(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    image_bytes,
) -> None:
    pipeline = _pipeline(store, normalizer, hasher)
    gif = image_bytes(Image.new("P", (4, 4)), "GIF")

    with pytest.raises(UnsupportedFormat):
        pipeline.ingest_bytes("owner-1", gif)
    with pytest.raises(UnsupportedFormat):
        pipeline.ingest_base64("owner-1", "not base64!")

    assert not list(store.temp_dir.iterdir())
    assert not any(path.is_file() for path in store.root.rglob("*"))


def test_missing_source_file_raises_io_failure(
    tmp_path: Path, store: IngestionStore, normalizer: ImageNormalizer, hasher: HashComputer
) -> None:
    with pytest.raises(IOFailure):
        _pipeline(store, normalizer, hasher).ingest_file("owner-1", tmp_path / "missing.png")


@pytest.mark.parametrize("owner_id", ["", "   "])
def test_empty_owner_is_rejected(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
    owner_id: str,
) -> None:
    with pytest.raises(ValueError):
        _pipeline(store, normalizer, hasher).ingest_bytes(owner_id, png_bytes)


def test_analysis_failure_does_not_undo_ingest(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "faces.test":
            return httpx.Response(404, json={"message": "no faces found."})
        return httpx.Response(500, text="unavailable")

    settings = AnalysisSettings(
        face=EndpointSettings(url="http://faces.test", attach_metadata=True, response="face"),
        recognition=EndpointSettings(url="http://recognition.test"),
    )
    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = AnalysisDispatcher(settings, store, client=client)
    pipeline = _pipeline(store, normalizer, hasher, dispatcher)

    result = pipeline.ingest_bytes("owner-1", png_bytes)

    assert store.exists(result.digest)
    assert [outcome.status for outcome in result.outcomes] == ["not_found", "service_error"]
    assert len(result.errors) == 1
    assert result.errors[0].startswith("recognition:")


def test_from_config_without_endpoints_skips_dispatch(tmp_path: Path, png_bytes: bytes) -> None:
    config = ShardStoreConfig.model_validate(
        {
            "store": {"root": str(tmp_path / "files"), "temp_dir": str(tmp_path / "tmp")},
            "normalization": {"quality": 90},
        }
    )

    pipeline = IngestionPipeline.from_config(config)
    try:
        result = pipeline.ingest_bytes("owner-1", png_bytes)
    finally:
        pipeline.close()

    assert pipeline.dispatcher is None
    assert (tmp_path / "tmp").is_dir()
    assert result.path.parent.parent.parent == tmp_path / "files"
    assert result.path.read_bytes() == ImageNormalizer(config.normalization).normalize(png_bytes)


def test_unexpected_dispatch_failure_is_reported_not_raised(
    store: IngestionStore,
    normalizer: ImageNormalizer,
    hasher: HashComputer,
    png_bytes: bytes,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "faces.test":
            raise RuntimeError("handler crashed")
        return httpx.Response(200, json={"categories": [{"category": "tree"}]})

    settings = AnalysisSettings(
        face=EndpointSettings(url="http://faces.test", attach_metadata=True, response="face"),
        recognition=EndpointSettings(url="http://recognition.test"),
    )
    client = httpx.Client(transport=httpx.MockTransport(handler))
    pipeline = _pipeline(
        store, normalizer, hasher, AnalysisDispatcher(settings, store, client=client)
    )

    result = pipeline.ingest_bytes("owner-1", png_bytes)

    assert store.exists(result.digest)
    assert [outcome.status for outcome in result.outcomes] == ["service_error", "matched"]
    assert result.outcomes[0].status_code is None
    assert len(result.errors) == 1
    assert result.errors[0].startswith("face:")
    assert "handler crashed" in result.errors[0]

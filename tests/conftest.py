"""Shared fixtures for shardstore tests."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from shardstore.config.models import StoreSettings
from shardstore.ingestion import HashComputer, ImageNormalizer, IngestionStore


def encode_image(image: Image.Image, encoding: str) -> bytes:
    """Return ``image`` serialized with Pillow in the given encoding."""
    buffer = io.BytesIO()
    image.save(buffer, format=encoding)
    return buffer.getvalue()


@pytest.fixture()
def image_bytes():
    """Return a helper that serializes a Pillow image in a given encoding."""
    return encode_image


@pytest.fixture()
def png_bytes() -> bytes:
    return encode_image(Image.new("RGBA", (8, 4), (200, 30, 30, 255)), "PNG")


@pytest.fixture()
def store(tmp_path: Path) -> IngestionStore:
    settings = StoreSettings(root=str(tmp_path / "store"), temp_dir=str(tmp_path / "tmp"))
    store = IngestionStore(settings)
    store.ensure_directories()
    return store


@pytest.fixture()
def normalizer() -> ImageNormalizer:
    return ImageNormalizer()


@pytest.fixture()
def hasher() -> HashComputer:
    return HashComputer()

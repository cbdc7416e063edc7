"""Content-addressed ingestion of uploaded images."""

from .detectors import HashComputer, TypeDetector
from .models import MediaObject, StoredObject
from .normalizer import ImageNormalizer
from .paths import PathMapper
from .pipeline import IngestionPipeline, IngestionResult
from .store import IngestionStore

__all__ = [
    "HashComputer",
    "ImageNormalizer",
    "IngestionPipeline",
    "IngestionResult",
    "IngestionStore",
    "MediaObject",
    "PathMapper",
    "StoredObject",
    "TypeDetector",
]

"""Dispatch of stored objects to external analysis services."""

from .dispatcher import AnalysisConfigurationError, AnalysisDispatcher, classify_response
from .models import (
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisServiceError,
    FaceIndexResponse,
    RecognitionResponse,
)

__all__ = [
    "AnalysisConfigurationError",
    "AnalysisDispatcher",
    "AnalysisOutcome",
    "AnalysisRequest",
    "AnalysisServiceError",
    "FaceIndexResponse",
    "RecognitionResponse",
    "classify_response",
]

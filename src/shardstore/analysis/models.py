"""Analysis request, outcome, and wire payload models."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shardstore.errors import ShardStoreError
from shardstore.formats import MediaFormat


class AnalysisServiceError(ShardStoreError):
    """Raised by :meth:`AnalysisOutcome.raise_for_error` for service failures."""

    def __init__(self, endpoint: str, detail: str, status_code: Optional[int] = None) -> None:
        self.endpoint = endpoint
        self.detail = detail
        self.status_code = status_code
        status = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{endpoint} analysis failed{status}: {detail}")


class AnalysisRequest(BaseModel):
    """Ephemeral description of one object to send for analysis."""

    owner_id: str
    digest: str
    format: MediaFormat = MediaFormat.IMAGE


class AnalysisOutcome(BaseModel):
    """Result of dispatching an object to one analysis endpoint.

    ``not_found`` is a normal result: the service worked but detected nothing.
    ``service_error`` covers transport failures and unexpected responses; for
    transport failures ``status_code`` is None.
    """

    endpoint: str
    status: Literal["matched", "not_found", "service_error"]
    metadata: Optional[Dict[str, Any]] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None

    @classmethod
    def matched(cls, endpoint: str, metadata: Dict[str, Any]) -> "AnalysisOutcome":
        return cls(endpoint=endpoint, status="matched", metadata=metadata, status_code=200)

    @classmethod
    def not_found(cls, endpoint: str, detail: Optional[str] = None) -> "AnalysisOutcome":
        return cls(endpoint=endpoint, status="not_found", status_code=404, detail=detail)

    @classmethod
    def service_error(
        cls, endpoint: str, detail: str, status_code: Optional[int] = None
    ) -> "AnalysisOutcome":
        return cls(endpoint=endpoint, status="service_error", status_code=status_code, detail=detail)

    @property
    def is_matched(self) -> bool:
        return self.status == "matched"

    @property
    def is_not_found(self) -> bool:
        return self.status == "not_found"

    @property
    def is_error(self) -> bool:
        return self.status == "service_error"

    def raise_for_error(self) -> "AnalysisOutcome":
        """Return self, or raise AnalysisServiceError for ``service_error`` outcomes."""
        if self.is_error:
            raise AnalysisServiceError(self.endpoint, self.detail or "", self.status_code)
        return self


class ServiceErrorPayload(BaseModel):
    """JSON error body returned by the analysis services."""

    title: str = ""
    message: str = ""


class FaceIndexResponse(BaseModel):
    """Face index success payload; ``hash`` identifies the indexed face."""

    model_config = ConfigDict(populate_by_name=True)

    hash: str
    kind: str = Field(default="", alias="type")
    file: str = ""


class RecognitionCategory(BaseModel):
    category: str
    description: str = ""
    score: Optional[float] = None


class RecognitionResponse(BaseModel):
    """General recognition success payload."""

    model_config = ConfigDict(populate_by_name=True)

    categories: List[RecognitionCategory] = Field(default_factory=list)
    content_type: str = Field(default="", alias="content-type")
    id: str = ""
    md5: str = ""
    time: str = ""

    @property
    def top_category(self) -> Optional[str]:
        return self.categories[0].category if self.categories else None


RESPONSE_MODELS: Dict[str, type[BaseModel]] = {
    "face": FaceIndexResponse,
    "recognition": RecognitionResponse,
}


__all__ = [
    "AnalysisOutcome",
    "AnalysisRequest",
    "AnalysisServiceError",
    "FaceIndexResponse",
    "RESPONSE_MODELS",
    "RecognitionCategory",
    "RecognitionResponse",
    "ServiceErrorPayload",
]

"""Upload stored objects to external analysis services and interpret replies.

Every endpoint kind shares one upload routine; the differences between the
face index and general recognition services live entirely in their
:class:`~shardstore.config.models.EndpointSettings`.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Optional

import httpx
from pydantic import ValidationError

from shardstore.config.exceptions import ConfigError
from shardstore.config.models import AnalysisSettings, EndpointSettings
from shardstore.formats import MediaFormat, coerce_format, content_type_for, extension_for

from .models import (
    RESPONSE_MODELS,
    AnalysisOutcome,
    AnalysisRequest,
    RecognitionResponse,
    ServiceErrorPayload,
)

if TYPE_CHECKING:
    from shardstore.ingestion.store import IngestionStore

LOGGER = logging.getLogger(__name__)

UPLOAD_PATH = "/upload"
_DETAIL_LIMIT = 2_000


class AnalysisConfigurationError(ConfigError):
    """Raised when dispatch targets an unknown or unconfigured endpoint."""


def build_metadata(endpoint: EndpointSettings, request: AnalysisRequest) -> dict[str, str]:
    """Return the ``data`` part describing where the object lives and who owns it.

    ``path`` is how the service fetches the object back, ``type`` is the
    namespace it belongs to, and ``link`` routes a client to the owner entry.
    """
    values = {
        "digest": request.digest,
        "format": request.format.value,
        "owner_id": request.owner_id,
    }
    return {
        "path": endpoint.path_template.format(**values),
        "type": endpoint.metadata_type,
        "link": endpoint.link_template.format(**values),
    }


def upload_url(endpoint: EndpointSettings) -> str:
    """Return the upload URL for ``endpoint``."""
    return endpoint.url.rstrip("/") + UPLOAD_PATH


def classify_response(
    name: str, endpoint: EndpointSettings, response: httpx.Response
) -> AnalysisOutcome:
    """Map an HTTP response from an analysis service to an outcome.

    A 200 whose body decodes to the endpoint's payload shape is ``matched``.
    A 404 whose JSON ``message`` equals the endpoint's not-found message,
    compared case-insensitively, is ``not_found``. Everything else is a
    ``service_error`` carrying the status code and body.
    """
    body = response.text[:_DETAIL_LIMIT]

    if response.status_code == 200:
        model = RESPONSE_MODELS[endpoint.response]
        try:
            payload = model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            return AnalysisOutcome.service_error(
                name, f"Error decoding response from {name}: {exc}", status_code=200
            )
        return AnalysisOutcome.matched(name, payload.model_dump(mode="json", by_alias=True))

    if response.status_code == 404:
        try:
            error = ServiceErrorPayload.model_validate(response.json())
        except (ValueError, ValidationError):
            error = None
        if error is not None and error.message.casefold() == endpoint.not_found_message.casefold():
            return AnalysisOutcome.not_found(name, error.message)

    return AnalysisOutcome.service_error(
        name,
        f"Error from {name} service: {response.status_code} {body}",
        status_code=response.status_code,
    )


class AnalysisDispatcher:
    """Send stored objects to the configured analysis endpoints.

    The dispatcher owns its :class:`httpx.Client` unless one is supplied, in
    which case closing the dispatcher leaves the client open.
    """

    def __init__(
        self,
        settings: AnalysisSettings,
        store: "IngestionStore",
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._owns_client = client is None
        self._client = client or httpx.Client()

    def __enter__(self) -> "AnalysisDispatcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._owns_client:
            self._client.close()

    def dispatch(
        self,
        endpoint_kind: str,
        owner_id: str,
        digest: str,
        media_format: MediaFormat | str = MediaFormat.IMAGE,
    ) -> AnalysisOutcome:
        """Upload the object stored for ``digest`` to one endpoint.

        Args:
            endpoint_kind: Configured endpoint name (``face`` or ``recognition``).
            owner_id: Identifier of the owner, used in the metadata back-reference.
            digest: Digest of the stored object.
            media_format: Canonical format of the stored object.

        Returns:
            AnalysisOutcome: ``matched``, ``not_found``, or ``service_error``.

        Raises:
            AnalysisConfigurationError: If the endpoint is unknown or has no URL.
            InvalidDigest: If ``digest`` cannot be used as a store key.
            ObjectNotFound: If nothing is stored for ``digest``.
            IOFailure: If the stored file cannot be read.
        """
        endpoint = self.settings.endpoint(endpoint_kind)
        if endpoint is None:
            raise AnalysisConfigurationError(f"Unknown analysis endpoint: {endpoint_kind}")
        if not endpoint.url.strip():
            raise AnalysisConfigurationError(f"No URL configured for {endpoint_kind} endpoint.")

        request = AnalysisRequest(
            owner_id=owner_id, digest=digest, format=coerce_format(media_format)
        )
        content = self.store.read(request.digest, request.format)
        filename = f"{request.digest}{extension_for(request.format)}"
        files = {"image": (filename, content, content_type_for(request.format))}
        data = None
        if endpoint.attach_metadata:
            data = {"data": json.dumps(build_metadata(endpoint, request))}

        url = upload_url(endpoint)
        timeout = endpoint.timeout_seconds or self.settings.timeout_seconds
        LOGGER.debug("Uploading %s to %s", filename, url)
        try:
            response = self._client.post(url, files=files, data=data, timeout=timeout)
        except httpx.HTTPError as exc:
            LOGGER.warning("Error sending request to %s: %s", endpoint_kind, exc)
            return AnalysisOutcome.service_error(
                endpoint_kind, f"Error sending request to {endpoint_kind}: {exc}"
            )

        outcome = classify_response(endpoint_kind, endpoint, response)
        self._log_outcome(outcome)
        return outcome

    def dispatch_all(self, request: AnalysisRequest) -> list[AnalysisOutcome]:
        """Dispatch ``request`` to every active endpoint in configured order.

        Only image objects are analysed; other formats yield no outcomes.
        Every active endpoint yields exactly one outcome: a failure raised
        while dispatching to one endpoint becomes its ``service_error`` and
        the remaining endpoints are still tried.
        """
        if request.format is not MediaFormat.IMAGE:
            return []
        outcomes: list[AnalysisOutcome] = []
        for name, _ in self.settings.endpoints():
            try:
                outcome = self.dispatch(name, request.owner_id, request.digest, request.format)
            except Exception as exc:
                LOGGER.exception("Analysis dispatch to %s failed for %s", name, request.digest)
                outcome = AnalysisOutcome.service_error(
                    name, f"Error dispatching to {name}: {type(exc).__name__}: {exc}"
                )
            outcomes.append(outcome)
        return outcomes

    def _log_outcome(self, outcome: AnalysisOutcome) -> None:
        if outcome.is_error:
            LOGGER.warning("%s", outcome.detail)
        elif outcome.is_not_found:
            LOGGER.info("%s service found nothing: %s", outcome.endpoint, outcome.detail)
        elif outcome.metadata and "categories" in outcome.metadata:
            top = RecognitionResponse.model_validate(outcome.metadata).top_category
            if top:
                LOGGER.info("Recognition response category: %s", top)


__all__ = [
    "AnalysisConfigurationError",
    "AnalysisDispatcher",
    "UPLOAD_PATH",
    "build_metadata",
    "classify_response",
    "upload_url",
]

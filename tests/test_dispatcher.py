"""Tests for analysis dispatch over a mocked HTTP transport."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from shardstore.analysis import (
    AnalysisConfigurationError,
    AnalysisDispatcher,
    AnalysisRequest,
    AnalysisServiceError,
)
from shardstore.config.models import AnalysisSettings, EndpointSettings
from shardstore.errors import ObjectNotFound
from shardstore.ingestion import HashComputer, IngestionStore

FACE_URL = "http://faces.test"
RECOGNITION_URL = "http://recognition.test/"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture()
def digest(store: IngestionStore) -> str:
    content = b"\xff\xd8stored-jpeg"
    digest = HashComputer().compute_bytes(content)
    temp = store.temp_path("owner-7")
    temp.write_bytes(content)
    store.ingest(temp, digest)
    return digest


def _settings(**overrides: EndpointSettings) -> AnalysisSettings:
    settings = AnalysisSettings(
        face=EndpointSettings(url=FACE_URL, attach_metadata=True, response="face"),
        recognition=EndpointSettings(url=RECOGNITION_URL),
    )
    return settings.model_copy(update=overrides)


def _dispatcher(store: IngestionStore, handler: Handler, **overrides) -> AnalysisDispatcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return AnalysisDispatcher(_settings(**overrides), store, client=client)


def _respond(status: int, payload: object) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload)

    return handler


def test_face_upload_request_shape(store: IngestionStore, digest: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen.append(request)
        return httpx.Response(200, json={"hash": "abc", "type": "legion", "file": "f"})

    dispatcher = _dispatcher(store, handler)
    dispatcher.dispatch("face", "owner-7", digest)

    (request,) = seen
    body = request.content
    assert request.method == "POST"
    assert request.url.host == "faces.test"
    assert request.url.path == "/upload"
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert f'name="image"; filename="{digest}.jpg"'.encode() in body
    assert b"Content-Type: image/jpeg" in body
    assert b"\xff\xd8stored-jpeg" in body
    expected = json.dumps(
        {
            "path": f"files?md5hash={digest}&format=IMAGE",
            "type": "legion",
            "link": "#/person/owner-7",
        }
    )
    assert b'name="data"' in body
    assert expected.encode() in body


def test_recognition_upload_has_no_metadata_part(store: IngestionStore, digest: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen.append(request)
        return httpx.Response(200, json={"categories": []})

    _dispatcher(store, handler).dispatch("recognition", "owner-7", digest)

    (request,) = seen
    assert request.url.host == "recognition.test"
    assert request.url.path == "/upload"
    assert b'name="data"' not in request.content
    assert f'filename="{digest}.jpg"'.encode() in request.content


def test_face_success_is_matched(store: IngestionStore, digest: str) -> None:
    dispatcher = _dispatcher(
        store, _respond(200, {"hash": "f00d", "type": "legion", "file": "faces/f00d.jpg"})
    )

    outcome = dispatcher.dispatch("face", "owner-7", digest)

    assert outcome.is_matched
    assert outcome.status_code == 200
    assert outcome.metadata == {"hash": "f00d", "type": "legion", "file": "faces/f00d.jpg"}
    assert outcome.raise_for_error() is outcome


def test_recognition_success_carries_categories(
    store: IngestionStore, digest: str, caplog: pytest.LogCaptureFixture
) -> None:
    payload = {
        "categories": [
            {"category": "dog", "description": "a dog", "score": 0.91},
            {"category": "grass", "description": "grass", "score": 0.4},
        ],
        "content-type": "image/jpeg",
        "id": "1",
        "md5": "ignored",
        "time": "0.2s",
    }
    dispatcher = _dispatcher(store, _respond(200, payload))

    with caplog.at_level("INFO", logger="shardstore"):
        outcome = dispatcher.dispatch("recognition", "owner-7", digest)

    assert outcome.is_matched
    assert [item["category"] for item in outcome.metadata["categories"]] == ["dog", "grass"]
    assert outcome.metadata["content-type"] == "image/jpeg"
    assert "Recognition response category: dog" in caplog.text


@pytest.mark.parametrize("message", ["No Faces Found.", "no faces found.", "NO FACES FOUND."])
def test_no_faces_found_is_not_found(store: IngestionStore, digest: str, message: str) -> None:
    dispatcher = _dispatcher(store, _respond(404, {"title": "Not Found", "message": message}))

    outcome = dispatcher.dispatch("face", "owner-7", digest)

    assert outcome.is_not_found
    assert not outcome.is_error
    assert outcome.status_code == 404


def test_other_404_is_service_error(store: IngestionStore, digest: str) -> None:
    dispatcher = _dispatcher(store, _respond(404, {"title": "Not Found", "message": "No route."}))

    outcome = dispatcher.dispatch("face", "owner-7", digest)

    assert outcome.is_error
    assert outcome.status_code == 404


def test_server_error_is_service_error(store: IngestionStore, digest: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    outcome = _dispatcher(store, handler).dispatch("recognition", "owner-7", digest)

    assert outcome.is_error
    assert outcome.status_code == 500
    assert "boom" in outcome.detail
    with pytest.raises(AnalysisServiceError) as excinfo:
        outcome.raise_for_error()
    assert excinfo.value.status_code == 500


def test_undecodable_success_is_service_error(store: IngestionStore, digest: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    outcome = _dispatcher(store, handler).dispatch("face", "owner-7", digest)

    assert outcome.is_error
    assert outcome.status_code == 200


def test_transport_failure_is_service_error(store: IngestionStore, digest: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = _dispatcher(store, handler).dispatch("face", "owner-7", digest)

    assert outcome.is_error
    assert outcome.status_code is None
    assert "connection refused" in outcome.detail


def test_missing_object_raises(store: IngestionStore) -> None:
    dispatcher = _dispatcher(store, _respond(200, {}))

    with pytest.raises(ObjectNotFound):
        dispatcher.dispatch("face", "owner-7", "c9f0a50243285ecdee9cd88f9db86730")


def test_unknown_or_unconfigured_endpoint_raises(store: IngestionStore, digest: str) -> None:
    dispatcher = _dispatcher(store, _respond(200, {}), recognition=EndpointSettings(url=""))

    with pytest.raises(AnalysisConfigurationError):
        dispatcher.dispatch("thumbnail", "owner-7", digest)
    with pytest.raises(AnalysisConfigurationError):
        dispatcher.dispatch("recognition", "owner-7", digest)


def test_dispatch_all_visits_active_endpoints_in_order(store: IngestionStore, digest: str) -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "faces.test":
            return httpx.Response(404, json={"message": "No Faces Found."})
        return httpx.Response(200, json={"categories": [{"category": "tree"}]})

    outcomes = _dispatcher(store, handler).dispatch_all(
        AnalysisRequest(owner_id="owner-7", digest=digest)
    )

    assert hosts == ["faces.test", "recognition.test"]
    assert [outcome.status for outcome in outcomes] == ["not_found", "matched"]


def test_dispatch_all_skips_disabled_endpoint(store: IngestionStore, digest: str) -> None:
    disabled = EndpointSettings(url=FACE_URL, enabled=False)
    dispatcher = _dispatcher(store, _respond(200, {"categories": []}), face=disabled)

    outcomes = dispatcher.dispatch_all(AnalysisRequest(owner_id="owner-7", digest=digest))

    assert [outcome.endpoint for outcome in outcomes] == ["recognition"]


def test_supplied_client_is_left_open(store: IngestionStore) -> None:
    client = httpx.Client(transport=httpx.MockTransport(_respond(200, {})))

    with AnalysisDispatcher(_settings(), store, client=client):
        pass

    assert not client.is_closed
    client.close()


def test_dispatch_all_turns_endpoint_failure_into_outcome(store: IngestionStore) -> None:
    dispatcher = _dispatcher(store, _respond(200, {"categories": []}))

    outcomes = dispatcher.dispatch_all(
        AnalysisRequest(owner_id="owner-7", digest="c9f0a50243285ecdee9cd88f9db86730")
    )

    assert [outcome.endpoint for outcome in outcomes] == ["face", "recognition"]
    assert all(outcome.is_error for outcome in outcomes)
    assert "ObjectNotFound" in outcomes[0].detail

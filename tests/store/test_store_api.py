"""Tests for the HTTP remote store client."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, timezone

import httpx
import pytest

from cryptdrop.core.config import StoreConfig
from cryptdrop.store.api import (
    API_ARG_HEADER,
    CommitInfo,
    HTTPRemoteStore,
    ObjectMetadata,
    format_timestamp,
)
from cryptdrop.store.faults import FaultKind, RemoteStoreError

METADATA = {
    "id": "id:a4ayc_80_OEAAAAAAAAAXw",
    "name": "report.txt.enc",
    "path_lower": "/backup/report.txt.enc",
    "path_display": "/backup/report.txt.enc",
    "size": 300,
    "rev": "a1c10ce0dd78",
    "content_hash": "e3b0c442",
    "client_modified": "2025-01-02T15:30:00Z",
    "server_modified": "2025-01-02T15:31:00Z",
}

COMMIT = CommitInfo(
    path="/backup/report.txt.enc",
    client_modified=datetime(2025, 1, 2, 15, 30, 0, tzinfo=UTC),
)


def make_store(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[HTTPRemoteStore, list[httpx.Request]]:
    """Create a store whose requests go to handler; also return the request log."""
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    config = StoreConfig(token="token123", api_url="http://test")
    client = httpx.Client(
        transport=httpx.MockTransport(record),
        base_url=config.api_url,
        headers={"Authorization": f"Bearer {config.token}"},
    )
    return HTTPRemoteStore(config, client=client), requests


def api_arg(request: httpx.Request) -> dict:
    """Decode the JSON argument header of a request."""
    return json.loads(request.headers[API_ARG_HEADER])


class TestFormatTimestamp:
    """Tests for format_timestamp."""

    def test_utc(self) -> None:
        """Should format as second-precision UTC."""
        assert format_timestamp(datetime(2025, 1, 2, 3, 4, 5, 678, tzinfo=UTC)) == "2025-01-02T03:04:05Z"

    def test_converts_offset(self) -> None:
        """Aware timestamps are converted to UTC."""
        value = datetime(2025, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2025-01-02T03:00:00Z"

    def test_naive_taken_as_utc(self) -> None:
        """Naive timestamps are taken as UTC."""
        assert format_timestamp(datetime(2025, 1, 2, 3, 0, 0)) == "2025-01-02T03:00:00Z"


class TestCommitInfo:
    """Tests for CommitInfo."""

    def test_to_dict(self) -> None:
        """Commits add without overwriting or renaming."""
        assert COMMIT.to_dict() == {
            "path": "/backup/report.txt.enc",
            "mode": "add",
            "autorename": False,
            "client_modified": "2025-01-02T15:30:00Z",
            "mute": False,
        }


class TestObjectMetadata:
    """Tests for ObjectMetadata."""

    def test_from_dict(self) -> None:
        """Should create ObjectMetadata from dictionary."""
        metadata = ObjectMetadata.from_dict(METADATA)

        assert metadata.id == "id:a4ayc_80_OEAAAAAAAAAXw"
        assert metadata.path == "/backup/report.txt.enc"
        assert metadata.size == 300
        assert metadata.client_modified == datetime(2025, 1, 2, 15, 30, 0, tzinfo=UTC)
        assert metadata.server_modified == datetime(2025, 1, 2, 15, 31, 0, tzinfo=UTC)

    def test_from_dict_minimal(self) -> None:
        """Optional fields default to None."""
        metadata = ObjectMetadata.from_dict({"id": "id:1", "name": "a.enc", "size": 1})
        assert metadata.path == "a.enc"
        assert metadata.rev is None
        assert metadata.client_modified is None


class TestHTTPRemoteStore:
    """Tests for HTTPRemoteStore."""

    def test_start_session(self) -> None:
        """Should post the first chunk and return the session id."""
        store, requests = make_store(lambda r: httpx.Response(200, json={"session_id": "sess-1"}))

        assert store.start_session(b"first chunk") == "sess-1"

        request = requests[0]
        assert request.url.path == "/2/files/upload_session/start"
        assert request.content == b"first chunk"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["Authorization"] == "Bearer token123"
        assert api_arg(request) == {"close": False}

    def test_start_session_without_id(self) -> None:
        """A response without a session id is a terminal fault."""
        store, _ = make_store(lambda r: httpx.Response(200, json={}))
        with pytest.raises(RemoteStoreError) as exc_info:
            store.start_session(b"x")
        assert exc_info.value.fault.kind is FaultKind.NON_RETRYABLE

    def test_append(self) -> None:
        """Should send the cursor with the chunk."""
        store, requests = make_store(lambda r: httpx.Response(200, json=None))

        store.append("sess-1", 64, b"chunk")

        request = requests[0]
        assert request.url.path == "/2/files/upload_session/append_v2"
        assert request.content == b"chunk"
        assert api_arg(request) == {"cursor": {"session_id": "sess-1", "offset": 64}, "close": False}

    def test_finish(self) -> None:
        """Should send cursor and commit and return the metadata."""
        store, requests = make_store(lambda r: httpx.Response(200, json=METADATA))

        metadata = store.finish("sess-1", 256, b"tail", COMMIT)

        assert metadata.path == "/backup/report.txt.enc"
        request = requests[0]
        assert request.url.path == "/2/files/upload_session/finish"
        assert request.content == b"tail"
        assert api_arg(request) == {
            "cursor": {"session_id": "sess-1", "offset": 256},
            "commit": COMMIT.to_dict(),
        }

    def test_finish_empty_remainder(self) -> None:
        """The remainder may be empty."""
        store, requests = make_store(lambda r: httpx.Response(200, json=METADATA))
        store.finish("sess-1", 256, b"", COMMIT)
        assert requests[0].content == b""

    def test_upload(self) -> None:
        """Small objects go through the single-request endpoint."""
        store, requests = make_store(lambda r: httpx.Response(200, json=METADATA))

        metadata = store.upload(b"small", COMMIT)

        assert metadata.size == 300
        assert requests[0].url.path == "/2/files/upload"
        assert api_arg(requests[0]) == COMMIT.to_dict()

    def test_offset_mismatch(self) -> None:
        """An incorrect_offset response raises an OFFSET_MISMATCH fault."""
        store, _ = make_store(
            lambda r: httpx.Response(
                409,
                json={
                    "error_summary": "incorrect_offset/",
                    "error": {".tag": "incorrect_offset", "correct_offset": 128},
                },
            )
        )
        with pytest.raises(RemoteStoreError) as exc_info:
            store.append("sess-1", 64, b"chunk")
        assert exc_info.value.fault.kind is FaultKind.OFFSET_MISMATCH
        assert exc_info.value.fault.correct_offset == 128

    def test_rate_limited(self) -> None:
        """A 429 raises a RETRY_LATER fault."""
        store, _ = make_store(lambda r: httpx.Response(429, headers={"Retry-After": "4"}))
        with pytest.raises(RemoteStoreError) as exc_info:
            store.append("sess-1", 0, b"chunk")
        assert exc_info.value.fault.kind is FaultKind.RETRY_LATER
        assert exc_info.value.fault.retry_after == 4.0

    def test_transport_error(self) -> None:
        """Connection failures raise a TRANSIENT_NETWORK fault."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection reset", request=request)

        store, _ = make_store(handler)
        with pytest.raises(RemoteStoreError) as exc_info:
            store.start_session(b"x")
        assert exc_info.value.fault.kind is FaultKind.TRANSIENT_NETWORK

    def test_malformed_json(self) -> None:
        """A non-JSON success body is a terminal fault."""
        store, _ = make_store(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(RemoteStoreError) as exc_info:
            store.upload(b"x", COMMIT)
        assert exc_info.value.fault.kind is FaultKind.NON_RETRYABLE

    def test_incomplete_metadata(self) -> None:
        """Metadata without required fields is a terminal fault."""
        store, _ = make_store(lambda r: httpx.Response(200, json={"id": "id:1"}))
        with pytest.raises(RemoteStoreError) as exc_info:
            store.finish("sess-1", 0, b"x", COMMIT)
        assert exc_info.value.fault.kind is FaultKind.NON_RETRYABLE

    def test_context_manager_closes_client(self) -> None:
        """Leaving the context closes the HTTP client."""
        store, _ = make_store(lambda r: httpx.Response(200))
        with store:
            pass
        assert store._client.is_closed

    def test_default_client_uses_config(self) -> None:
        """Without a client one is built from the config."""
        store = HTTPRemoteStore(StoreConfig(token="token123", api_url="http://localhost:9000/"))
        try:
            assert store._client.base_url.host == "localhost"
            assert store._client.base_url.port == 9000
            assert store._client.headers["Authorization"] == "Bearer token123"
        finally:
            store.close()

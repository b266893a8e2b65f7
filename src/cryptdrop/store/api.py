"""Remote store client for chunked uploads.

This module provides:
- RemoteStore: Protocol of the chunked-upload API the uploader needs
- CommitInfo, ObjectMetadata: Commit request and result
- HTTPRemoteStore: httpx client for a Dropbox-compatible content API
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from cryptdrop.core.config import StoreConfig
from cryptdrop.store.faults import (
    FaultKind,
    RemoteFault,
    RemoteStoreError,
    classify_response,
    classify_transport_error,
)

logger = logging.getLogger(__name__)

# Write mode: add the object, never overwrite an existing one
WRITE_MODE_ADD = "add"

API_ARG_HEADER = "Dropbox-API-Arg"


def format_timestamp(value: datetime) -> str:
    """Format a timestamp the way the store expects (UTC, second precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class CommitInfo:
    """Where and how an upload is committed.

    Attributes:
        path: Destination key at the store.
        client_modified: Modification time of the local file.
        mode: Write mode; always "add" for this pipeline.
    """

    path: str
    client_modified: datetime
    mode: str = WRITE_MODE_ADD

    def to_dict(self) -> dict[str, Any]:
        """Serialize as a request argument."""
        return {
            "path": self.path,
            "mode": self.mode,
            "autorename": False,
            "client_modified": format_timestamp(self.client_modified),
            "mute": False,
        }


@dataclass
class ObjectMetadata:
    """Metadata of a committed object."""

    id: str
    name: str
    path: str
    size: int
    rev: str | None = None
    content_hash: str | None = None
    client_modified: datetime | None = None
    server_modified: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectMetadata:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            path=data.get("path_display") or data.get("path_lower") or data["name"],
            size=data["size"],
            rev=data.get("rev"),
            content_hash=data.get("content_hash"),
            client_modified=_parse_timestamp(data.get("client_modified")),
            server_modified=_parse_timestamp(data.get("server_modified")),
        )


class RemoteStore(Protocol):
    """Chunked-upload API of a remote object store.

    Every method raises RemoteStoreError with a classified fault on failure.
    """

    def start_session(self, data: bytes) -> str:
        """Open an upload session with its first chunk; return the session id."""
        ...

    def append(self, session_id: str, offset: int, data: bytes) -> None:
        """Append a chunk at offset to an open session."""
        ...

    def finish(
        self, session_id: str, offset: int, data: bytes, commit: CommitInfo
    ) -> ObjectMetadata:
        """Send the last chunk at offset and commit the session."""
        ...

    def upload(self, data: bytes, commit: CommitInfo) -> ObjectMetadata:
        """Upload and commit a small object in a single request."""
        ...


class HTTPRemoteStore:
    """HTTP client for a Dropbox-compatible content upload API.

    Request arguments travel as JSON in the Dropbox-API-Arg header and the
    chunk is the octet-stream body.
    """

    def __init__(self, config: StoreConfig, client: httpx.Client | None = None) -> None:
        """Initialize the store client.

        Args:
            config: Store configuration (URL, token, per-request timeout).
            client: Optional preconfigured httpx client (tests).
        """
        self._config = config
        self._client = client or httpx.Client(
            base_url=config.api_url,
            timeout=config.timeout,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPRemoteStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _post(self, endpoint: str, arg: dict[str, Any], data: bytes) -> httpx.Response:
        """POST a chunk with its API argument and classify the outcome.

        Raises:
            RemoteStoreError: For any transport failure or error status.
        """
        headers = {
            API_ARG_HEADER: json.dumps(arg),
            "Content-Type": "application/octet-stream",
        }
        try:
            response = self._client.post(endpoint, content=data, headers=headers)
        except httpx.TransportError as e:
            raise RemoteStoreError(classify_transport_error(e)) from e

        fault = classify_response(response)
        if fault is not None:
            logger.debug(f"{endpoint} failed: {fault}")
            raise RemoteStoreError(fault)
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteStoreError(
                RemoteFault(
                    kind=FaultKind.NON_RETRYABLE,
                    message=f"Malformed response: {e}",
                    status_code=response.status_code,
                )
            ) from e
        if not isinstance(data, dict):
            raise RemoteStoreError(
                RemoteFault(
                    kind=FaultKind.NON_RETRYABLE,
                    message="Malformed response: expected an object",
                    status_code=response.status_code,
                )
            )
        return data

    def _metadata(self, response: httpx.Response) -> ObjectMetadata:
        try:
            return ObjectMetadata.from_dict(self._json(response))
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStoreError(
                RemoteFault(
                    kind=FaultKind.NON_RETRYABLE,
                    message=f"Malformed metadata: {e!r}",
                    status_code=response.status_code,
                )
            ) from e

    def start_session(self, data: bytes) -> str:
        """Open an upload session.

        Args:
            data: First chunk.

        Returns:
            Session id issued by the store.
        """
        response = self._post("/2/files/upload_session/start", {"close": False}, data)
        body = self._json(response)
        session_id = body.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise RemoteStoreError(
                RemoteFault(
                    kind=FaultKind.NON_RETRYABLE,
                    message="Response carries no session_id",
                    status_code=response.status_code,
                )
            )
        return session_id

    def append(self, session_id: str, offset: int, data: bytes) -> None:
        """Append a chunk to an open session.

        Args:
            session_id: Session to append to.
            offset: Offset of this chunk in the whole upload.
            data: Chunk bytes.
        """
        arg = {"cursor": {"session_id": session_id, "offset": offset}, "close": False}
        self._post("/2/files/upload_session/append_v2", arg, data)

    def finish(
        self, session_id: str, offset: int, data: bytes, commit: CommitInfo
    ) -> ObjectMetadata:
        """Send the remainder and commit the session.

        Args:
            session_id: Session to commit.
            offset: Offset of the remainder in the whole upload.
            data: Remainder bytes (may be empty).
            commit: Destination and write mode.

        Returns:
            Metadata of the committed object.
        """
        arg = {
            "cursor": {"session_id": session_id, "offset": offset},
            "commit": commit.to_dict(),
        }
        response = self._post("/2/files/upload_session/finish", arg, data)
        return self._metadata(response)

    def upload(self, data: bytes, commit: CommitInfo) -> ObjectMetadata:
        """Upload a whole object in one request.

        Args:
            data: Object bytes.
            commit: Destination and write mode.

        Returns:
            Metadata of the committed object.
        """
        response = self._post("/2/files/upload", commit.to_dict(), data)
        return self._metadata(response)

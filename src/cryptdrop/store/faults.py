"""Classification of remote store failures.

Every failure of a remote store call is mapped onto one of four fault
kinds. The uploader decides what to do from the kind alone, so the
mapping lives here in plain functions rather than in an exception
hierarchy.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Backoff used when the server asks to retry later without saying when
DEFAULT_RETRY_AFTER = 1.0  # seconds

# Statuses the server uses to ask the client to back off
RETRY_LATER_STATUSES = frozenset({429, 503})


class FaultKind(Enum):
    """Kind of a remote store fault."""

    OFFSET_MISMATCH = "offset_mismatch"
    RETRY_LATER = "retry_later"
    TRANSIENT_NETWORK = "transient_network"
    NON_RETRYABLE = "non_retryable"

    @property
    def retryable(self) -> bool:
        """Whether an upload may be retried after this kind of fault."""
        return self is not FaultKind.NON_RETRYABLE


@dataclass(frozen=True)
class RemoteFault:
    """A classified remote store fault.

    Attributes:
        kind: Fault category.
        message: Human-readable description.
        correct_offset: Server-side committed offset (OFFSET_MISMATCH only).
        retry_after: Seconds the server asked us to wait (RETRY_LATER only).
        status_code: HTTP status of the response, if there was one.
    """

    kind: FaultKind
    message: str
    correct_offset: int | None = None
    retry_after: float | None = None
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class RemoteStoreError(Exception):
    """A remote store call failed.

    Attributes:
        fault: The classified fault.
    """

    def __init__(self, fault: RemoteFault) -> None:
        super().__init__(str(fault))
        self.fault = fault


def _parse_retry_after(value: Any) -> float | None:
    """Parse a Retry-After value given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return max(seconds, 0.0)


def _error_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON error body, or return an empty dict."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _find_correct_offset(error: Any) -> int | None:
    """Extract the server's offset from an incorrect_offset error.

    The error is either an upload session lookup error or a finish error
    wrapping one under ``lookup_failed``.
    """
    if not isinstance(error, dict):
        return None
    tag = error.get(".tag")
    if tag == "lookup_failed":
        return _find_correct_offset(error.get("lookup_failed"))
    if tag == "incorrect_offset":
        offset = error.get("correct_offset")
        if isinstance(offset, int) and offset >= 0:
            return offset
    return None


def classify_response(response: httpx.Response) -> RemoteFault | None:
    """Classify a remote store response.

    Args:
        response: Response to a store request.

    Returns:
        None for a successful response, otherwise the classified fault.
    """
    status = response.status_code
    if status < 400:
        return None

    body = _error_body(response)
    summary = body.get("error_summary") or response.reason_phrase or f"HTTP {status}"

    if status in RETRY_LATER_STATUSES:
        error = body.get("error")
        retry_after = _parse_retry_after(
            error.get("retry_after") if isinstance(error, dict) else None
        )
        if retry_after is None:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is None:
            retry_after = DEFAULT_RETRY_AFTER
        return RemoteFault(
            kind=FaultKind.RETRY_LATER,
            message=summary,
            retry_after=retry_after,
            status_code=status,
        )

    if status == 409:
        correct_offset = _find_correct_offset(body.get("error"))
        if correct_offset is not None:
            return RemoteFault(
                kind=FaultKind.OFFSET_MISMATCH,
                message=summary,
                correct_offset=correct_offset,
                status_code=status,
            )

    return RemoteFault(kind=FaultKind.NON_RETRYABLE, message=summary, status_code=status)


def classify_transport_error(exc: httpx.TransportError) -> RemoteFault:
    """Classify a transport-level failure (connection, timeout, protocol).

    Args:
        exc: The httpx transport exception.

    Returns:
        A TRANSIENT_NETWORK fault.
    """
    name = type(exc).__name__
    return RemoteFault(kind=FaultKind.TRANSIENT_NETWORK, message=f"{name}: {exc}")

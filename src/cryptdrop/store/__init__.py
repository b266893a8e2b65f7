"""Remote store access: chunked-upload API and fault classification."""

from cryptdrop.store.api import (
    WRITE_MODE_ADD,
    CommitInfo,
    HTTPRemoteStore,
    ObjectMetadata,
    RemoteStore,
    format_timestamp,
)
from cryptdrop.store.faults import (
    DEFAULT_RETRY_AFTER,
    FaultKind,
    RemoteFault,
    RemoteStoreError,
    classify_response,
    classify_transport_error,
)

__all__ = [
    "DEFAULT_RETRY_AFTER",
    "WRITE_MODE_ADD",
    "CommitInfo",
    "FaultKind",
    "HTTPRemoteStore",
    "ObjectMetadata",
    "RemoteFault",
    "RemoteStore",
    "RemoteStoreError",
    "classify_response",
    "classify_transport_error",
    "format_timestamp",
]

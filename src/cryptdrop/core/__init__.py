"""Core module - Shared config, crypto and types."""

from cryptdrop.core.config import (
    DEFAULT_API_URL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_ATTEMPTS,
    ConfigError,
    PipelineConfig,
    StoreConfig,
    normalize_extensions,
)
from cryptdrop.core.crypto import (
    EncryptionError,
    EncryptionGateway,
    EnvelopeEncryptionGateway,
    key_id,
    load_recipient_key,
)
from cryptdrop.core.types import ENCRYPTED_SUFFIX, WORKING_SUFFIX, IngestError, Stage

__all__ = [
    # Config
    "DEFAULT_API_URL",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_ATTEMPTS",
    "ConfigError",
    "PipelineConfig",
    "StoreConfig",
    "normalize_extensions",
    # Crypto
    "EncryptionError",
    "EncryptionGateway",
    "EnvelopeEncryptionGateway",
    "key_id",
    "load_recipient_key",
    # Types
    "ENCRYPTED_SUFFIX",
    "WORKING_SUFFIX",
    "IngestError",
    "Stage",
]

"""Shared pytest fixtures.

Provides the fake remote store, a throwaway RSA key pair with an envelope
decryptor, and a factory for pipeline configurations rooted in tmp_path.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cryptdrop.core.config import PipelineConfig
from tests.fakes import TEST_CHUNK_SIZE, FakeRemoteStore, open_envelope


@pytest.fixture
def store() -> FakeRemoteStore:
    """Create an empty fake remote store."""
    return FakeRemoteStore()


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """Generate a throwaway RSA key pair (private key)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def recipient_key(private_key: rsa.RSAPrivateKey) -> rsa.RSAPublicKey:
    """Public half of the test key."""
    return private_key.public_key()


@pytest.fixture(scope="session")
def recipient_key_file(
    tmp_path_factory: pytest.TempPathFactory, recipient_key: rsa.RSAPublicKey
) -> Path:
    """PEM public key written to disk."""
    path = tmp_path_factory.mktemp("keys") / "recipient.pem"
    path.write_bytes(
        recipient_key.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
    )
    return path


@pytest.fixture
def decrypt(private_key: rsa.RSAPrivateKey) -> Callable[[bytes], bytes]:
    """Decrypt an artifact produced for the test key."""

    def _decrypt(blob: bytes) -> bytes:
        return open_envelope(blob, private_key)

    return _decrypt


@pytest.fixture
def make_config(
    tmp_path: Path, recipient_key_file: Path
) -> Callable[..., PipelineConfig]:
    """Factory for a PipelineConfig with input/working/output under tmp_path."""

    def _make(**overrides: Any) -> PipelineConfig:
        values: dict[str, Any] = {
            "input_path": tmp_path / "input",
            "working_path": tmp_path / "working",
            "output_path": tmp_path / "output",
            "extensions": {"txt", "pdf"},
            "remote_prefix": "/backup",
            "recipient_key_file": recipient_key_file,
            "chunk_size": TEST_CHUNK_SIZE,
        }
        values.update(overrides)
        for key in ("input_path", "working_path", "output_path"):
            Path(values[key]).mkdir(parents=True, exist_ok=True)
        return PipelineConfig(**values)

    return _make

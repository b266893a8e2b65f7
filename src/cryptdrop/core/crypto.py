"""Public-key file encryption for cryptdrop.

This module provides:
- load_recipient_key: Load a recipient RSA public key from a PEM file
- EncryptionGateway: Protocol for the single encrypt operation
- EnvelopeEncryptionGateway: Hybrid RSA-OAEP / AES-256-GCM implementation

Envelope layout (binary form):

    MAGIC (6) || key id (8) || wrapped key length (2, BE) || wrapped key
    || nonce prefix (8) || segment size (4, BE) || segments...

Each segment is the AES-256-GCM encryption of up to segment-size plaintext
bytes with nonce = nonce prefix || segment index (4, BE) and associated data
= header || segment index (4, BE) || final flag (1). The last segment carries
the final flag, so truncated or reordered artifacts fail authentication.

The armored form is the binary envelope base64-encoded in 64-character
lines between ARMOR_BEGIN and ARMOR_END.
"""

from __future__ import annotations

import base64
import contextlib
import hashlib
import logging
import os
import struct
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO, Protocol

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cryptdrop.core.types import IngestError

logger = logging.getLogger(__name__)

MAGIC = b"CDENV1"
KEY_ID_SIZE = 8
NONCE_PREFIX_SIZE = 8
TAG_SIZE = 16
CONTENT_KEY_SIZE = 32  # AES-256
SEGMENT_SIZE = 64 * 1024
MIN_RSA_KEY_SIZE = 2048

ARMOR_BEGIN = b"-----BEGIN CRYPTDROP MESSAGE-----\n"
ARMOR_END = b"-----END CRYPTDROP MESSAGE-----\n"
ARMOR_LINE_BYTES = 48  # 64 base64 characters


class EncryptionError(IngestError):
    """Encryption of a staged file failed."""


class EncryptionGateway(Protocol):
    """Encrypts one file for one recipient."""

    def encrypt(
        self,
        input_path: Path,
        output_path: Path,
        recipient_key: rsa.RSAPublicKey,
        armor: bool,
        integrity_check: bool,
    ) -> None:
        """Encrypt input_path into output_path.

        Raises:
            EncryptionError: If the file could not be encrypted.
        """
        ...


def key_id(public_key: rsa.RSAPublicKey) -> bytes:
    """Short identifier of a public key.

    Returns:
        First 8 bytes of the SHA-256 of the DER SubjectPublicKeyInfo.
    """
    der = public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return hashlib.sha256(der).digest()[:KEY_ID_SIZE]


def oaep_padding() -> padding.OAEP:
    """OAEP padding used to wrap content keys."""
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def segment_nonce(prefix: bytes, index: int) -> bytes:
    """Build the 12-byte GCM nonce of a segment."""
    return prefix + struct.pack(">I", index)


def segment_aad(header: bytes, index: int, final: bool) -> bytes:
    """Associated data binding a segment to its header and position."""
    return header + struct.pack(">IB", index, 1 if final else 0)


def load_recipient_key(path: Path) -> rsa.RSAPublicKey:
    """Load an RSA public key from a PEM file.

    A private key is reduced to its public half so that secret material is
    not kept around.

    Args:
        path: Path to the key file.

    Returns:
        The recipient's public key.

    Raises:
        EncryptionError: If the file is missing or not a usable key.
    """
    try:
        pem = path.read_bytes()
    except FileNotFoundError as e:
        raise EncryptionError(f"Recipient key not found: {path}") from e
    except OSError as e:
        raise EncryptionError(f"Cannot read recipient key {path}: {e}") from e

    try:
        if b"PRIVATE KEY" in pem:
            key = serialization.load_pem_private_key(pem, password=None).public_key()
        else:
            key = serialization.load_pem_public_key(pem)
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Cannot read recipient key {path}: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionError(f"Recipient key {path} is not an RSA key")
    if key.key_size < MIN_RSA_KEY_SIZE:
        raise EncryptionError(
            f"Recipient key {path} is too small ({key.key_size} bits, "
            f"minimum {MIN_RSA_KEY_SIZE})"
        )

    logger.info(f"Loaded recipient key {key_id(key).hex()} ({key.key_size} bits)")
    return key


class _ArmorWriter:
    """Writes base64 lines between armor markers."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._pending = b""
        stream.write(ARMOR_BEGIN)

    def write(self, data: bytes) -> None:
        self._pending += data
        usable = len(self._pending) - len(self._pending) % ARMOR_LINE_BYTES
        for start in range(0, usable, ARMOR_LINE_BYTES):
            line = self._pending[start : start + ARMOR_LINE_BYTES]
            self._stream.write(base64.b64encode(line) + b"\n")
        self._pending = self._pending[usable:]

    def close(self) -> None:
        if self._pending:
            self._stream.write(base64.b64encode(self._pending) + b"\n")
            self._pending = b""
        self._stream.write(ARMOR_END)


class EnvelopeEncryptionGateway:
    """Hybrid encryption of whole files.

    A fresh AES-256 content key is generated per file and wrapped with the
    recipient's RSA key using OAEP. The file is encrypted in authenticated
    segments so memory use stays bounded for large files.

    Ciphertext is always written to an exclusively created temporary
    sibling first and linked into place, so output_path either holds a
    complete artifact or does not exist, and an existing output_path is
    never replaced.
    """

    def __init__(self, segment_size: int = SEGMENT_SIZE) -> None:
        """Initialize the gateway.

        Args:
            segment_size: Plaintext bytes per authenticated segment.
        """
        if segment_size <= 0:
            raise ValueError("segment_size must be positive")
        self._segment_size = segment_size

    def encrypt(
        self,
        input_path: Path,
        output_path: Path,
        recipient_key: rsa.RSAPublicKey,
        armor: bool,
        integrity_check: bool,
    ) -> None:
        """Encrypt input_path for recipient_key and write output_path.

        Args:
            input_path: Plaintext file.
            output_path: Destination of the ciphertext.
            recipient_key: Recipient public key.
            armor: Write base64 armor instead of raw bytes.
            integrity_check: Require authenticated encryption.

        Raises:
            EncryptionError: If encryption fails or integrity protection
                is disabled (every segment is authenticated).
        """
        if not integrity_check:
            raise EncryptionError(
                "Encryption without integrity protection is not supported"
            )
        if not input_path.is_file():
            raise EncryptionError(f"Input file not found: {input_path}")

        tmp_path = output_path.with_name(output_path.name + ".part")
        try:
            dst = open(tmp_path, "xb")
        except FileExistsError as e:
            raise EncryptionError(f"Another encryption is writing {tmp_path}") from e
        except OSError as e:
            raise EncryptionError(f"Failed to encrypt {input_path.name}: {e}") from e

        try:
            with open(input_path, "rb") as src, dst:
                if armor:
                    writer = _ArmorWriter(dst)
                    self._write_envelope(src, writer.write, recipient_key)
                    writer.close()
                else:
                    self._write_envelope(src, dst.write, recipient_key)
            # link() never replaces an existing artifact
            os.link(tmp_path, output_path)
        except FileExistsError as e:
            raise EncryptionError(
                f"Refusing to overwrite existing encrypted file {output_path}"
            ) from e
        except (OSError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt {input_path.name}: {e}") from e
        finally:
            with contextlib.suppress(OSError):
                tmp_path.unlink()

        logger.debug(f"Encrypted {input_path.name} -> {output_path.name}")

    def _write_envelope(
        self, src: BinaryIO, write: Callable[[bytes], object], recipient_key: rsa.RSAPublicKey
    ) -> None:
        content_key = AESGCM.generate_key(bit_length=CONTENT_KEY_SIZE * 8)
        nonce_prefix = os.urandom(NONCE_PREFIX_SIZE)
        wrapped = recipient_key.encrypt(content_key, oaep_padding())

        header = b"".join(
            [
                MAGIC,
                key_id(recipient_key),
                struct.pack(">H", len(wrapped)),
                wrapped,
                nonce_prefix,
                struct.pack(">I", self._segment_size),
            ]
        )
        write(header)

        aesgcm = AESGCM(content_key)
        index = 0
        segment = src.read(self._segment_size)
        while True:
            following = src.read(self._segment_size) if len(segment) == self._segment_size else b""
            final = not following
            write(
                aesgcm.encrypt(
                    segment_nonce(nonce_prefix, index),
                    segment,
                    segment_aad(header, index, final),
                )
            )
            if final:
                return
            segment = following
            index += 1

"""Shared configuration classes for cryptdrop.

This module defines the immutable configuration passed into every component
at startup. Nothing reads configuration from global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024  # 8 MiB
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_API_URL = "https://content.dropboxapi.com"


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


def normalize_extensions(extensions: object) -> frozenset[str]:
    """Normalize a configured extension list.

    Accepts an iterable of strings or a single comma-separated string.
    Leading dots are stripped; case is preserved because matching is
    case-sensitive.

    Args:
        extensions: Extensions as configured.

    Returns:
        Frozen set of extensions without leading dots.

    Raises:
        ConfigError: If the set is empty or contains a non-string.
    """
    if isinstance(extensions, str):
        items: list[object] = list(extensions.split(","))
    else:
        try:
            items = list(extensions)  # type: ignore[call-overload]
        except TypeError as e:
            raise ConfigError(f"extensions must be a list of strings: {e}") from e

    result: set[str] = set()
    for item in items:
        if not isinstance(item, str):
            raise ConfigError(f"extension must be a string, got {item!r}")
        ext = item.strip().lstrip(".")
        if ext:
            result.add(ext)

    if not result:
        raise ConfigError("at least one extension must be configured")
    return frozenset(result)


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for one ingest run.

    Attributes:
        input_path: Root of the tree to walk. Never deleted.
        working_path: Where discovered files are staged.
        output_path: Where encrypted artifacts are written.
        extensions: Extensions (without dot) that select files for ingest.
        remote_prefix: Destination prefix at the remote store.
        recipient_key_file: File holding the recipient's RSA public key (PEM).
        chunk_size: Size of one upload chunk in bytes.
        max_attempts: Upload attempts before giving up.
        armor: Write base64-armored ciphertext.
        integrity_check: Require integrity-protected ciphertext.
        workers: Number of files processed concurrently.
    """

    input_path: Path
    working_path: Path
    output_path: Path
    extensions: frozenset[str]
    remote_prefix: str
    recipient_key_file: Path
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    armor: bool = True
    integrity_check: bool = True
    workers: int = 1

    def __post_init__(self) -> None:
        """Normalize paths, extensions and prefix, then validate."""
        # frozen dataclass: normalize through object.__setattr__
        for name in ("input_path", "working_path", "output_path", "recipient_key_file"):
            value = Path(getattr(self, name)).expanduser().resolve()
            object.__setattr__(self, name, value)
        object.__setattr__(self, "extensions", normalize_extensions(self.extensions))

        prefix = self.remote_prefix.strip()
        if not prefix.startswith("/"):
            prefix = "/" + prefix
        if not prefix.endswith("/"):
            prefix += "/"
        object.__setattr__(self, "remote_prefix", prefix)

        paths = {self.input_path, self.working_path, self.output_path}
        if len(paths) != 3:
            raise ConfigError("input, working and output paths must be distinct")
        for name in ("working_path", "output_path"):
            if getattr(self, name).is_relative_to(self.input_path):
                raise ConfigError(f"{name} must not be inside input_path")
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")


@dataclass
class StoreConfig:
    """Configuration for connecting to the remote store.

    Attributes:
        token: OAuth bearer token for the store.
        api_url: Base URL of the content API.
        timeout: Per-request timeout in seconds.
    """

    token: str = field(repr=False)
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize API URL."""
        if not self.token:
            raise ConfigError("store token must not be empty")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        self.api_url = self.api_url.rstrip("/")

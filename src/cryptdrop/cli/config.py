"""Configuration utilities for cryptdrop CLI.

This module reads the JSON configuration file and turns it into the
immutable PipelineConfig and StoreConfig used by the rest of the program.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from cryptdrop.core.config import ConfigError, PipelineConfig, StoreConfig

CONFIG_ENV_VAR = "CRYPTDROP_CONFIG"
TOKEN_ENV_VAR = "CRYPTDROP_TOKEN"

REQUIRED_KEYS = (
    "input_path",
    "working_path",
    "output_path",
    "extensions",
    "remote_prefix",
    "recipient_key_file",
)
OPTIONAL_KEYS = ("chunk_size", "max_attempts", "armor", "integrity_check", "workers")


def get_config_dir() -> Path:
    """Get the configuration directory for cryptdrop.

    Returns:
        Path to ~/.cryptdrop.
    """
    return Path.home() / ".cryptdrop"


def get_config_file() -> Path:
    """Get the path to the config file."""
    configured = os.environ.get(CONFIG_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    return get_config_dir() / "config.json"


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from config file.

    Raises:
        ConfigError: If the file is missing or not a JSON object.
    """
    config_file = path or get_config_file()
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_file}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must hold a JSON object")
    return data


def build_pipeline_config(data: Mapping[str, Any]) -> PipelineConfig:
    """Build the pipeline configuration from loaded settings.

    Raises:
        ConfigError: If a required key is missing or a value is invalid.
    """
    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ConfigError(f"Missing config keys: {', '.join(missing)}")

    kwargs: dict[str, Any] = {key: data[key] for key in REQUIRED_KEYS}
    kwargs.update({key: data[key] for key in OPTIONAL_KEYS if key in data})

    for key in ("chunk_size", "max_attempts", "workers"):
        if key in kwargs and (isinstance(kwargs[key], bool) or not isinstance(kwargs[key], int)):
            raise ConfigError(f"{key} must be an integer, got {kwargs[key]!r}")
    for key in ("armor", "integrity_check"):
        if key in kwargs and not isinstance(kwargs[key], bool):
            raise ConfigError(f"{key} must be true or false, got {kwargs[key]!r}")
    if not isinstance(kwargs["remote_prefix"], str):
        raise ConfigError("remote_prefix must be a string")

    try:
        return PipelineConfig(**kwargs)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def build_store_config(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> StoreConfig:
    """Build the remote store configuration.

    The token comes from the CRYPTDROP_TOKEN environment variable if set,
    otherwise from the "store" section of the config file.

    Raises:
        ConfigError: If no token is configured or a value is invalid.
    """
    environ = os.environ if environ is None else environ
    section = data.get("store", {})
    if not isinstance(section, dict):
        raise ConfigError("store must be a JSON object")

    token = environ.get(TOKEN_ENV_VAR) or section.get("token")
    if not token:
        raise ConfigError(f"No store token: set {TOKEN_ENV_VAR} or store.token")

    kwargs: dict[str, Any] = {"token": token}
    if "api_url" in section:
        if not isinstance(section["api_url"], str):
            raise ConfigError("store.api_url must be a string")
        kwargs["api_url"] = section["api_url"]
    if "timeout" in section:
        try:
            kwargs["timeout"] = float(section["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"store.timeout must be a number: {e}") from e
    return StoreConfig(**kwargs)

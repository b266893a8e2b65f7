"""Command-line interface for cryptdrop.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Encrypt and upload every matching file under the input root
- check-config: Validate configuration and recipient key
"""

from __future__ import annotations

import click

from cryptdrop.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
)
from cryptdrop.cli.run import check_config, run, setup_logging


@click.group()
@click.version_option(package_name="cryptdrop")
def cli() -> None:
    """cryptdrop - Encrypt files for a recipient key and upload them."""


cli.add_command(run)
cli.add_command(check_config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "setup_logging",
]

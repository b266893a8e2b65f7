"""Run commands for cryptdrop CLI.

Commands:
- run: Walk the input root once, encrypt and upload every matching file
- check-config: Validate configuration and recipient key without running
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from cryptdrop.cli.config import (
    build_pipeline_config,
    build_store_config,
    get_config_file,
    load_config,
)
from cryptdrop.core.config import ConfigError
from cryptdrop.core.crypto import EncryptionError, key_id, load_recipient_key

# Exit codes
EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_path: Path | None = None) -> None:
    """Configure logging to output to stdout and optionally a file.

    Args:
        verbose: Log DEBUG messages too.
        log_path: Optional path of a log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("cryptdrop")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the JSON config file (default: ~/.cryptdrop/config.json).",
)


@click.command()
@config_option
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file.",
)
def run(config_path: Path | None, verbose: bool, log_file: Path | None) -> None:
    """Encrypt and upload every matching file under the input root.

    Walks the input root once, then exits with status 0 if every matching
    file was uploaded, 1 if some file failed, 2 on configuration errors.
    """
    from cryptdrop.core.crypto import EnvelopeEncryptionGateway
    from cryptdrop.ingest import ChunkedUploader, FilePipeline, IngestRunner
    from cryptdrop.store import HTTPRemoteStore

    setup_logging(verbose, log_file)

    try:
        data = load_config(config_path)
        config = build_pipeline_config(data)
        store_config = build_store_config(data)
        recipient_key = load_recipient_key(config.recipient_key_file)
    except (ConfigError, EncryptionError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    with HTTPRemoteStore(store_config) as store:
        uploader = ChunkedUploader(
            store,
            chunk_size=config.chunk_size,
            max_attempts=config.max_attempts,
        )
        pipeline = FilePipeline(config, EnvelopeEncryptionGateway(), recipient_key, uploader)
        try:
            report = IngestRunner(config, pipeline).run()
        except ConfigError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(EXIT_CONFIG)

    click.echo(report.summary())
    if report.has_failures:
        for task in report.failed:
            click.echo(f"  failed: {task.source_path}: {task.error}", err=True)
        sys.exit(EXIT_FAILURES)


@click.command("check-config")
@config_option
def check_config(config_path: Path | None) -> None:
    """Validate the configuration and recipient key.

    Touches no file under the configured paths.
    """
    try:
        data = load_config(config_path)
        config = build_pipeline_config(data)
        store_config = build_store_config(data)
        recipient_key = load_recipient_key(config.recipient_key_file)
    except (ConfigError, EncryptionError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG)

    click.echo(f"Config file:    {config_path or get_config_file()}")
    click.echo(f"Input path:     {config.input_path}")
    click.echo(f"Working path:   {config.working_path}")
    click.echo(f"Output path:    {config.output_path}")
    click.echo(f"Extensions:     {', '.join(sorted(config.extensions))}")
    click.echo(f"Remote prefix:  {config.remote_prefix}")
    click.echo(f"Recipient key:  {key_id(recipient_key).hex()} ({recipient_key.key_size} bits)")
    click.echo(f"Chunk size:     {config.chunk_size} bytes")
    click.echo(f"Max attempts:   {config.max_attempts}")
    click.echo(f"Workers:        {config.workers}")
    click.echo(f"Store URL:      {store_config.api_url}")
    click.echo("Store token:    ***")

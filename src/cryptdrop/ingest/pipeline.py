"""Per-file ingest state machine.

This module provides:
- FilePipeline: Drives one file through staging, encryption, upload and purge

Transitions, each short-circuiting to FAILED on error:

    DISCOVERED --copy to working area, delete source--> STAGED
    STAGED     --encrypt staged file into output area--> ENCRYPTED
    ENCRYPTED  --upload encrypted artifact-------------> UPLOADED
    UPLOADED   --delete staged and encrypted copies----> PURGED

A failed task keeps every file it has produced so far; nothing is rolled
back. The source is deleted only once a complete staged copy exists, and
the staged copy is deleted only after the upload was committed. Staged
and encrypted files are created exclusively, so files sharing a name never
write over each other.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import rsa

from cryptdrop.core.config import ConfigError, PipelineConfig
from cryptdrop.core.crypto import EncryptionError, EncryptionGateway
from cryptdrop.core.types import Stage
from cryptdrop.ingest.types import FileTask, StageError, UploadError, UploadUsageError
from cryptdrop.ingest.upload import ChunkedUploader

logger = logging.getLogger(__name__)


class FilePipeline:
    """Runs the ingest state machine for one file at a time.

    A FilePipeline holds no per-file state, so the same instance may run
    several files concurrently as long as each file is handled by a single
    thread.
    """

    def __init__(
        self,
        config: PipelineConfig,
        gateway: EncryptionGateway,
        recipient_key: rsa.RSAPublicKey,
        uploader: ChunkedUploader,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Pipeline configuration.
            gateway: Encryption implementation.
            recipient_key: Public key the files are encrypted for.
            uploader: Uploader for encrypted artifacts.
        """
        self._config = config
        self._gateway = gateway
        self._recipient_key = recipient_key
        self._uploader = uploader

    def prepare(self) -> None:
        """Check the input root and create the working and output directories.

        Raises:
            ConfigError: If the input root is not a directory, or a work area
                cannot be created or is not writable.
        """
        if not self._config.input_path.is_dir():
            raise ConfigError(f"input_path is not a directory: {self._config.input_path}")

        for path in (self._config.working_path, self._config.output_path):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigError(f"Cannot create {path}: {e}") from e
            if not os.access(path, os.W_OK | os.X_OK):
                raise ConfigError(f"{path} is not writable")

    def process(self, source_path: Path) -> FileTask:
        """Run one discovered file through the whole pipeline.

        Never raises for stage failures: the returned task is either
        PURGED or FAILED with failed_at and error set.

        Args:
            source_path: The discovered file.

        Returns:
            The task in its terminal stage.
        """
        task = FileTask.for_source(source_path, self._config)
        logger.info(f"Processing {source_path}")

        try:
            self._stage(task)
            task.advance(Stage.STAGED)

            self._encrypt(task)
            task.advance(Stage.ENCRYPTED)

            self._upload(task)
            task.advance(Stage.UPLOADED)
        except (StageError, EncryptionError, UploadError, UploadUsageError) as e:
            task.fail(e)
            logger.error(
                f"Failed to process {source_path.name} at stage "
                f"{task.failed_at.value if task.failed_at else '?'}: {e}"
            )
            return task

        self._purge(task)
        task.advance(Stage.PURGED)
        logger.info(f"Done with {source_path.name} -> {task.remote_key}")
        return task

    def _stage(self, task: FileTask) -> None:
        """Copy the source into the working area, then delete the source."""
        source, staged = task.source_path, task.staged_path
        logger.info(f"Moving file to work folder: {source}")

        try:
            src = open(source, "rb")
        except OSError as e:
            raise StageError(f"Failed to open {source}: {e}") from e

        # Exclusive create: two sources sharing a name never share a staged file
        with src:
            try:
                dst = open(staged, "xb")
            except FileExistsError as e:
                raise StageError(f"Refusing to overwrite existing staged file {staged}") from e
            except OSError as e:
                raise StageError(f"Failed to create {staged}: {e}") from e

            try:
                with dst:
                    shutil.copyfileobj(src, dst)
                shutil.copystat(source, staged)
            except OSError as e:
                with contextlib.suppress(OSError):
                    staged.unlink()
                raise StageError(f"Failed to copy {source} to {staged}: {e}") from e

        try:
            source.unlink()
        except FileNotFoundError:
            # Removed by someone else; the staged copy is now the only one
            logger.warning(f"{source} disappeared after copying")
        except OSError as e:
            # Keep a single copy: drop the staged one, the source is intact
            with contextlib.suppress(OSError):
                staged.unlink()
            raise StageError(f"Failed to remove {source} after copying: {e}") from e

    def _encrypt(self, task: FileTask) -> None:
        """Encrypt the staged file into the output area."""
        logger.info(f"Encrypting file: {task.staged_path.name}")
        if task.output_path.exists():
            raise EncryptionError(
                f"Refusing to overwrite existing encrypted file {task.output_path}"
            )
        self._gateway.encrypt(
            task.staged_path,
            task.output_path,
            self._recipient_key,
            armor=self._config.armor,
            integrity_check=self._config.integrity_check,
        )

    def _upload(self, task: FileTask) -> None:
        """Transfer the encrypted artifact to the remote store."""
        self._uploader.upload(task.output_path, task.remote_key)

    def _purge(self, task: FileTask) -> None:
        """Delete local intermediate copies. Best effort; failures are logged."""
        for path in (task.staged_path, task.output_path):
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove {path} after upload: {e}")

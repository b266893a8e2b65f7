"""Shared types and dataclasses for ingest operations.

This module provides:
- TraversalError, StageError, UploadError, UploadUsageError: Exception classes
- FileTask: One file moving through the pipeline
- UploadSession: Resumable-transfer state of one upload
- UploadProgress: Progress report after each committed chunk
- RunReport: Outcome of one traversal
- Type aliases for callbacks
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cryptdrop.core.config import PipelineConfig
from cryptdrop.core.types import ENCRYPTED_SUFFIX, WORKING_SUFFIX, IngestError, Stage
from cryptdrop.store.faults import RemoteFault

logger = logging.getLogger(__name__)


class TraversalError(IngestError):
    """A single entry of the tree could not be visited."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class StageError(IngestError):
    """Moving a discovered file into the working area failed."""


class UploadErrorKind(Enum):
    """Why an upload gave up."""

    NON_RETRYABLE = "non_retryable"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


class UploadError(IngestError):
    """Terminal upload failure.

    Attributes:
        kind: Why the upload gave up.
        fault: The most recent remote fault, if the failure came from the store.
        attempts: Number of attempts made.
    """

    def __init__(
        self,
        message: str,
        kind: UploadErrorKind,
        fault: RemoteFault | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.fault = fault
        self.attempts = attempts


class UploadUsageError(IngestError, ValueError):
    """The upload was called with input it does not accept."""


@dataclass
class FileTask:
    """A file moving through the ingest pipeline.

    Attributes:
        source_path: Where the file was discovered.
        staged_path: Copy of the plaintext in the working area.
        output_path: Encrypted artifact in the output area.
        remote_key: Destination key at the remote store.
        stage: Current lifecycle stage.
        failed_at: Last stage reached before the task failed.
        error: Message of the fault that stopped the task.
    """

    source_path: Path
    staged_path: Path
    output_path: Path
    remote_key: str
    stage: Stage = Stage.DISCOVERED
    failed_at: Stage | None = None
    error: str | None = None

    @classmethod
    def for_source(cls, source_path: Path, config: PipelineConfig) -> FileTask:
        """Derive all paths of a task from the discovered file.

        Args:
            source_path: Path of the discovered file.
            config: Pipeline configuration.

        Returns:
            A task in the DISCOVERED stage.
        """
        staged_name = source_path.name + WORKING_SUFFIX
        output_name = staged_name[: -len(WORKING_SUFFIX)] + ENCRYPTED_SUFFIX
        return cls(
            source_path=source_path,
            staged_path=config.working_path / staged_name,
            output_path=config.output_path / output_name,
            remote_key=config.remote_prefix + output_name,
        )

    def advance(self, stage: Stage) -> None:
        """Move to the next stage."""
        logger.debug(f"{self.source_path.name}: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def fail(self, error: Exception) -> None:
        """Freeze the task at its current stage."""
        self.failed_at = self.stage
        self.error = str(error)
        self.stage = Stage.FAILED


@dataclass
class UploadSession:
    """Resumable-transfer state of one upload.

    committed_offset only moves forward, by advance(), except when the
    server reports its authoritative offset through correct().

    Attributes:
        remote_key: Destination key.
        total_size: Size of the uploaded file.
        session_id: Handle issued by the store on the first chunk.
        committed_offset: Bytes the store has durably accepted.
        attempt: Attempts made so far.
    """

    remote_key: str
    total_size: int
    session_id: str | None = None
    committed_offset: int = 0
    attempt: int = 0

    @property
    def remaining(self) -> int:
        """Bytes not yet committed."""
        return self.total_size - self.committed_offset

    def advance(self, nbytes: int) -> None:
        """Record nbytes as accepted by the store."""
        if nbytes < 0:
            raise ValueError(f"cannot advance by {nbytes} bytes")
        self.committed_offset += nbytes

    def correct(self, offset: int) -> None:
        """Adopt the offset reported by the store.

        Raises:
            ValueError: If the offset lies outside the file.
        """
        if not 0 <= offset <= self.total_size:
            raise ValueError(
                f"server offset {offset} outside file of {self.total_size} bytes"
            )
        if offset < self.committed_offset:
            logger.warning(
                f"Server offset {offset} is behind local offset "
                f"{self.committed_offset} for {self.remote_key}"
            )
        self.committed_offset = offset


@dataclass
class UploadProgress:
    """Progress of an upload after a committed chunk."""

    remote_key: str
    committed: int
    total: int

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total == 0:
            return 100.0
        return (self.committed / self.total) * 100


# Type alias for progress callback
ProgressCallback = Callable[[UploadProgress], None]


@dataclass
class RunReport:
    """Outcome of one traversal.

    Attributes:
        visited: Regular files visited.
        skipped: Regular files whose extension is not configured.
        symlinks: Symbolic links observed and left alone.
        traversal_errors: Entries that could not be visited.
        purged: Files that went through the whole pipeline.
        failed: Tasks frozen at FAILED.
        pruned_dirs: Empty directories removed.
    """

    visited: int = 0
    skipped: int = 0
    symlinks: int = 0
    traversal_errors: int = 0
    purged: int = 0
    failed: list[FileTask] = field(default_factory=list)
    pruned_dirs: int = 0

    @property
    def has_failures(self) -> bool:
        """Check if any file failed."""
        return len(self.failed) > 0

    def summary(self) -> str:
        """One-line summary of the run."""
        return (
            f"{self.visited} files visited, {self.purged} uploaded, "
            f"{len(self.failed)} failed, {self.skipped} skipped, "
            f"{self.symlinks} symlinks, {self.traversal_errors} errors, "
            f"{self.pruned_dirs} directories pruned"
        )

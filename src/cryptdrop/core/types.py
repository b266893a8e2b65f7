"""Shared types for cryptdrop.

This module defines enums used by both the pipeline and the CLI.
"""

from __future__ import annotations

from enum import Enum

# File name suffixes for intermediate artifacts
WORKING_SUFFIX = ".work"
ENCRYPTED_SUFFIX = ".enc"


class Stage(str, Enum):
    """Lifecycle stage of a file moving through the ingest pipeline.

    DISCOVERED -> STAGED -> ENCRYPTED -> UPLOADED -> PURGED, or FAILED
    from any non-terminal stage.
    """

    DISCOVERED = "discovered"
    STAGED = "staged"
    ENCRYPTED = "encrypted"
    UPLOADED = "uploaded"
    PURGED = "purged"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition can happen from this stage."""
        return self in (Stage.PURGED, Stage.FAILED)


class IngestError(Exception):
    """Base exception for ingest failures."""

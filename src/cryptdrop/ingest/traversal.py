"""Directory traversal with empty-directory pruning.

This module provides:
- walk: Lazy depth-first walk yielding WalkEntry items
- TraversalDriver: Feeds matching files to a handler, prunes empty directories
- file_extension, format_size: Helpers for matching and logging

Architecture:
    walk() yields every entry under the root in pre-order and, once all
    children of a directory have been yielded, a DIRECTORY_DONE marker for
    it. TraversalDriver hands matching regular files to its handler and,
    at each DIRECTORY_DONE, deletes the directory if it is now empty and
    is not the root.

    Symbolic links are reported but never followed or processed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path

from cryptdrop.ingest.types import RunReport, TraversalError

logger = logging.getLogger(__name__)


class EntryKind(Enum):
    """Kind of a walked entry."""

    FILE = auto()
    DIRECTORY = auto()
    DIRECTORY_DONE = auto()  # Post-order marker, all children yielded
    SYMLINK = auto()
    OTHER = auto()  # Sockets, FIFOs, devices
    ERROR = auto()


@dataclass(frozen=True)
class WalkEntry:
    """One entry produced by walk().

    Attributes:
        path: Absolute path of the entry.
        kind: What the entry is.
        size: Size in bytes (FILE only).
        error: Why the entry could not be visited (ERROR only).
    """

    path: Path
    kind: EntryKind
    size: int = 0
    error: TraversalError | None = None


def file_extension(name: str) -> str:
    """Return the text after the last dot of a file name, or "" if none."""
    _, dot, ext = name.rpartition(".")
    return ext if dot else ""


def format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string (binary units)."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    value = float(size_bytes)
    for unit in "KMGTP":
        value /= 1024
        if value < 1024:
            return f"{value:.1f} {unit}iB"
    return f"{value / 1024:.1f} EiB"


def _classify(entry: os.DirEntry[str]) -> WalkEntry:
    path = Path(entry.path)
    try:
        if entry.is_symlink():
            return WalkEntry(path, EntryKind.SYMLINK)
        if entry.is_dir(follow_symlinks=False):
            return WalkEntry(path, EntryKind.DIRECTORY)
        if entry.is_file(follow_symlinks=False):
            size = entry.stat(follow_symlinks=False).st_size
            return WalkEntry(path, EntryKind.FILE, size=size)
    except OSError as e:
        return WalkEntry(path, EntryKind.ERROR, error=TraversalError(path, str(e)))
    return WalkEntry(path, EntryKind.OTHER)


def _walk_dir(directory: Path) -> Iterator[WalkEntry]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        yield WalkEntry(directory, EntryKind.ERROR, error=TraversalError(directory, str(e)))
        entries = []

    for dir_entry in entries:
        entry = _classify(dir_entry)
        yield entry
        if entry.kind is EntryKind.DIRECTORY:
            yield from _walk_dir(entry.path)

    yield WalkEntry(directory, EntryKind.DIRECTORY_DONE)


def walk(root: Path) -> Iterator[WalkEntry]:
    """Walk a directory tree depth-first.

    Entries are produced lazily in pre-order, sorted by name within a
    directory. Each directory (root included) is followed by its children
    and then by a DIRECTORY_DONE marker. Symbolic links are yielded as
    SYMLINK and never followed.

    Args:
        root: Directory to walk.

    Yields:
        WalkEntry items.
    """
    root = Path(root)
    if root.is_symlink() or not root.is_dir():
        yield WalkEntry(root, EntryKind.ERROR, error=TraversalError(root, "not a directory"))
        return

    yield WalkEntry(root, EntryKind.DIRECTORY)
    yield from _walk_dir(root)


class TraversalDriver:
    """Walks the input root and feeds matching files to a handler.

    Usage:
        driver = TraversalDriver(config.input_path, config.extensions)
        report = driver.run(pipeline.process)
    """

    def __init__(self, root: Path, extensions: frozenset[str]) -> None:
        """Initialize the driver.

        Args:
            root: Traversal root. Never deleted.
            extensions: Extensions (without dot) selecting files, case-sensitive.
        """
        self._root = Path(root)
        self._extensions = frozenset(extensions)

    def matches(self, path: Path) -> bool:
        """Check if a file's extension is configured (exact, case-sensitive)."""
        return file_extension(path.name) in self._extensions

    def run(
        self,
        on_file: Callable[[Path], object],
        before_prune: Callable[[Path], None] | None = None,
        report: RunReport | None = None,
    ) -> RunReport:
        """Walk the tree once.

        Args:
            on_file: Called with every matching regular file. Runs to
                completion before the walk continues.
            before_prune: Called with each directory after all of its
                children were visited and before its emptiness is checked.
            report: Report to update (a new one is created if omitted).

        Returns:
            The updated report.
        """
        report = report if report is not None else RunReport()
        logger.info(f"Walking {self._root}")

        for entry in walk(self._root):
            if entry.kind is EntryKind.FILE:
                report.visited += 1
                logger.info(f"Visiting file: {entry.path} ({format_size(entry.size)})")
                if self.matches(entry.path):
                    on_file(entry.path)
                else:
                    report.skipped += 1
            elif entry.kind is EntryKind.SYMLINK:
                report.symlinks += 1
                logger.info(f"Symbolic link: {entry.path}")
            elif entry.kind is EntryKind.OTHER:
                logger.info(f"Other file: {entry.path}")
            elif entry.kind is EntryKind.ERROR:
                report.traversal_errors += 1
                logger.warning(f"Cannot visit {entry.error}")
            elif entry.kind is EntryKind.DIRECTORY:
                logger.debug(f"Directory: {entry.path}")
            elif entry.kind is EntryKind.DIRECTORY_DONE:
                if before_prune:
                    before_prune(entry.path)
                if self.prune_if_empty(entry.path):
                    report.pruned_dirs += 1

        return report

    def prune_if_empty(self, directory: Path) -> bool:
        """Delete a directory if it is empty and not the root.

        Emptiness is checked now, not remembered from the walk.

        Args:
            directory: Directory to check.

        Returns:
            True if the directory was deleted.
        """
        if directory == self._root:
            return False
        try:
            with os.scandir(directory) as it:
                if next(it, None) is not None:
                    return False
            directory.rmdir()
        except OSError as e:
            logger.warning(f"Cannot prune {directory}: {e}")
            return False
        logger.info(f"Removed empty directory {directory}")
        return True

"""Tests for directory traversal and pruning."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from cryptdrop.ingest.traversal import (
    EntryKind,
    TraversalDriver,
    file_extension,
    format_size,
    walk,
)
from cryptdrop.ingest.types import RunReport


def touch(path: Path, content: bytes = b"data") -> Path:
    """Create a file and its parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class TestHelpers:
    """Tests for file_extension and format_size."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("report.txt", "txt"),
            ("archive.tar.gz", "gz"),
            ("README", ""),
            (".bashrc", "bashrc"),
            ("trailing.", ""),
        ],
    )
    def test_file_extension(self, name: str, expected: str) -> None:
        """The extension is the text after the last dot."""
        assert file_extension(name) == expected

    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, "0 B"), (1023, "1023 B"), (1024, "1.0 KiB"), (1536, "1.5 KiB"), (5 * 1024**3, "5.0 GiB")],
    )
    def test_format_size(self, size: int, expected: str) -> None:
        """Sizes are shown in binary units."""
        assert format_size(size) == expected


class TestWalk:
    """Tests for walk()."""

    def test_pre_order_with_done_markers(self, tmp_path: Path) -> None:
        """Directories come before their children and are closed after them."""
        touch(tmp_path / "a" / "one.txt")
        touch(tmp_path / "b.txt")

        entries = [(e.kind, e.path.relative_to(tmp_path).as_posix()) for e in walk(tmp_path)]

        assert entries == [
            (EntryKind.DIRECTORY, "."),
            (EntryKind.DIRECTORY, "a"),
            (EntryKind.FILE, "a/one.txt"),
            (EntryKind.DIRECTORY_DONE, "a"),
            (EntryKind.FILE, "b.txt"),
            (EntryKind.DIRECTORY_DONE, "."),
        ]

    def test_file_size(self, tmp_path: Path) -> None:
        """Files carry their size."""
        touch(tmp_path / "f.txt", b"12345")
        sizes = {e.path.name: e.size for e in walk(tmp_path) if e.kind is EntryKind.FILE}
        assert sizes == {"f.txt": 5}

    def test_symlinks_not_followed(self, tmp_path: Path) -> None:
        """Links are reported and never descended into."""
        target = tmp_path / "elsewhere"
        touch(target / "inside.txt")
        root = tmp_path / "root"
        root.mkdir()
        os.symlink(target, root / "dirlink")
        os.symlink(target / "inside.txt", root / "filelink.txt")

        entries = list(walk(root))

        kinds = {e.path.name: e.kind for e in entries}
        assert kinds["dirlink"] is EntryKind.SYMLINK
        assert kinds["filelink.txt"] is EntryKind.SYMLINK
        assert "inside.txt" not in kinds

    def test_missing_root(self, tmp_path: Path) -> None:
        """A missing root yields a single error entry."""
        entries = list(walk(tmp_path / "missing"))
        assert len(entries) == 1
        assert entries[0].kind is EntryKind.ERROR

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    def test_unreadable_directory_continues(self, tmp_path: Path) -> None:
        """A listing failure is reported and the walk goes on."""
        locked = tmp_path / "locked"
        touch(locked / "hidden.txt")
        touch(tmp_path / "visible.txt")
        locked.chmod(0)
        try:
            entries = list(walk(tmp_path))
        finally:
            locked.chmod(0o755)

        errors = [e for e in entries if e.kind is EntryKind.ERROR]
        assert [e.path for e in errors] == [locked]
        assert any(e.path.name == "visible.txt" for e in entries)
        assert (EntryKind.DIRECTORY_DONE, locked) in [(e.kind, e.path) for e in entries]


class TestTraversalDriver:
    """Tests for TraversalDriver."""

    def test_matching_is_exact_and_case_sensitive(self, tmp_path: Path) -> None:
        """Only exact extension matches reach the handler."""
        for name in ("a.txt", "b.TXT", "c.txt.bak", "d.pdf", "e"):
            touch(tmp_path / name)
        seen: list[str] = []

        report = TraversalDriver(tmp_path, frozenset({"txt", "pdf"})).run(
            lambda p: seen.append(p.name)
        )

        assert seen == ["a.txt", "d.pdf"]
        assert report.visited == 5
        assert report.skipped == 3

    def test_unmatched_files_untouched(self, tmp_path: Path) -> None:
        """Unmatched files stay where they are, bit-identical."""
        image = touch(tmp_path / "a" / "image.png", b"\x89PNG")

        TraversalDriver(tmp_path, frozenset({"txt"})).run(lambda p: None)

        assert image.read_bytes() == b"\x89PNG"

    def test_prunes_directories_emptied_by_handler(self, tmp_path: Path) -> None:
        """A directory emptied during the walk is removed, bottom-up."""
        touch(tmp_path / "a" / "b" / "report.txt")

        report = TraversalDriver(tmp_path, frozenset({"txt"})).run(lambda p: p.unlink())

        assert not (tmp_path / "a").exists()
        assert report.pruned_dirs == 2
        assert tmp_path.exists()

    def test_prunes_already_empty_directories(self, tmp_path: Path) -> None:
        """Empty directories are removed even without matching files."""
        (tmp_path / "empty" / "nested").mkdir(parents=True)

        TraversalDriver(tmp_path, frozenset({"txt"})).run(lambda p: None)

        assert list(tmp_path.iterdir()) == []

    def test_keeps_non_empty_directories(self, tmp_path: Path) -> None:
        """A directory still holding files is kept."""
        touch(tmp_path / "a" / "report.txt")
        touch(tmp_path / "a" / "image.png")

        report = TraversalDriver(tmp_path, frozenset({"txt"})).run(lambda p: p.unlink())

        assert (tmp_path / "a" / "image.png").exists()
        assert report.pruned_dirs == 0

    def test_root_never_pruned(self, tmp_path: Path) -> None:
        """The root survives even when it ends up empty."""
        root = tmp_path / "input"
        touch(root / "report.txt")

        TraversalDriver(root, frozenset({"txt"})).run(lambda p: p.unlink())

        assert root.is_dir()

    def test_symlinks_counted_not_processed(self, tmp_path: Path) -> None:
        """Links to matching files are never handed to the handler."""
        target = touch(tmp_path / "outside" / "real.txt")
        root = tmp_path / "root"
        root.mkdir()
        os.symlink(target, root / "link.txt")
        seen: list[Path] = []

        report = TraversalDriver(root, frozenset({"txt"})).run(seen.append)

        assert seen == []
        assert report.symlinks == 1
        assert (root / "link.txt").is_symlink()
        assert target.exists()

    def test_before_prune_called_per_directory(self, tmp_path: Path) -> None:
        """before_prune runs for each directory, children first."""
        touch(tmp_path / "a" / "b" / "x.png")
        order: list[str] = []

        TraversalDriver(tmp_path, frozenset({"txt"})).run(
            lambda p: None, before_prune=lambda d: order.append(d.name)
        )

        assert order == ["b", "a", tmp_path.name]

    def test_updates_given_report(self, tmp_path: Path) -> None:
        """An existing report is updated in place."""
        touch(tmp_path / "a.txt")
        report = RunReport(visited=3)

        result = TraversalDriver(tmp_path, frozenset({"txt"})).run(lambda p: None, report=report)

        assert result is report
        assert report.visited == 4

    def test_missing_root_counted_as_error(self, tmp_path: Path) -> None:
        """A missing root is a traversal error, not an exception."""
        report = TraversalDriver(tmp_path / "missing", frozenset({"txt"})).run(lambda p: None)
        assert report.traversal_errors == 1

    def test_prune_if_empty(self, tmp_path: Path) -> None:
        """Emptiness is checked at call time."""
        driver = TraversalDriver(tmp_path, frozenset({"txt"}))
        full = touch(tmp_path / "full" / "x").parent
        empty = tmp_path / "empty"
        empty.mkdir()

        assert driver.prune_if_empty(full) is False
        assert driver.prune_if_empty(empty) is True
        assert driver.prune_if_empty(tmp_path) is False
        assert not empty.exists()

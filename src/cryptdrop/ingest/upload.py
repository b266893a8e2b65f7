"""Resumable chunked upload to the remote store.

This module provides:
- ChunkedUploader: Three-phase (start/append/finish) upload with retry

Chunked uploads have three phases, each of which carries file bytes:

    (1)  Start: open a session with the first chunk, get a session id
    (2) Append: send further chunks at the committed offset
    (3) Finish: send the remainder and commit the object

The committed offset decides which phase an attempt resumes in. Every
attempt re-opens the file and seeks to that offset.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, TypeVar

from cryptdrop.core.config import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_ATTEMPTS
from cryptdrop.ingest.types import (
    ProgressCallback,
    UploadError,
    UploadErrorKind,
    UploadProgress,
    UploadSession,
    UploadUsageError,
)
from cryptdrop.store.api import CommitInfo, ObjectMetadata, RemoteStore
from cryptdrop.store.faults import DEFAULT_RETRY_AFTER, FaultKind, RemoteStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def log_progress(progress: UploadProgress) -> None:
    """Default progress callback: one INFO line per committed chunk."""
    logger.info(
        f"Uploaded {progress.committed:12d} / {progress.total:12d} bytes "
        f"({progress.percent:5.2f}%) of {progress.remote_key}"
    )


class ChunkedUploader:
    """Uploads files to a remote store over resumable upload sessions.

    The uploader owns the UploadSession for the duration of one call and
    keeps nothing between calls, so one instance can serve many uploads
    (also from several threads).
    """

    def __init__(
        self,
        store: RemoteStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        progress_callback: ProgressCallback | None = log_progress,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the uploader.

        Args:
            store: Remote store to upload to.
            chunk_size: Bytes per chunk request.
            max_attempts: Attempts before an upload gives up.
            progress_callback: Called after every committed chunk.
            sleep: Sleep function used for server-requested backoff.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._store = store
        self._chunk_size = chunk_size
        self._max_attempts = max_attempts
        self._progress_callback = progress_callback
        self._sleep = sleep

    def upload(self, local_path: Path, remote_key: str) -> ObjectMetadata:
        """Upload a file, choosing the chunked or single-request path by size.

        Args:
            local_path: File to upload.
            remote_key: Destination key at the store.

        Returns:
            Metadata of the committed object.

        Raises:
            UploadError: If the upload failed terminally.
        """
        size = self._file_size(local_path)
        if size < self._chunk_size:
            return self.upload_small(local_path, remote_key)
        return self.upload_chunked(local_path, remote_key)

    def upload_chunked(self, local_path: Path, remote_key: str) -> ObjectMetadata:
        """Upload a file of at least one chunk over an upload session.

        Args:
            local_path: File to upload.
            remote_key: Destination key at the store.

        Returns:
            Metadata of the committed object.

        Raises:
            UploadUsageError: If the file is smaller than one chunk.
            UploadError: If the upload failed terminally.
        """
        size = self._file_size(local_path)
        if size < self._chunk_size:
            raise UploadUsageError(
                f"{local_path.name} is {size} bytes, smaller than one "
                f"chunk ({self._chunk_size} bytes)"
            )

        logger.info(f"Uploading {local_path.name} to {remote_key} ({size} bytes)")
        session = UploadSession(remote_key=remote_key, total_size=size)
        commit = self._commit_info(local_path, remote_key)
        return self._run_attempts(
            local_path, session, lambda: self._attempt_chunked(local_path, session, commit)
        )

    def upload_small(self, local_path: Path, remote_key: str) -> ObjectMetadata:
        """Upload a file smaller than one chunk in a single request.

        Args:
            local_path: File to upload.
            remote_key: Destination key at the store.

        Returns:
            Metadata of the committed object.

        Raises:
            UploadError: If the upload failed terminally.
        """
        size = self._file_size(local_path)
        logger.info(f"Uploading {local_path.name} to {remote_key} ({size} bytes, single request)")
        session = UploadSession(remote_key=remote_key, total_size=size)
        commit = self._commit_info(local_path, remote_key)

        def attempt() -> ObjectMetadata:
            data = local_path.read_bytes()
            if len(data) != session.total_size:
                raise self._changed_error(local_path, session)
            metadata = self._store.upload(data, commit)
            session.advance(len(data))
            self._report(session)
            return metadata

        return self._run_attempts(local_path, session, attempt)

    def _run_attempts(
        self,
        local_path: Path,
        session: UploadSession,
        attempt: Callable[[], T],
    ) -> T:
        """Run attempt() until it succeeds, fails terminally or attempts run out."""
        last_error: RemoteStoreError | None = None

        while session.attempt < self._max_attempts:
            session.attempt += 1
            if session.attempt > 1:
                logger.info(
                    f"Retrying upload of {session.remote_key} "
                    f"({session.attempt} / {self._max_attempts} attempts)"
                )

            try:
                return attempt()
            except RemoteStoreError as e:
                last_error = e
                self._handle_fault(session, e)
            except OSError as e:
                raise UploadError(
                    f"Error reading from file {local_path}: {e}",
                    UploadErrorKind.NON_RETRYABLE,
                    attempts=session.attempt,
                ) from e

        fault = last_error.fault if last_error else None
        logger.error(
            f"Maxed out upload attempts for {session.remote_key}. "
            f"Most recent error: {fault}"
        )
        raise UploadError(
            f"Upload of {session.remote_key} failed after "
            f"{session.attempt} attempts: {fault}",
            UploadErrorKind.ATTEMPTS_EXHAUSTED,
            fault=fault,
            attempts=session.attempt,
        ) from last_error

    def _handle_fault(self, session: UploadSession, error: RemoteStoreError) -> None:
        """Prepare the session for the next attempt, or raise if terminal."""
        fault = error.fault

        if fault.kind is FaultKind.RETRY_LATER:
            delay = fault.retry_after if fault.retry_after is not None else DEFAULT_RETRY_AFTER
            logger.warning(f"Store asked to retry later: {fault}")
            # No point in waiting if no attempt is left
            if session.attempt < self._max_attempts:
                self._sleep(delay)
            return

        if fault.kind is FaultKind.TRANSIENT_NETWORK:
            logger.warning(f"Network error uploading {session.remote_key}: {fault}")
            return

        if (
            fault.kind is FaultKind.OFFSET_MISMATCH
            and session.session_id is not None
            and fault.correct_offset is not None
        ):
            try:
                session.correct(fault.correct_offset)
            except ValueError as e:
                raise UploadError(
                    f"Error uploading {session.remote_key}: {e}",
                    UploadErrorKind.NON_RETRYABLE,
                    fault=fault,
                    attempts=session.attempt,
                ) from error
            logger.warning(
                f"Offset mismatch for {session.remote_key}, resuming at "
                f"{session.committed_offset}"
            )
            return

        raise UploadError(
            f"Error uploading {session.remote_key}: {fault}",
            UploadErrorKind.NON_RETRYABLE,
            fault=fault,
            attempts=session.attempt,
        ) from error

    def _attempt_chunked(
        self, local_path: Path, session: UploadSession, commit: CommitInfo
    ) -> ObjectMetadata:
        """One pass over the three phases, resuming at the committed offset."""
        with open(local_path, "rb") as f:
            f.seek(session.committed_offset)

            # (1) Start
            if session.session_id is None:
                data = self._read_exact(f, self._chunk_size, local_path, session)
                session.session_id = self._store.start_session(data)
                session.advance(len(data))
                self._report(session)

            # (2) Append
            while session.remaining > self._chunk_size:
                data = self._read_exact(f, self._chunk_size, local_path, session)
                self._store.append(session.session_id, session.committed_offset, data)
                session.advance(len(data))
                self._report(session)

            # (3) Finish
            data = self._read_exact(f, session.remaining, local_path, session)
            metadata = self._store.finish(
                session.session_id, session.committed_offset, data, commit
            )
            session.advance(len(data))
            self._report(session)

        logger.info(f"Committed {metadata.path} ({metadata.size} bytes)")
        return metadata

    def _read_exact(
        self, f: IO[bytes], size: int, local_path: Path, session: UploadSession
    ) -> bytes:
        data = f.read(size)
        if len(data) != size:
            raise self._changed_error(local_path, session)
        return data

    def _changed_error(self, local_path: Path, session: UploadSession) -> UploadError:
        return UploadError(
            f"{local_path} changed size during upload",
            UploadErrorKind.NON_RETRYABLE,
            attempts=session.attempt,
        )

    def _report(self, session: UploadSession) -> None:
        if self._progress_callback:
            self._progress_callback(
                UploadProgress(
                    remote_key=session.remote_key,
                    committed=session.committed_offset,
                    total=session.total_size,
                )
            )

    def _file_size(self, local_path: Path) -> int:
        return self._stat(local_path).st_size

    def _commit_info(self, local_path: Path, remote_key: str) -> CommitInfo:
        mtime = self._stat(local_path).st_mtime
        return CommitInfo(
            path=remote_key,
            client_modified=datetime.fromtimestamp(mtime, tz=UTC),
        )

    def _stat(self, local_path: Path) -> os.stat_result:
        try:
            return local_path.stat()
        except OSError as e:
            raise UploadError(
                f"Error reading from file {local_path}: {e}",
                UploadErrorKind.NON_RETRYABLE,
            ) from e

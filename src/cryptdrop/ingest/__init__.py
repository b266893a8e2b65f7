"""Ingest operations: traversal, per-file pipeline and chunked upload.

Architecture:
    TraversalDriver → FilePipeline → (EncryptionGateway, ChunkedUploader)

Components:
- **TraversalDriver**: Walks the input root, prunes emptied directories
- **FilePipeline**: Stages, encrypts, uploads and purges one file
- **ChunkedUploader**: Resumable start/append/finish upload with retry
- **IngestRunner**: Wires the above for one run, optionally on a thread pool
"""

from cryptdrop.ingest.pipeline import FilePipeline
from cryptdrop.ingest.runner import IngestRunner
from cryptdrop.ingest.traversal import (
    EntryKind,
    TraversalDriver,
    WalkEntry,
    file_extension,
    format_size,
    walk,
)
from cryptdrop.ingest.types import (
    FileTask,
    ProgressCallback,
    RunReport,
    StageError,
    TraversalError,
    UploadError,
    UploadErrorKind,
    UploadProgress,
    UploadSession,
    UploadUsageError,
)
from cryptdrop.ingest.upload import ChunkedUploader, log_progress

__all__ = [
    # Pipeline
    "FilePipeline",
    "IngestRunner",
    # Traversal
    "EntryKind",
    "TraversalDriver",
    "WalkEntry",
    "file_extension",
    "format_size",
    "walk",
    # Upload
    "ChunkedUploader",
    "log_progress",
    # Types
    "FileTask",
    "ProgressCallback",
    "RunReport",
    "StageError",
    "TraversalError",
    "UploadError",
    "UploadErrorKind",
    "UploadProgress",
    "UploadSession",
    "UploadUsageError",
]

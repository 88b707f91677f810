"""
Backup repository abstraction for segsnap.

This module provides a pluggable storage backend for snapshots:
- Local filesystem (default)
- S3 (via aiobotocore)
- In-memory (for testing)

Invariants:
    - Copies are atomic per file
    - All backend failures surface as RepositoryIOError

How to change safely:
    - New backends must implement BackupRepository protocol
    - Verify per-file atomicity of copies on the new backend
"""

from .base import (
    BackupRepository,
    Listing,
    PathType,
    create_repository,
    join_location,
    list_all_or_empty,
)
from .local import LocalFileSystemRepository
from .memory import InMemoryRepository
from .s3 import S3BackupRepository

__all__ = [
    # Protocol and types
    "BackupRepository",
    "Listing",
    "PathType",
    "join_location",
    "list_all_or_empty",
    # Factory
    "create_repository",
    # Implementations
    "LocalFileSystemRepository",
    "S3BackupRepository",
    "InMemoryRepository",
]

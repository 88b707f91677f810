"""
Segment index collaborator for segsnap.

This module provides the index side the snapshot engine reads from:
- IndexCommit: immutable view of one generation
- IndexDirectory implementations (filesystem, in-memory)
- CommitDeletionPolicy: keep-latest policy with generation reservations
- SegmentIndex: segments_<gen> manifests over an IndexDirectory
- SnapshotMetadataManager: commits recorded under a name

Invariants:
    - Reserved generations are never reclaimed
    - A commit becomes visible only once its segments file is written
"""

from .base import (
    CommitMetadataStore,
    DeletionPolicy,
    IndexCommit,
    IndexDirectory,
    LiveIndexView,
    NoCommitError,
    segments_file_name,
)
from .directory import FSIndexDirectory, InMemoryIndexDirectory
from .metadata import SnapshotMetadataManager
from .policy import CommitDeletionPolicy
from .segment_index import SegmentIndex

__all__ = [
    # Protocols and types
    "IndexCommit",
    "IndexDirectory",
    "DeletionPolicy",
    "CommitMetadataStore",
    "LiveIndexView",
    "NoCommitError",
    "segments_file_name",
    # Implementations
    "FSIndexDirectory",
    "InMemoryIndexDirectory",
    "CommitDeletionPolicy",
    "SegmentIndex",
    "SnapshotMetadataManager",
]

"""
Snapshot module for segsnap.

This module copies index commits into a backup repository:
- Full copies (rolled back on failure)
- Incremental copies reconciled by checksum, segments file written last
- Retention of timestamp-named snapshots
- Background execution with callbacks

Invariants:
    - A failed full snapshot leaves no directory behind
    - Reserved commits are released exactly once
    - Explicitly named snapshots are never pruned automatically
"""

from .copier import CopyEngine, CopyStats
from .descriptor import (
    DATE_FMT,
    SnapshotDescriptor,
    format_snapshot_timestamp,
    parse_snapshot_timestamp,
)
from .resolver import CommitReservation, CommitResolver
from .result import DeleteSnapshotResult, SnapshotResult
from .retention import OldBackupDirectory, RetentionManager
from .scheduler import SnapshotScheduler
from .snapshooter import SnapShooter

__all__ = [
    "SnapShooter",
    "SnapshotScheduler",
    "SnapshotDescriptor",
    "CommitResolver",
    "CommitReservation",
    "CopyEngine",
    "CopyStats",
    "RetentionManager",
    "OldBackupDirectory",
    "SnapshotResult",
    "DeleteSnapshotResult",
    "DATE_FMT",
    "format_snapshot_timestamp",
    "parse_snapshot_timestamp",
]

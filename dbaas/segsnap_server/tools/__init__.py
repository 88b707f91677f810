"""
CLI tools for segsnap administration.

This module provides command-line tools for:
- snapshot: Create, delete and list snapshots of an index

Invariants:
    - Tools work offline (no running server required)
    - All operations are logged for audit
"""

from .snapshot_cli import SnapshotCLI

__all__ = ["SnapshotCLI"]

"""
segsnap - point-in-time snapshots of a segment-based index.

This package copies the committed files of a segment index into a backup
repository (local filesystem, S3, or in-memory), either as a full copy or
as an incremental delta against an existing snapshot directory.

Architecture:
    ┌──────────────┐     ┌───────────────┐     ┌──────────────┐
    │  SnapShooter │────▶│ CommitResolver│────▶│ DeletionPolicy│
    │ (lifecycle)  │     │ (reserve gen) │     │ (ref counts) │
    └──────┬───────┘     └───────────────┘     └──────────────┘
           │
           ▼
    ┌──────────────┐     ┌───────────────┐
    │  CopyEngine  │────▶│ BackupRepository│ local / s3 / memory
    └──────┬───────┘     └───────────────┘
           │
           ▼
    ┌──────────────┐
    │  Retention   │  anonymous snapshots only
    └──────────────┘

Invariants:
    - A non-incremental snapshot directory is either complete or absent
    - Incremental copies write the segments manifest last
    - Every reserved commit generation is released exactly once

How to change safely:
    - Keep the snapshot.<name> directory convention stable
    - New repository backends must implement the BackupRepository protocol
"""

from ._version import __version__

__all__ = ["__version__"]

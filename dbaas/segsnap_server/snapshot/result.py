"""
Snapshot reports returned to callers.

Reports are plain values: returned from the blocking calls, passed to the
async callbacks and set as the result of the background task. Nothing
stores them on shared objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class SnapshotResult:
    """Outcome of one snapshot creation.

    Attributes:
        status: "success" or "failed"
        snapshot_name: Explicit name, None for anonymous snapshots
        directory_name: Snapshot directory under the base location
        start_time: When copying started
        completed_at: When copying finished (success only)
        generation: Commit generation that was copied
        file_count: Number of files in the copied commit
        files_copied: Files actually written (incremental runs may skip files)
        files_deleted: Stale destination files removed by an incremental run
        pruned: Old snapshot directories removed by retention
        error: Error message on failure
        error_code: SnapshotError code on failure
        retention_error: Retention failure message (snapshot itself succeeded)
    """

    status: str
    snapshot_name: Optional[str]
    directory_name: str
    start_time: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    generation: Optional[int] = None
    file_count: int = 0
    files_copied: int = 0
    files_deleted: int = 0
    pruned: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    retention_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(
        cls,
        snapshot_name: Optional[str],
        directory_name: str,
        error: BaseException,
        start_time: Optional[datetime] = None,
    ) -> SnapshotResult:
        """Build a failure-shaped result from an exception."""
        return cls(
            status=STATUS_FAILED,
            snapshot_name=snapshot_name,
            directory_name=directory_name,
            start_time=start_time,
            error=str(error) or type(error).__name__,
            error_code=getattr(error, "code", type(error).__name__),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Ordered key/value report."""
        report: Dict[str, Any] = {
            "startTime": _iso(self.start_time),
            "fileCount": self.file_count,
            "status": self.status,
            "snapshotCompletedAt": _iso(self.completed_at),
            "snapshotName": self.snapshot_name,
            "directoryName": self.directory_name,
            "generation": self.generation,
            "filesCopied": self.files_copied,
            "filesDeleted": self.files_deleted,
        }
        if self.pruned:
            report["pruned"] = list(self.pruned)
        if self.error is not None:
            report["exception"] = self.error
            report["errorCode"] = self.error_code
        if self.retention_error is not None:
            report["retentionError"] = self.retention_error
        return report


@dataclass
class DeleteSnapshotResult:
    """Outcome of deleting a named snapshot.

    Attributes:
        status: "success" or a human-readable failure message
        snapshot_name: Snapshot that was deleted
        deleted_at: When deletion finished (success only)
        error: Underlying error message on failure
    """

    status: str
    snapshot_name: str
    deleted_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        report: Dict[str, Any] = {"status": self.status, "snapshotName": self.snapshot_name}
        if self.deleted_at is not None:
            report["snapshotDeletedAt"] = _iso(self.deleted_at)
        if self.error is not None:
            report["exception"] = self.error
        return report

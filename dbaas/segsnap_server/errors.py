"""
Error types for segsnap.

This module defines the exception hierarchy used by the snapshot engine:
- SnapshotError: Base exception
- SnapshotNotFoundError / CommitNotFoundError: Name cannot be resolved
- SnapshotExistsError: Non-incremental destination already exists
- BaseLocationMissingError: Base location precondition violated
- CorruptFileError: Checksum could not be computed for a file
- RepositoryIOError: Underlying copy/list/delete failure
- PartialFailureError: Best-effort loop finished with some failures

Invariants:
    - All errors inherit from SnapshotError
    - Validation errors are raised before any repository mutation
    - RepositoryIOError chains the original exception as __cause__
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


class SnapshotError(Exception):
    """Base exception for all snapshot errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SNAPSHOT_ERROR"
        self.details = details or {}


class SnapshotNotFoundError(SnapshotError):
    """A named snapshot directory does not exist under the base location."""

    def __init__(self, message: str, name: Optional[str] = None, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code, details={"name": name})
        self.name = name


class CommitNotFoundError(SnapshotNotFoundError):
    """No index commit is recorded under the requested commit name."""

    def __init__(self, commit_name: str) -> None:
        super().__init__(
            f"Unable to find an index commit with name {commit_name}",
            name=commit_name,
            code="COMMIT_NOT_FOUND",
        )
        self.commit_name = commit_name


class SnapshotExistsError(SnapshotError):
    """Snapshot directory already exists (non-incremental request)."""

    def __init__(self, location: str) -> None:
        super().__init__(
            f"Snapshot directory already exists: {location}",
            code="ALREADY_EXISTS",
            details={"location": location},
        )
        self.location = location


class BaseLocationMissingError(SnapshotError):
    """The base location that holds all snapshots does not exist."""

    def __init__(self, location: str) -> None:
        super().__init__(
            f"Directory does not exist: {location}",
            code="BASE_LOCATION_MISSING",
            details={"location": location},
        )
        self.location = location


class CorruptFileError(SnapshotError):
    """File content is unreadable or inconsistent with its declared length."""

    def __init__(self, message: str, file_name: Optional[str] = None) -> None:
        super().__init__(message, code="CORRUPT_FILE", details={"file_name": file_name})
        self.file_name = file_name


class RepositoryIOError(SnapshotError):
    """A repository copy, listing or deletion failed."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        super().__init__(message, code="IO_FAILURE", details={"location": location})
        self.location = location


class PartialFailureError(SnapshotError):
    """A best-effort loop completed but some of its steps failed.

    Attributes:
        failures: (target, error) pairs for every failed step
        completed: Targets whose step succeeded
    """

    def __init__(
        self,
        message: str,
        failures: List[Tuple[str, Exception]],
        completed: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="PARTIAL_FAILURE",
            details={"failed": [target for target, _ in failures]},
        )
        self.failures = failures
        self.completed = completed or []

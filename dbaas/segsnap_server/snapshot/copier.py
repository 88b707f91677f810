"""
Copy engine for snapshots.

Copies the files of one reserved IndexCommit into a snapshot location.

Full copy:
    Every file of the commit is copied. Any failure aborts the remaining
    files and the whole snapshot directory is deleted before the error
    is re-raised, so a failed full snapshot never leaves a directory behind.

Incremental copy:
    1. List the destination (empty if it does not exist yet)
    2. Skip files whose destination checksum matches the source; delete and
       re-copy files whose checksum differs or cannot be computed; copy
       files that are missing
    3. Copy the segments file last, and only if it needed copying
    4. Delete destination files the commit no longer references

    Incremental failures are not rolled back: the destination may hold a
    valid earlier generation that a retry will upgrade.

Invariants:
    - The caller holds a reservation on the commit for the whole copy
    - During an incremental copy the segments file is the last file written
    - Each file copy is atomic; a failed run never leaves a half-written file

Known limitation:
    A crash between the stale-file deletion of step 4 and the end of the run
    is not detected; the destination is not re-validated afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from ..checksum import FileChecksum, checksum_directory_file
from ..errors import CorruptFileError
from ..index.base import IndexCommit, IndexDirectory
from ..repository.base import BackupRepository, list_all_or_empty
from .descriptor import SnapshotDescriptor, utc_now
from .result import STATUS_SUCCESS, SnapshotResult

logger = logging.getLogger(__name__)


@dataclass
class CopyStats:
    """What one copy run did.

    Attributes:
        copied: Files written, in write order
        replaced: Destination files deleted because their checksum mismatched
        deleted: Stale destination files removed after the copy
    """

    copied: List[str] = field(default_factory=list)
    replaced: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


def _copy_order(commit: IndexCommit, names: Iterable[str]) -> List[str]:
    """Sorted data files followed by the segments file (if present)."""
    names = set(names)
    ordered = sorted(n for n in names if n != commit.segments_file_name)
    if commit.segments_file_name in names:
        ordered.append(commit.segments_file_name)
    return ordered


class CopyEngine:
    """Copies a commit into a snapshot location.

    Attributes:
        repository: Destination repository
        index_directory: Directory the commit's files are read from

    Example:
        >>> engine = CopyEngine(repository, index.directory)
        >>> result = await engine.create(commit, descriptor, incremental=False)
        >>> result.status
        'success'
    """

    def __init__(self, repository: BackupRepository, index_directory: IndexDirectory) -> None:
        self.repository = repository
        self.index_directory = index_directory

    async def create(
        self,
        commit: IndexCommit,
        descriptor: SnapshotDescriptor,
        incremental: bool = False,
    ) -> SnapshotResult:
        """Copy a commit and report the outcome.

        Args:
            commit: Commit to copy (must already be reserved by the caller)
            descriptor: Snapshot destination
            incremental: Reconcile against an existing snapshot directory

        Returns:
            SnapshotResult with status "success"

        Raises:
            SnapshotError: On failure, after rolling back non-incremental copies
        """
        logger.info(
            f"Creating backup snapshot {descriptor.display_name} at {descriptor.base_location}",
            extra={"generation": commit.generation, "incremental": incremental},
        )
        start_time = utc_now()

        # Roll back on any exit, cancellation included.
        success = False
        try:
            if incremental:
                stats = await self.incremental_copy(commit, descriptor.snapshot_location)
            else:
                stats = await self.full_copy(commit, descriptor.snapshot_location)
            success = True
        finally:
            if not success and not incremental:
                await self._rollback(descriptor.snapshot_location)

        result = SnapshotResult(
            status=STATUS_SUCCESS,
            snapshot_name=descriptor.snapshot_name,
            directory_name=descriptor.directory_name,
            start_time=start_time,
            completed_at=utc_now(),
            generation=commit.generation,
            file_count=len(commit.file_names),
            files_copied=len(stats.copied),
            files_deleted=len(stats.deleted),
        )
        logger.info(
            f"Done creating backup snapshot: {descriptor.display_name} at {descriptor.base_location}",
            extra={
                "generation": commit.generation,
                "file_count": result.file_count,
                "files_copied": result.files_copied,
                "files_deleted": result.files_deleted,
            },
        )
        return result

    async def full_copy(self, commit: IndexCommit, snapshot_location: str) -> CopyStats:
        """Copy every file of the commit."""
        stats = CopyStats()
        for name in _copy_order(commit, commit.file_names):
            await self.repository.copy_file_from(self.index_directory, name, snapshot_location)
            stats.copied.append(name)
        return stats

    async def incremental_copy(self, commit: IndexCommit, snapshot_location: str) -> CopyStats:
        """Bring snapshot_location in line with the commit, copying only what changed."""
        listing = await list_all_or_empty(self.repository, snapshot_location)
        if listing.failed and await self.repository.exists(snapshot_location):
            logger.warning(
                f"Unable to list existing snapshot {snapshot_location}, copying all files",
                extra={"error": str(listing.error)},
            )
        existing = set(listing.names)

        stats = CopyStats()
        need_copy: List[str] = []
        for name in sorted(commit.file_names):
            if name in existing:
                source_cs = await self._source_checksum(name)
                try:
                    dest_cs = await self.repository.checksum(snapshot_location, name)
                    if source_cs == dest_cs:
                        continue
                except CorruptFileError:
                    logger.info(f"Found a corrupted file in backup repository {name}")
                stats.replaced.append(name)
            need_copy.append(name)

        if stats.replaced:
            await self.repository.delete(snapshot_location, stats.replaced)

        for name in _copy_order(commit, need_copy):
            await self.repository.copy_file_from(self.index_directory, name, snapshot_location)
            stats.copied.append(name)

        stale = sorted(existing - commit.file_names)
        if stale:
            await self.repository.delete(snapshot_location, stale)
            stats.deleted.extend(stale)

        logger.debug(
            "Incremental copy finished",
            extra={
                "location": snapshot_location,
                "copied": len(stats.copied),
                "replaced": len(stats.replaced),
                "deleted": len(stats.deleted),
                "skipped": len(commit.file_names) - len(stats.copied),
            },
        )
        return stats

    async def _source_checksum(self, name: str) -> FileChecksum:
        return await asyncio.get_event_loop().run_in_executor(
            None, checksum_directory_file, self.index_directory, name
        )

    async def _rollback(self, snapshot_location: str) -> None:
        try:
            await self.repository.delete_directory(snapshot_location)
        except Exception as e:
            logger.warning(
                f"Failed to delete {snapshot_location} after snapshot creation failed due to: {e}"
            )

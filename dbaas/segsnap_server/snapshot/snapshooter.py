"""
Snapshot lifecycle controller.

SnapShooter drives one snapshot request:

    validate -> resolve commit (reserve in latest mode) -> copy
             -> release reservation -> [prune old anonymous snapshots]

It offers a blocking call (create_snapshot) and a background call
(create_snapshot_async) that runs on its own asyncio task and hands the
result to a callback. Deletion of a named snapshot is available in both
forms as well.

Invariants:
    - Validation errors are raised before anything is written
    - A reserved commit is released exactly once on every exit path
    - The background path never lets an exception escape; failures become
      failure-shaped results, and a cancelled task still reports one to
      its callback
    - Retention only runs after a successful anonymous snapshot

How to change safely:
    - Concurrent requests against the same snapshot directory must be
      serialized by the caller; nothing here locks the destination
    - Keep result delivery value-based (return / callback), never shared state
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from ..errors import (
    BaseLocationMissingError,
    SnapshotError,
    SnapshotExistsError,
    SnapshotNotFoundError,
)
from ..index.base import CommitMetadataStore, DeletionPolicy, IndexDirectory, LiveIndexView
from ..index.metadata import SnapshotMetadataManager
from ..index.segment_index import SegmentIndex
from ..repository.base import BackupRepository, PathType
from .copier import CopyEngine
from .descriptor import SNAPSHOT_DIR_PREFIX, SnapshotDescriptor, utc_now
from .resolver import CommitReservation, CommitResolver
from .result import STATUS_SUCCESS, DeleteSnapshotResult, SnapshotResult
from .retention import OldBackupDirectory, RetentionManager

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[SnapshotResult], None]
DeleteCallback = Callable[[DeleteSnapshotResult], None]


class SnapShooter:
    """Creates and deletes snapshots of one index in one base location.

    Attributes:
        repository: Backup repository snapshots are written to
        descriptor: Snapshot name and location for this request
        commit_name: Named commit to copy, or None for the latest commit
        incremental: Reconcile against an existing snapshot directory

    Example:
        >>> shooter = SnapShooter.for_index(repo, index, "core1", snapshot_name="daily")
        >>> await shooter.validate_create()
        >>> result = await shooter.create_snapshot()
        >>> result.file_count
        2
    """

    def __init__(
        self,
        repository: BackupRepository,
        index_directory: IndexDirectory,
        deletion_policy: DeletionPolicy,
        live_view: LiveIndexView,
        location: str,
        snapshot_name: Optional[str] = None,
        commit_name: Optional[str] = None,
        incremental: bool = False,
        metadata_store: Optional[CommitMetadataStore] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the controller.

        Args:
            repository: Backup repository
            index_directory: Directory holding the index files
            deletion_policy: Deletion policy used for reservations
            live_view: Fallback for the current commit
            location: Base location for all snapshots of this index
            snapshot_name: Explicit snapshot name (None = timestamp)
            commit_name: Named commit to copy (None = latest commit)
            incremental: Whether to copy incrementally
            metadata_store: Named-commit lookup
            now: Clock used for anonymous snapshot names
        """
        self.repository = repository
        self.commit_name = commit_name
        self.incremental = incremental
        self.descriptor = SnapshotDescriptor.create(repository, location, snapshot_name, now)
        self.resolver = CommitResolver(deletion_policy, live_view, metadata_store)
        self.copier = CopyEngine(repository, index_directory)
        self.retention = RetentionManager(repository)
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def for_index(
        cls,
        repository: BackupRepository,
        index: SegmentIndex,
        location: str,
        snapshot_name: Optional[str] = None,
        commit_name: Optional[str] = None,
        incremental: bool = False,
        metadata: Optional[SnapshotMetadataManager] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> SnapShooter:
        """Build a controller wired to a SegmentIndex."""
        return cls(
            repository=repository,
            index_directory=index.directory,
            deletion_policy=index.deletion_policy,
            live_view=index,
            location=location,
            snapshot_name=snapshot_name,
            commit_name=commit_name,
            incremental=incremental,
            metadata_store=metadata,
            now=now,
        )

    @property
    def location(self) -> str:
        """Base location holding all snapshots."""
        return self.descriptor.base_location

    @property
    def snapshot_location(self) -> str:
        return self.descriptor.snapshot_location

    @property
    def snapshot_name(self) -> Optional[str]:
        return self.descriptor.snapshot_name

    async def validate_create(self) -> None:
        """Check preconditions for create_snapshot().

        Raises:
            BaseLocationMissingError: If the base location does not exist
            SnapshotExistsError: If the snapshot directory exists (non-incremental)
        """
        if not await self.repository.exists(self.location):
            raise BaseLocationMissingError(self.location)

        if not self.incremental and await self.repository.exists(self.snapshot_location):
            raise SnapshotExistsError(self.snapshot_location)

    async def create_snapshot(self) -> SnapshotResult:
        """Create the snapshot on the calling task.

        Returns:
            SnapshotResult with status "success"

        Raises:
            CommitNotFoundError: If commit_name is not recorded
            SnapshotError: If copying fails (after rollback for full copies)
        """
        reservation = await self.resolver.resolve_async(self.commit_name)
        with reservation:
            return await self.copier.create(reservation.commit, self.descriptor, self.incremental)

    async def create_snapshot_async(
        self,
        number_to_keep: int,
        on_complete: Optional[SnapshotCallback] = None,
    ) -> asyncio.Task:
        """Create the snapshot on a background task.

        The commit is resolved (and reserved) before this returns, so an
        unknown commit name raises here. Everything after that is captured:
        the task always completes with a SnapshotResult, which is also passed
        to on_complete. For anonymous snapshots, old snapshots beyond
        number_to_keep are pruned after a successful copy. If the task is
        cancelled, the reservation is still released and on_complete gets a
        failure result with error code "CANCELLED".

        Args:
            number_to_keep: Anonymous snapshots to keep after this one
            on_complete: Called with the result once the task finishes

        Returns:
            The background task; its result is the SnapshotResult

        Raises:
            CommitNotFoundError: If commit_name is not recorded
        """
        reservation = await self.resolver.resolve_async(self.commit_name)
        try:
            task = asyncio.create_task(
                self._run_snapshot(reservation, number_to_keep, on_complete),
                name=f"snapshot:{self.descriptor.directory_name}",
            )
        except BaseException:
            reservation.release()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(
            lambda t: self._finish_cancelled(t, reservation, on_complete)
        )
        return task

    def _finish_cancelled(
        self,
        task: asyncio.Task,
        reservation: CommitReservation,
        on_complete: Optional[SnapshotCallback],
    ) -> None:
        # A task cancelled before its first step never runs _run_snapshot's
        # finally, and a cancelled run never reaches the callback.
        if not task.cancelled():
            return
        reservation.release()
        logger.warning(f"Snapshot {self.descriptor.display_name} was cancelled")
        if on_complete is None:
            return
        error = SnapshotError("Snapshot was cancelled", code="CANCELLED")
        result = SnapshotResult.failure(
            self.snapshot_name, self.descriptor.directory_name, error
        )
        try:
            on_complete(result)
        except Exception:
            logger.error("Snapshot completion callback failed", exc_info=True)

    async def _run_snapshot(
        self,
        reservation: CommitReservation,
        number_to_keep: int,
        on_complete: Optional[SnapshotCallback],
    ) -> SnapshotResult:
        start_time = utc_now()
        try:
            try:
                result = await self.copier.create(
                    reservation.commit, self.descriptor, self.incremental
                )
            except Exception as e:
                logger.error("Exception while creating snapshot", exc_info=True)
                result = SnapshotResult.failure(
                    self.snapshot_name, self.descriptor.directory_name, e, start_time
                )
        finally:
            reservation.release()

        if result.success and self.descriptor.anonymous:
            await self._prune(result, number_to_keep)

        if on_complete is not None:
            try:
                on_complete(result)
            except Exception:
                logger.error("Snapshot completion callback failed", exc_info=True)
        return result

    async def _prune(self, result: SnapshotResult, number_to_keep: int) -> None:
        try:
            result.pruned = await self.retention.delete_old_backups(self.location, number_to_keep)
        except Exception as e:
            logger.warning(f"Unable to delete old snapshots: {e}")
            result.pruned = list(getattr(e, "completed", []))
            result.retention_error = str(e)

    async def validate_delete(self) -> None:
        """Check that the named snapshot exists.

        Raises:
            ValueError: If this controller has no snapshot name
            SnapshotNotFoundError: If the snapshot directory is missing
            RepositoryIOError: If the base location cannot be listed
        """
        if self.snapshot_name is None:
            raise ValueError("Deleting a snapshot requires a snapshot name")

        for name in await self.repository.list_all(self.location):
            if name != self.descriptor.directory_name:
                continue
            if await self.repository.get_path_type(self.snapshot_location) == PathType.DIRECTORY:
                return
        raise SnapshotNotFoundError(
            f"Snapshot {self.snapshot_name} cannot be found in directory: {self.location}",
            name=self.snapshot_name,
        )

    async def delete_snapshot(self, snapshot_name: Optional[str] = None) -> DeleteSnapshotResult:
        """Delete a named snapshot directory.

        I/O failures are reported in the result, not raised.

        Args:
            snapshot_name: Snapshot to delete (defaults to this controller's name)
        """
        name = snapshot_name if snapshot_name is not None else self.snapshot_name
        if name is None:
            raise ValueError("Deleting a snapshot requires a snapshot name")

        logger.info(f"Deleting snapshot: {name}")
        path = self.repository.resolve(self.location, SNAPSHOT_DIR_PREFIX + name)
        try:
            await self.repository.delete_directory(path)
        except Exception as e:
            logger.warning(f"Unable to delete snapshot: {name}", exc_info=True)
            return DeleteSnapshotResult(
                status=f"Unable to delete snapshot: {name}",
                snapshot_name=name,
                error=str(e),
            )
        return DeleteSnapshotResult(status=STATUS_SUCCESS, snapshot_name=name, deleted_at=utc_now())

    async def delete_snapshot_async(
        self,
        snapshot_name: Optional[str] = None,
        on_complete: Optional[DeleteCallback] = None,
    ) -> asyncio.Task:
        """Delete a named snapshot on a background task.

        Returns:
            The background task; its result is the DeleteSnapshotResult
        """
        name = snapshot_name if snapshot_name is not None else self.snapshot_name
        if name is None:
            raise ValueError("Deleting a snapshot requires a snapshot name")

        async def _run() -> DeleteSnapshotResult:
            result = await self.delete_snapshot(name)
            if on_complete is not None:
                try:
                    on_complete(result)
                except Exception:
                    logger.error("Snapshot deletion callback failed", exc_info=True)
            return result

        task = asyncio.create_task(_run(), name=f"delete-snapshot:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def list_snapshots(self) -> List[OldBackupDirectory]:
        """Snapshot directories under the base location.

        Anonymous snapshots come first, newest first, then named snapshots.
        """
        return await self.retention.list_snapshot_directories(self.location)

    @property
    def pending_tasks(self) -> int:
        """Background tasks still running."""
        return len(self._tasks)

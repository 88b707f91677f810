"""
Periodic snapshot scheduler.

The SnapshotScheduler runs as a background loop that:
1. Checks whether the index has a commit newer than the last snapshot
2. Creates a snapshot through SnapShooter.create_snapshot_async()
3. Prunes old anonymous snapshots down to number_to_keep

With snapshot_name set, every run refreshes the same named snapshot
(meant for incremental mode). Without it, every run creates a new
timestamp-named snapshot and retention applies.

Invariants:
    - At most one scheduled snapshot runs at a time
    - An unchanged index is not snapshotted again
    - Snapshot failures are logged and counted; the loop keeps running
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from ..errors import SnapshotError
from ..index.base import NoCommitError
from ..index.metadata import SnapshotMetadataManager
from ..index.segment_index import SegmentIndex
from ..repository.base import BackupRepository
from .result import SnapshotResult
from .snapshooter import SnapShooter

logger = logging.getLogger(__name__)


class SnapshotScheduler:
    """Takes snapshots of an index on a fixed interval.

    Example:
        >>> scheduler = SnapshotScheduler(repo, index, "core1", interval_seconds=600)
        >>> await scheduler.start()  # Runs until stopped
    """

    def __init__(
        self,
        repository: BackupRepository,
        index: SegmentIndex,
        location: str,
        interval_seconds: int = 3600,
        number_to_keep: int = 1,
        incremental: bool = False,
        snapshot_name: Optional[str] = None,
        metadata: Optional[SnapshotMetadataManager] = None,
    ) -> None:
        self.repository = repository
        self.index = index
        self.location = location
        self.interval_seconds = interval_seconds
        self.number_to_keep = number_to_keep
        self.incremental = incremental
        self.snapshot_name = snapshot_name
        self.metadata = metadata

        self._running = False
        self._snapshot_count = 0
        self._failure_count = 0
        self._last_generation: Optional[int] = None
        self._last_result: Optional[SnapshotResult] = None

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Snapshot scheduler already running")
            return

        self._running = True
        logger.info(
            "Starting snapshot scheduler",
            extra={
                "location": self.location,
                "interval_seconds": self.interval_seconds,
                "number_to_keep": self.number_to_keep,
                "incremental": self.incremental,
            },
        )

        try:
            while self._running:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)

        except asyncio.CancelledError:
            logger.info("Snapshot scheduler cancelled")
        except Exception as e:
            logger.error(f"Snapshot scheduler error: {e}", exc_info=True)
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        logger.info("Stopping snapshot scheduler")

    async def run_once(self) -> Optional[SnapshotResult]:
        """Take one snapshot if the index changed since the last one.

        Returns:
            The SnapshotResult, or None when nothing was snapshotted
        """
        loop = asyncio.get_event_loop()
        try:
            commit = await loop.run_in_executor(None, self.index.current_commit)
            generation = commit.generation
        except NoCommitError:
            logger.debug("Index has no commit yet, skipping snapshot")
            return None

        if generation == self._last_generation:
            logger.debug("Index unchanged since last snapshot", extra={"generation": generation})
            return None

        shooter = SnapShooter.for_index(
            self.repository,
            self.index,
            self.location,
            snapshot_name=self.snapshot_name,
            incremental=self.incremental,
            metadata=self.metadata,
        )
        try:
            await shooter.validate_create()
            task = await shooter.create_snapshot_async(self.number_to_keep)
        except (SnapshotError, NoCommitError) as e:
            self._failure_count += 1
            logger.error(f"Scheduled snapshot not started: {e}")
            return None

        result = await asyncio.shield(task)
        self._last_result = result
        if result.success:
            self._snapshot_count += 1
            self._last_generation = result.generation
        else:
            self._failure_count += 1
        return result

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "snapshot_count": self._snapshot_count,
            "failure_count": self._failure_count,
            "last_generation": self._last_generation,
            "last_status": self._last_result.status if self._last_result else None,
        }

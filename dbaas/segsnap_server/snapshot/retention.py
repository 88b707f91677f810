"""
Retention of anonymous snapshots.

Only directories named snapshot.<yyyyMMddHHmmssSSS> take part in retention.
Explicitly named snapshots and foreign directories are never deleted here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..errors import PartialFailureError, RepositoryIOError
from ..repository.base import BackupRepository, PathType
from .descriptor import SNAPSHOT_DIR_PREFIX, parse_snapshot_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OldBackupDirectory:
    """A snapshot directory found under a base location.

    Attributes:
        name: Directory name (snapshot.<...>)
        location: Full repository location
        timestamp: Parsed timestamp, None for explicitly named snapshots
    """

    name: str
    location: str
    timestamp: Optional[datetime]

    @property
    def snapshot_name(self) -> str:
        return self.name[len(SNAPSHOT_DIR_PREFIX):]


class RetentionManager:
    """Lists snapshot directories and prunes old anonymous ones.

    Example:
        >>> manager = RetentionManager(repository)
        >>> await manager.delete_old_backups("core1", number_to_keep=2)
        ['snapshot.20240101000000000']
    """

    def __init__(self, repository: BackupRepository) -> None:
        self.repository = repository

    async def list_snapshot_directories(
        self, base_location: str, timestamped_only: bool = False
    ) -> List[OldBackupDirectory]:
        """Snapshot directories under base_location.

        Timestamped snapshots come first, newest first, followed by named
        snapshots in name order.

        Raises:
            RepositoryIOError: If base_location cannot be listed
        """
        found = []
        for name in await self.repository.list_all(base_location):
            if not name.startswith(SNAPSHOT_DIR_PREFIX):
                continue
            timestamp = parse_snapshot_timestamp(name)
            if timestamped_only and timestamp is None:
                continue
            location = self.repository.resolve(base_location, name)
            try:
                if await self.repository.get_path_type(location) != PathType.DIRECTORY:
                    continue
            except RepositoryIOError:
                # Removed between listing and stat
                continue
            found.append(OldBackupDirectory(name=name, location=location, timestamp=timestamp))

        timestamped = sorted(
            (d for d in found if d.timestamp is not None),
            key=lambda d: d.timestamp,
            reverse=True,
        )
        named = sorted((d for d in found if d.timestamp is None), key=lambda d: d.name)
        return timestamped + named

    async def delete_old_backups(self, base_location: str, number_to_keep: int) -> List[str]:
        """Delete all but the number_to_keep most recent anonymous snapshots.

        Args:
            base_location: Location holding the snapshots
            number_to_keep: Anonymous snapshots to keep

        Returns:
            Names of the deleted directories, oldest last

        Raises:
            ValueError: If number_to_keep is negative
            RepositoryIOError: If base_location cannot be listed
            PartialFailureError: If some deletions failed (all were attempted)
        """
        if number_to_keep < 0:
            raise ValueError(f"number_to_keep must be >= 0, got {number_to_keep}")

        dirs = await self.list_snapshot_directories(base_location, timestamped_only=True)
        if number_to_keep > len(dirs) - 1:
            return []

        deleted: List[str] = []
        failures: List[Tuple[str, Exception]] = []
        for old in dirs[number_to_keep:]:
            try:
                await self.repository.delete_directory(old.location)
            except RepositoryIOError as e:
                logger.warning(f"Unable to delete old snapshot {old.name}: {e}")
                failures.append((old.name, e))
                continue
            deleted.append(old.name)

        if deleted:
            logger.info(
                "Deleted old snapshots",
                extra={"base_location": base_location, "deleted": deleted, "kept": number_to_keep},
            )
        if failures:
            raise PartialFailureError(
                f"Unable to delete {len(failures)} of {len(failures) + len(deleted)} old snapshots",
                failures,
                completed=deleted,
            )
        return deleted

"""
Snapshot naming.

Every snapshot lives in a directory under the base location:

    <base>/snapshot.<name>                 explicitly named
    <base>/snapshot.<yyyyMMddHHmmssSSS>    anonymous, named after the wall clock

The timestamp format is fixed-width digits so directory names sort in
time order. Timestamps are taken in UTC.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from ..repository.base import BackupRepository

SNAPSHOT_DIR_PREFIX = "snapshot."
DATE_FMT = "%Y%m%d%H%M%S"  # followed by 3 digits of milliseconds

_TIMESTAMP_DIR = re.compile(r"^snapshot\.(\d{14})(\d{3})$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_snapshot_timestamp(when: datetime) -> str:
    """Format a datetime as yyyyMMddHHmmssSSS."""
    return f"{when.strftime(DATE_FMT)}{when.microsecond // 1000:03d}"


def parse_snapshot_timestamp(directory_name: str) -> Optional[datetime]:
    """Recover the timestamp from an anonymous snapshot directory name.

    Returns:
        The UTC timestamp, or None when the name is not timestamp-suffixed
        (explicitly named snapshots, foreign directories)
    """
    match = _TIMESTAMP_DIR.match(directory_name)
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group(1), DATE_FMT)
    except ValueError:
        return None
    return parsed.replace(microsecond=int(match.group(2)) * 1000, tzinfo=timezone.utc)


def snapshot_directory_name(snapshot_name: Optional[str], now: Callable[[], datetime] = utc_now) -> str:
    """Directory name for a named or anonymous snapshot."""
    if snapshot_name is not None:
        return SNAPSHOT_DIR_PREFIX + snapshot_name
    return SNAPSHOT_DIR_PREFIX + format_snapshot_timestamp(now())


@dataclass(frozen=True)
class SnapshotDescriptor:
    """Where one snapshot goes.

    Attributes:
        base_location: Location holding all snapshots of the index
        snapshot_name: Explicit name, or None for an anonymous snapshot
        directory_name: snapshot.<name> or snapshot.<timestamp>
        snapshot_location: base_location resolved with directory_name
    """

    base_location: str
    snapshot_name: Optional[str]
    directory_name: str
    snapshot_location: str

    @classmethod
    def create(
        cls,
        repository: "BackupRepository",
        base_location: str,
        snapshot_name: Optional[str] = None,
        now: Callable[[], datetime] = utc_now,
    ) -> SnapshotDescriptor:
        """Compute the snapshot directory for a request.

        Raises:
            ValueError: If snapshot_name is empty or contains a path separator
        """
        if snapshot_name is not None and (not snapshot_name or "/" in snapshot_name):
            raise ValueError(f"Invalid snapshot name: {snapshot_name!r}")

        directory_name = snapshot_directory_name(snapshot_name, now)
        return cls(
            base_location=base_location,
            snapshot_name=snapshot_name,
            directory_name=directory_name,
            snapshot_location=repository.resolve(base_location, directory_name),
        )

    @property
    def anonymous(self) -> bool:
        """True for timestamp-named snapshots (subject to retention)."""
        return self.snapshot_name is None

    @property
    def display_name(self) -> str:
        return self.snapshot_name if self.snapshot_name is not None else "<not named>"

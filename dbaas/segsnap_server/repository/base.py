"""
Base protocol and types for backup repositories.

A backup repository is the storage backend snapshots are written to:
a local filesystem, S3, or memory. Locations are plain strings; child
locations are built with resolve() and never by string concatenation in
callers.

Invariants:
    - copy_file_from() is atomic per file: readers see the old file or the new one
    - Every backend failure surfaces as RepositoryIOError
    - checksum() raises CorruptFileError when content cannot be read consistently

How to change safely:
    - Protocol changes require updating all implementations
    - Keep list_all() results sorted so logs and tests are deterministic
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from ..checksum import FileChecksum
from ..errors import RepositoryIOError
from ..index.base import IndexDirectory

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class PathType(Enum):
    """Kind of entry at a repository location."""

    FILE = "file"
    DIRECTORY = "directory"


def join_location(base: str, child: str) -> str:
    """Join a child name onto a location with a single separator."""
    if not base:
        return child
    return f"{base.rstrip('/')}/{child.lstrip('/')}"


@dataclass(frozen=True)
class Listing:
    """Result of a listing that is allowed to fail.

    Attributes:
        names: Entry names (empty when the listing failed)
        error: The failure, if any
    """

    names: Tuple[str, ...] = ()
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@runtime_checkable
class BackupRepository(Protocol):
    """Protocol for snapshot storage backends.

    Example:
        >>> repo = LocalFileSystemRepository()
        >>> snap_dir = repo.resolve("/backups/core1", "snapshot.daily")
        >>> await repo.copy_file_from(index_dir, "segments_1", snap_dir)
        >>> await repo.list_all(snap_dir)
        ['segments_1']
    """

    def resolve(self, base: str, child: str) -> str:
        """Location of child under base. Pure, no I/O."""
        ...

    @abstractmethod
    async def exists(self, location: str) -> bool:
        """Whether anything exists at location."""
        ...

    @abstractmethod
    async def list_all(self, location: str) -> List[str]:
        """Names of the immediate children of location.

        Raises:
            RepositoryIOError: If the location cannot be listed
        """
        ...

    @abstractmethod
    async def get_path_type(self, location: str) -> PathType:
        """Whether location is a file or a directory.

        Raises:
            RepositoryIOError: If nothing exists at location
        """
        ...

    @abstractmethod
    async def create_directory(self, location: str) -> None:
        """Create a directory (and its parents). No-op if it exists."""
        ...

    @abstractmethod
    async def copy_file_from(
        self,
        source_dir: IndexDirectory,
        file_name: str,
        dest_location: str,
    ) -> None:
        """Copy one file from an index directory into dest_location.

        The destination directory is created if needed and an existing
        file of the same name is replaced.

        Raises:
            RepositoryIOError: If reading the source or writing the copy fails
        """
        ...

    @abstractmethod
    async def checksum(self, location: str, file_name: str) -> FileChecksum:
        """Checksum of file_name inside location.

        Raises:
            CorruptFileError: If the content is unreadable or inconsistent
            RepositoryIOError: If the file does not exist
        """
        ...

    @abstractmethod
    async def delete(self, location: str, names: Iterable[str]) -> None:
        """Delete files inside location. Missing files are ignored.

        Every name is attempted; failures are reported together afterwards.

        Raises:
            RepositoryIOError: If at least one deletion failed
        """
        ...

    @abstractmethod
    async def delete_directory(self, location: str) -> None:
        """Recursively delete a directory. No-op if it does not exist.

        Raises:
            RepositoryIOError: If deletion fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...


async def list_all_or_empty(repo: BackupRepository, location: str) -> Listing:
    """List a location, mapping a listing failure to an empty Listing.

    The failure is kept on the result so callers that care can tell an
    empty location from an unreadable one.
    """
    try:
        names = await repo.list_all(location)
    except RepositoryIOError as e:
        logger.debug(f"Listing {location} failed, treating as empty: {e}")
        return Listing(names=(), error=e)
    return Listing(names=tuple(names))


def create_repository(config: "ServerConfig") -> BackupRepository:
    """Factory function to create a backup repository from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate BackupRepository implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import RepositoryBackend
    from .local import LocalFileSystemRepository
    from .memory import InMemoryRepository
    from .s3 import S3BackupRepository

    if config.repository_backend == RepositoryBackend.LOCAL:
        return LocalFileSystemRepository(root_dir=config.local.root_dir)
    elif config.repository_backend == RepositoryBackend.S3:
        return S3BackupRepository(config.s3)
    elif config.repository_backend == RepositoryBackend.MEMORY:
        return InMemoryRepository()
    else:
        raise ValueError(f"Unsupported repository backend: {config.repository_backend}")

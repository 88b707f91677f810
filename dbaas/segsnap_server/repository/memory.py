"""
In-memory backup repository for testing.

This module provides a dict-backed repository for:
- Unit tests of the snapshot engine
- Local development without a filesystem or S3

Besides the BackupRepository protocol it offers testing helpers:
failure injection for copies, listings, checksums and deletions, stalled
copies for cancellation tests, a log of every successful copy in write
order, and out-of-band file mutation.

Invariants:
    - All data is lost on process exit
    - A failed copy never stores partial content
    - Directories exist independently of the files they contain

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with BackupRepository protocol
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Set, Tuple

from ..checksum import FileChecksum, checksum_bytes
from ..errors import CorruptFileError, RepositoryIOError
from ..index.base import IndexDirectory
from .base import PathType, join_location

logger = logging.getLogger(__name__)


def _parent(location: str) -> str:
    return location.rstrip("/").rsplit("/", 1)[0] if "/" in location else ""


class InMemoryRepository:
    """BackupRepository kept entirely in memory.

    Attributes:
        fail_copy: File names whose copy raises RepositoryIOError
        fail_list: Locations whose listing raises RepositoryIOError
        fail_checksum: File names whose destination checksum raises CorruptFileError
        fail_delete_directory: Locations whose deletion raises RepositoryIOError
        stall_copy: File names whose copy blocks until the copying task is cancelled
        copy_stalled: Set once a copy has blocked on a stall_copy name
        write_log: (dest_location, file_name) for every successful copy, in order
        delete_log: (location, file_name) for every deleted file, in order

    Example:
        >>> repo = InMemoryRepository()
        >>> await repo.create_directory("backups")
        >>> repo.fail_copy.add("_0.cfs")
    """

    def __init__(self) -> None:
        self._dirs: Set[str] = set()
        self._files: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

        self.fail_copy: Set[str] = set()
        self.fail_list: Set[str] = set()
        self.fail_checksum: Set[str] = set()
        self.fail_delete_directory: Set[str] = set()
        self.stall_copy: Set[str] = set()
        self.copy_stalled = asyncio.Event()
        self.write_log: List[Tuple[str, str]] = []
        self.delete_log: List[Tuple[str, str]] = []

    def resolve(self, base: str, child: str) -> str:
        return join_location(base, child)

    def _mkdirs(self, location: str) -> None:
        location = location.rstrip("/")
        while location and location not in self._dirs:
            self._dirs.add(location)
            location = _parent(location)

    async def exists(self, location: str) -> bool:
        location = location.rstrip("/")
        return location in self._dirs or location in self._files

    async def list_all(self, location: str) -> List[str]:
        location = location.rstrip("/")
        if location in self.fail_list:
            raise RepositoryIOError(f"Injected listing failure: {location}", location=location)
        if location not in self._dirs:
            raise RepositoryIOError(f"Directory does not exist: {location}", location=location)

        children = {
            path.rsplit("/", 1)[-1]
            for path in list(self._dirs) + list(self._files)
            if path != location and _parent(path) == location
        }
        return sorted(children)

    async def get_path_type(self, location: str) -> PathType:
        location = location.rstrip("/")
        if location in self._dirs:
            return PathType.DIRECTORY
        if location in self._files:
            return PathType.FILE
        raise RepositoryIOError(f"Path does not exist: {location}", location=location)

    async def create_directory(self, location: str) -> None:
        async with self._lock:
            self._mkdirs(location)

    async def copy_file_from(
        self,
        source_dir: IndexDirectory,
        file_name: str,
        dest_location: str,
    ) -> None:
        dest_location = dest_location.rstrip("/")
        if file_name in self.fail_copy:
            raise RepositoryIOError(
                f"Injected copy failure: {file_name}", location=dest_location
            )
        if file_name in self.stall_copy:
            self.copy_stalled.set()
            await asyncio.Event().wait()
        try:
            with source_dir.open_input(file_name) as src:
                data = src.read()
        except OSError as e:
            raise RepositoryIOError(
                f"Unable to read {file_name}: {e}", location=dest_location
            ) from e

        async with self._lock:
            self._mkdirs(dest_location)
            self._files[join_location(dest_location, file_name)] = data
            self.write_log.append((dest_location, file_name))

    async def checksum(self, location: str, file_name: str) -> FileChecksum:
        if file_name in self.fail_checksum:
            raise CorruptFileError(f"Injected checksum failure: {file_name}", file_name=file_name)
        path = join_location(location, file_name)
        if path not in self._files:
            raise RepositoryIOError(f"File not found: {path}", location=location)
        return checksum_bytes(self._files[path])

    async def delete(self, location: str, names: Iterable[str]) -> None:
        location = location.rstrip("/")
        async with self._lock:
            for name in names:
                path = join_location(location, name)
                if self._files.pop(path, None) is not None:
                    self.delete_log.append((location, name))

    async def delete_directory(self, location: str) -> None:
        location = location.rstrip("/")
        if location in self.fail_delete_directory:
            raise RepositoryIOError(f"Injected delete failure: {location}", location=location)
        prefix = location + "/"
        async with self._lock:
            self._dirs = {d for d in self._dirs if d != location and not d.startswith(prefix)}
            for path in [p for p in self._files if p.startswith(prefix)]:
                del self._files[path]

    async def close(self) -> None:
        """Close and clear all data."""
        self._dirs.clear()
        self._files.clear()

    # Testing helpers

    def make_dirs(self, location: str) -> None:
        """Create a directory and its parents synchronously."""
        self._mkdirs(location)

    def put_file(self, location: str, file_name: str, data: bytes) -> None:
        """Write a file directly, bypassing the write log (out-of-band change)."""
        location = location.rstrip("/")
        self._mkdirs(location)
        self._files[join_location(location, file_name)] = bytes(data)

    def read_file(self, location: str, file_name: str) -> bytes:
        """Return the stored content of a file."""
        return self._files[join_location(location.rstrip("/"), file_name)]

    def files_in(self, location: str) -> List[str]:
        """Names of files (not directories) directly inside location."""
        location = location.rstrip("/")
        return sorted(
            path.rsplit("/", 1)[-1] for path in self._files if _parent(path) == location
        )

    def clear_logs(self) -> None:
        """Reset write_log and delete_log."""
        self.write_log.clear()
        self.delete_log.clear()

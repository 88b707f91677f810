"""
Local filesystem backup repository.

Locations are filesystem paths (optionally file:// URIs). Relative
locations are resolved against root_dir. All blocking calls run in the
default executor.

Invariants:
    - Files are written to a temporary name and renamed into place
    - Temporary files never show up in list_all()
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, List

from ..checksum import FileChecksum, checksum_path
from ..errors import RepositoryIOError
from ..index.base import IndexDirectory
from .base import PathType, join_location

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".partial"


class LocalFileSystemRepository:
    """BackupRepository over the local filesystem.

    Attributes:
        root_dir: Directory relative locations are resolved against

    Example:
        >>> repo = LocalFileSystemRepository(root_dir="/var/lib/segsnap/backups")
        >>> await repo.exists("core1")
        True
    """

    def __init__(self, root_dir: str | None = None) -> None:
        self.root_dir = Path(root_dir) if root_dir else None

    def _path(self, location: str) -> Path:
        if location.startswith("file://"):
            location = location[len("file://"):]
        path = Path(location)
        if not path.is_absolute() and self.root_dir is not None:
            path = self.root_dir / path
        return path

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_event_loop().run_in_executor(None, func, *args)

    def resolve(self, base: str, child: str) -> str:
        return join_location(base, child)

    async def exists(self, location: str) -> bool:
        return await self._run(self._path(location).exists)

    async def list_all(self, location: str) -> List[str]:
        path = self._path(location)

        def _list() -> List[str]:
            try:
                return sorted(n for n in os.listdir(path) if not n.endswith(_TMP_SUFFIX))
            except OSError as e:
                raise RepositoryIOError(f"Unable to list {path}: {e}", location=location) from e

        return await self._run(_list)

    async def get_path_type(self, location: str) -> PathType:
        path = self._path(location)

        def _stat() -> PathType:
            if path.is_dir():
                return PathType.DIRECTORY
            if path.exists():
                return PathType.FILE
            raise RepositoryIOError(f"Path does not exist: {path}", location=location)

        return await self._run(_stat)

    async def create_directory(self, location: str) -> None:
        path = self._path(location)

        def _mkdir() -> None:
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise RepositoryIOError(f"Unable to create {path}: {e}", location=location) from e

        await self._run(_mkdir)

    async def copy_file_from(
        self,
        source_dir: IndexDirectory,
        file_name: str,
        dest_location: str,
    ) -> None:
        dest_dir = self._path(dest_location)
        await self._run(self._copy_file, source_dir, file_name, dest_dir, dest_location)

    def _copy_file(
        self,
        source_dir: IndexDirectory,
        file_name: str,
        dest_dir: Path,
        dest_location: str,
    ) -> None:
        tmp_name = None
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=dest_dir, prefix=f".{file_name}.", suffix=_TMP_SUFFIX)
            with os.fdopen(fd, "wb") as out, source_dir.open_input(file_name) as src:
                shutil.copyfileobj(src, out)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, dest_dir / file_name)
            tmp_name = None
        except OSError as e:
            raise RepositoryIOError(
                f"Unable to copy {file_name} to {dest_dir}: {e}", location=dest_location
            ) from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    async def checksum(self, location: str, file_name: str) -> FileChecksum:
        return await self._run(checksum_path, self._path(location) / file_name)

    async def delete(self, location: str, names: Iterable[str]) -> None:
        path = self._path(location)
        names = list(names)
        if not names:
            return

        def _delete() -> None:
            failed = []
            for name in names:
                try:
                    (path / name).unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Unable to delete {path / name}: {e}")
                    failed.append(name)
            if failed:
                raise RepositoryIOError(
                    f"Unable to delete {len(failed)} file(s) in {path}: {failed}",
                    location=location,
                )

        await self._run(_delete)

    async def delete_directory(self, location: str) -> None:
        path = self._path(location)

        def _rmtree() -> None:
            if not path.exists():
                return
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise RepositoryIOError(f"Unable to delete {path}: {e}", location=location) from e

        await self._run(_rmtree)

    async def close(self) -> None:
        """Nothing to release."""
        pass

    def __str__(self) -> str:
        return f"LocalFileSystemRepository({self.root_dir})"

"""
Index directory implementations.

FSIndexDirectory stores files in a local directory. InMemoryIndexDirectory
keeps them in a dict and is meant for tests and local development.

Invariants:
    - write_file() is atomic per file (temp file + rename on disk)
    - list_all() never returns temporary files
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Dict, List

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".tmp"


class FSIndexDirectory:
    """Index directory backed by the local filesystem.

    Example:
        >>> directory = FSIndexDirectory("/var/lib/segsnap/index")
        >>> directory.write_file("_0.cfs", b"...")
        >>> directory.list_all()
        ['_0.cfs']
    """

    def __init__(self, path: str | Path, create: bool = True) -> None:
        """Initialize the directory.

        Args:
            path: Directory path
            create: Create the directory if it does not exist
        """
        self.path = Path(path)
        if create:
            self.path.mkdir(parents=True, exist_ok=True)

    def list_all(self) -> List[str]:
        if not self.path.exists():
            return []
        return sorted(
            entry.name
            for entry in self.path.iterdir()
            if entry.is_file() and not entry.name.endswith(_TMP_SUFFIX)
        )

    def open_input(self, name: str) -> BinaryIO:
        return open(self.path / name, "rb")

    def file_length(self, name: str) -> int:
        return (self.path / name).stat().st_size

    def write_file(self, name: str, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.path, prefix=f".{name}.", suffix=_TMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path / name)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete_file(self, name: str) -> None:
        (self.path / name).unlink()

    def __str__(self) -> str:
        return f"FSIndexDirectory({self.path})"


class InMemoryIndexDirectory:
    """Index directory kept in memory.

    Thread safety:
        A lock guards the file map; readers get a private copy of the bytes.
    """

    def __init__(self, files: Dict[str, bytes] | None = None) -> None:
        self._files: Dict[str, bytes] = dict(files or {})
        self._lock = threading.Lock()

    def list_all(self) -> List[str]:
        with self._lock:
            return sorted(self._files)

    def open_input(self, name: str) -> BinaryIO:
        with self._lock:
            if name not in self._files:
                raise FileNotFoundError(name)
            return io.BytesIO(self._files[name])

    def file_length(self, name: str) -> int:
        with self._lock:
            if name not in self._files:
                raise FileNotFoundError(name)
            return len(self._files[name])

    def write_file(self, name: str, data: bytes) -> None:
        with self._lock:
            self._files[name] = bytes(data)

    def delete_file(self, name: str) -> None:
        with self._lock:
            if name not in self._files:
                raise FileNotFoundError(name)
            del self._files[name]

    def __str__(self) -> str:
        return f"InMemoryIndexDirectory({len(self._files)} files)"

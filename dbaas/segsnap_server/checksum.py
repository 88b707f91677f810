"""
File content fingerprints.

A FileChecksum is only ever compared for equality: the incremental copy
skips a destination file whose checksum matches the source file of the
same name. Checksums are never used to reconstruct content.

Invariants:
    - Two checksums are equal only if algorithm, value and length all match
    - A stream shorter or longer than its declared length is corrupt
"""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from .errors import CorruptFileError, RepositoryIOError
from .index.base import IndexDirectory

CHECKSUM_ALGORITHM = "crc32"
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FileChecksum:
    """Content fingerprint of one file.

    Attributes:
        algorithm: Algorithm identifier
        value: Checksum value
        length: Content length in bytes
    """

    algorithm: str
    value: int
    length: int

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.value:08x}/{self.length}"


def checksum_stream(
    stream: BinaryIO,
    expected_length: Optional[int] = None,
    file_name: Optional[str] = None,
) -> FileChecksum:
    """Compute the checksum of a readable binary stream.

    Args:
        stream: Stream positioned at the start of the content
        expected_length: Declared content length, verified when given
        file_name: Name used in error messages

    Returns:
        FileChecksum over the full stream

    Raises:
        CorruptFileError: If reading fails or the length does not match
    """
    crc = 0
    length = 0
    try:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            crc = zlib.crc32(chunk, crc)
            length += len(chunk)
    except OSError as e:
        raise CorruptFileError(f"Unable to read {file_name}: {e}", file_name=file_name) from e

    if expected_length is not None and length != expected_length:
        raise CorruptFileError(
            f"Length mismatch for {file_name}: expected {expected_length}, read {length}",
            file_name=file_name,
        )
    return FileChecksum(algorithm=CHECKSUM_ALGORITHM, value=crc & 0xFFFFFFFF, length=length)


def checksum_bytes(data: bytes) -> FileChecksum:
    """Checksum of an in-memory buffer."""
    return FileChecksum(
        algorithm=CHECKSUM_ALGORITHM,
        value=zlib.crc32(data) & 0xFFFFFFFF,
        length=len(data),
    )


def checksum_path(path: Path) -> FileChecksum:
    """Checksum of a local file.

    Raises:
        RepositoryIOError: If the file does not exist
        CorruptFileError: If the file cannot be read consistently
    """
    try:
        expected = path.stat().st_size
        with open(path, "rb") as f:
            return checksum_stream(f, expected, path.name)
    except FileNotFoundError as e:
        raise RepositoryIOError(f"File not found: {path}", location=str(path)) from e
    except CorruptFileError:
        raise
    except OSError as e:
        raise CorruptFileError(f"Unable to read {path}: {e}", file_name=path.name) from e


def checksum_directory_file(directory: IndexDirectory, name: str) -> FileChecksum:
    """Checksum of a file inside an index directory.

    Raises:
        RepositoryIOError: If the file does not exist
        CorruptFileError: If the file cannot be read consistently
    """
    try:
        expected = directory.file_length(name)
        with directory.open_input(name) as f:
            return checksum_stream(f, expected, name)
    except FileNotFoundError as e:
        raise RepositoryIOError(f"File not found in {directory}: {name}") from e
    except OSError as e:
        raise CorruptFileError(f"Unable to read {name}: {e}", file_name=name) from e

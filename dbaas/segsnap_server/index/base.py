"""
Base protocols and types for the segment index collaborator.

The snapshot engine never writes to the index. It only needs:
- An immutable view of one commit (generation + file names)
- Read access to the index directory the commit lives in
- The deletion policy, to reserve a generation while copying
- A named-commit lookup for snapshots of previously recorded commits

Invariants:
    - IndexCommit is immutable; the engine only reads its file list
    - The segments file of a commit is always one of its file names
    - A reserved generation is never reclaimed by the deletion policy

How to change safely:
    - Protocol changes require updating every implementation
    - Keep the segments_<generation> naming stable; snapshots depend on it
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Protocol, runtime_checkable

SEGMENTS_PREFIX = "segments_"


class NoCommitError(Exception):
    """The index has no commit yet."""

    pass


def segments_file_name(generation: int) -> str:
    """Name of the manifest file for a generation."""
    return f"{SEGMENTS_PREFIX}{generation}"


def parse_generation(file_name: str) -> Optional[int]:
    """Return the generation encoded in a segments file name, or None."""
    if not file_name.startswith(SEGMENTS_PREFIX):
        return None
    suffix = file_name[len(SEGMENTS_PREFIX):]
    if not suffix.isdigit():
        return None
    return int(suffix)


@dataclass(frozen=True)
class IndexCommit:
    """One generation of the index's on-disk state.

    Attributes:
        generation: Monotonic commit generation
        file_names: Every file belonging to this commit, segments file included
        segments_file_name: The manifest file that makes the commit readable
    """

    generation: int
    file_names: frozenset
    segments_file_name: str

    @classmethod
    def create(cls, generation: int, data_files: Iterable[str]) -> IndexCommit:
        """Build a commit from its data files, adding the segments file."""
        segments = segments_file_name(generation)
        return cls(
            generation=generation,
            file_names=frozenset(data_files) | {segments},
            segments_file_name=segments,
        )

    def __str__(self) -> str:
        return f"IndexCommit(gen={self.generation}, files={len(self.file_names)})"


@runtime_checkable
class IndexDirectory(Protocol):
    """Flat directory of index files.

    All methods are blocking; async callers run them in an executor.
    Missing files raise FileNotFoundError.
    """

    @abstractmethod
    def list_all(self) -> List[str]:
        """Names of every file in the directory, sorted."""
        ...

    @abstractmethod
    def open_input(self, name: str) -> BinaryIO:
        """Open a file for reading."""
        ...

    @abstractmethod
    def file_length(self, name: str) -> int:
        """Length of a file in bytes."""
        ...

    @abstractmethod
    def write_file(self, name: str, data: bytes) -> None:
        """Write a file in one step (readers never see a partial file)."""
        ...

    @abstractmethod
    def delete_file(self, name: str) -> None:
        """Delete a file."""
        ...


@runtime_checkable
class DeletionPolicy(Protocol):
    """Subset of the index deletion policy used by the snapshot engine."""

    @property
    @abstractmethod
    def latest_commit(self) -> Optional[IndexCommit]:
        """Most recently retained commit, or None before the first commit is seen."""
        ...

    @abstractmethod
    def save_commit_point(self, generation: int) -> None:
        """Reserve a generation against reclamation (reference counted)."""
        ...

    @abstractmethod
    def release_commit_point(self, generation: int) -> None:
        """Drop one reservation previously taken with save_commit_point()."""
        ...


@runtime_checkable
class CommitMetadataStore(Protocol):
    """Lookup of commits recorded under a name."""

    @abstractmethod
    def get_commit_by_name(self, name: str) -> Optional[IndexCommit]:
        """Return the commit recorded under name, or None."""
        ...


@runtime_checkable
class LiveIndexView(Protocol):
    """Access to the commit currently visible to searchers."""

    @abstractmethod
    def current_commit(self) -> IndexCommit:
        """Return the current commit.

        Raises:
            NoCommitError: If the index has never been committed
        """
        ...

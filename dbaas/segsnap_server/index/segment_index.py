"""
Minimal segment index used as the snapshot source.

The index is a flat directory of immutable data files plus one manifest
file per commit:

    segments_<generation>   JSON: {"generation": N, "files": ["_0.cfs", ...]}

A commit is readable once its segments file exists. New commits write
their data files first and the segments file last. After each commit the
deletion policy decides which superseded commits may be reclaimed; files
referenced only by reclaimed commits are deleted.

Invariants:
    - Generations are strictly increasing
    - Data files are never rewritten in place
    - Files of a reserved or latest commit are never deleted

How to change safely:
    - Manifest format changes need a version field
    - Reclamation must consult the deletion policy for every commit
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Iterable, List, Mapping, Optional, Sequence

from .base import (
    IndexCommit,
    IndexDirectory,
    NoCommitError,
    parse_generation,
    segments_file_name,
)
from .policy import CommitDeletionPolicy

logger = logging.getLogger(__name__)


class SegmentIndex:
    """Segment index over an IndexDirectory.

    Attributes:
        directory: Directory holding data files and segments files
        deletion_policy: Policy consulted after every commit

    Example:
        >>> index = SegmentIndex(InMemoryIndexDirectory())
        >>> commit = index.commit({"_0.cfs": b"docs"})
        >>> sorted(commit.file_names)
        ['_0.cfs', 'segments_1']
    """

    def __init__(
        self,
        directory: IndexDirectory,
        deletion_policy: Optional[CommitDeletionPolicy] = None,
    ) -> None:
        self.directory = directory
        self.deletion_policy = deletion_policy or CommitDeletionPolicy()
        self._lock = threading.Lock()
        self.deletion_policy.on_init(self.list_commits())

    def read_commit(self, generation: int) -> IndexCommit:
        """Read a commit from its segments file.

        Raises:
            FileNotFoundError: If the generation has no segments file
            ValueError: If the segments file is malformed
        """
        name = segments_file_name(generation)
        with self.directory.open_input(name) as f:
            raw = f.read()
        try:
            manifest = json.loads(raw.decode("utf-8"))
            files = manifest["files"]
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed segments file {name}: {e}")
        return IndexCommit.create(generation, files)

    def list_commits(self) -> List[IndexCommit]:
        """All commits present in the directory, oldest first."""
        generations = sorted(
            gen
            for gen in (parse_generation(name) for name in self.directory.list_all())
            if gen is not None
        )
        return [self.read_commit(gen) for gen in generations]

    def current_commit(self) -> IndexCommit:
        """Return the newest commit.

        Raises:
            NoCommitError: If the index has never been committed
        """
        generations = [
            gen
            for gen in (parse_generation(name) for name in self.directory.list_all())
            if gen is not None
        ]
        if not generations:
            raise NoCommitError(f"No commit found in {self.directory}")
        return self.read_commit(max(generations))

    def get_commit(self, generation: int) -> Optional[IndexCommit]:
        """Return the commit for a generation, or None if it was reclaimed."""
        try:
            return self.read_commit(generation)
        except FileNotFoundError:
            return None

    def commit(
        self,
        add: Mapping[str, bytes],
        drop: Iterable[str] = (),
    ) -> IndexCommit:
        """Write a new commit.

        The new commit references the previous commit's data files minus
        drop, plus the added files.

        Args:
            add: New data files (name -> content)
            drop: Data files no longer referenced

        Returns:
            The new IndexCommit
        """
        with self._lock:
            try:
                previous = self.current_commit()
                generation = previous.generation + 1
                files = set(previous.file_names) - {previous.segments_file_name}
            except NoCommitError:
                generation = 1
                files = set()

            files -= set(drop)
            for name, data in add.items():
                if parse_generation(name) is not None:
                    raise ValueError(f"Data file name collides with a segments file: {name}")
                self.directory.write_file(name, data)
                files.add(name)

            manifest = {"generation": generation, "files": sorted(files)}
            self.directory.write_file(
                segments_file_name(generation),
                json.dumps(manifest, indent=2).encode("utf-8"),
            )

            commit = IndexCommit.create(generation, files)
            self._reclaim(self.deletion_policy.on_commit(self.list_commits()))

        logger.info(
            "Index committed",
            extra={"generation": generation, "file_count": len(commit.file_names)},
        )
        return commit

    def _reclaim(self, deletable: Sequence[IndexCommit]) -> None:
        """Delete files referenced only by reclaimed commits."""
        if not deletable:
            return

        deletable_gens = {c.generation for c in deletable}
        retained: set[str] = set()
        for c in self.list_commits():
            if c.generation not in deletable_gens:
                retained |= c.file_names

        for c in deletable:
            # Segments file first so a half-reclaimed commit is never listed
            names = [c.segments_file_name] + sorted(c.file_names - {c.segments_file_name})
            for name in names:
                if name in retained:
                    continue
                try:
                    self.directory.delete_file(name)
                except FileNotFoundError:
                    pass
            logger.debug("Reclaimed commit", extra={"generation": c.generation})

"""
Commit deletion policy with generation reservations.

The index asks the policy which superseded commits may be reclaimed after
every commit. The policy keeps the latest commit plus every generation that
currently holds at least one reservation. Snapshot copies and named
snapshots take reservations so the files they read stay on disk.

Invariants:
    - The latest commit is never reclaimed
    - A generation with reserved_count() > 0 is never reclaimed
    - release_commit_point() never drives a count below zero

How to change safely:
    - Keep save/release symmetric; callers rely on exact counting
    - Reclamation decisions must stay under the policy lock
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

from .base import IndexCommit

logger = logging.getLogger(__name__)


class CommitDeletionPolicy:
    """Keep-latest deletion policy with reference-counted reservations.

    Thread safety:
        All state is guarded by a threading lock. Reservations may be taken
        from the event loop while the index commits from a worker thread.

    Example:
        >>> policy = CommitDeletionPolicy()
        >>> policy.on_commit([commit_1])
        []
        >>> policy.save_commit_point(1)
        >>> policy.on_commit([commit_1, commit_2])  # commit_1 stays reserved
        []
        >>> policy.release_commit_point(1)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reserves: Dict[int, int] = {}
        self._commits: Dict[int, IndexCommit] = {}
        self._latest: Optional[IndexCommit] = None

    @property
    def latest_commit(self) -> Optional[IndexCommit]:
        with self._lock:
            return self._latest

    def get_commit(self, generation: int) -> Optional[IndexCommit]:
        """Return a retained commit by generation."""
        with self._lock:
            return self._commits.get(generation)

    def on_init(self, commits: Sequence[IndexCommit]) -> List[IndexCommit]:
        """Called when the index is opened. Same contract as on_commit()."""
        return self.on_commit(commits)

    def on_commit(self, commits: Sequence[IndexCommit]) -> List[IndexCommit]:
        """Record the commits present in the index and pick those to reclaim.

        Args:
            commits: Every commit currently in the index

        Returns:
            Commits the index may delete, oldest first
        """
        if not commits:
            return []

        ordered = sorted(commits, key=lambda c: c.generation)
        latest = ordered[-1]

        with self._lock:
            deletable = [
                c
                for c in ordered[:-1]
                if self._reserves.get(c.generation, 0) == 0
            ]
            deletable_gens = {c.generation for c in deletable}
            self._commits = {
                c.generation: c for c in ordered if c.generation not in deletable_gens
            }
            self._latest = latest

        if deletable:
            logger.debug(
                "Commits eligible for reclamation",
                extra={"generations": sorted(deletable_gens), "latest": latest.generation},
            )
        return deletable

    def save_commit_point(self, generation: int) -> None:
        with self._lock:
            self._reserves[generation] = self._reserves.get(generation, 0) + 1
            count = self._reserves[generation]
        logger.debug("Reserved commit point", extra={"generation": generation, "count": count})

    def release_commit_point(self, generation: int) -> None:
        with self._lock:
            count = self._reserves.get(generation, 0)
            if count == 0:
                raise ValueError(f"Commit generation {generation} is not reserved")
            if count == 1:
                del self._reserves[generation]
            else:
                self._reserves[generation] = count - 1
        logger.debug(
            "Released commit point", extra={"generation": generation, "count": count - 1}
        )

    def reserved_count(self, generation: int) -> int:
        """Number of outstanding reservations for a generation."""
        with self._lock:
            return self._reserves.get(generation, 0)

    @property
    def reserved_generations(self) -> Dict[int, int]:
        """Snapshot of all outstanding reservations."""
        with self._lock:
            return dict(self._reserves)

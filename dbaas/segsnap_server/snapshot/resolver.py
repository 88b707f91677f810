"""
Commit resolution and reservation.

Two modes:
- By name: look the commit up in the named-commit store. No reservation
  is taken; the store's own hold keeps the commit alive.
- Latest: take the deletion policy's latest commit (falling back to the
  live index view before the policy has seen a commit) and reserve its
  generation so background reclamation cannot delete files mid-copy.

Both modes return a CommitReservation. Releasing it is always safe and
happens at most once, so callers can release on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from ..errors import CommitNotFoundError
from ..index.base import CommitMetadataStore, DeletionPolicy, IndexCommit, LiveIndexView

logger = logging.getLogger(__name__)


class CommitReservation:
    """Scoped hold on a commit generation.

    Use as a context manager or call release() explicitly. The underlying
    reservation is dropped exactly once; further release() calls do nothing.

    Attributes:
        commit: The resolved commit
    """

    def __init__(self, commit: IndexCommit, policy: Optional[DeletionPolicy] = None) -> None:
        self.commit = commit
        self._policy = policy
        self._released = False
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self.commit.generation

    @property
    def holds_reservation(self) -> bool:
        """Whether this guard owns a deletion-policy reservation."""
        return self._policy is not None

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Drop the reservation.

        Returns:
            True if this call released it, False if there was nothing to release
        """
        with self._lock:
            if self._released:
                return False
            self._released = True
        if self._policy is None:
            return False
        self._policy.release_commit_point(self.commit.generation)
        return True

    def __enter__(self) -> CommitReservation:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"CommitReservation(gen={self.commit.generation}, "
            f"reserved={self.holds_reservation}, released={self._released})"
        )


class CommitResolver:
    """Finds the commit a snapshot should copy.

    Attributes:
        deletion_policy: Policy holding retained commits and reservations
        live_view: Fallback source of the current commit
        metadata_store: Named-commit lookup (optional)
    """

    def __init__(
        self,
        deletion_policy: DeletionPolicy,
        live_view: LiveIndexView,
        metadata_store: Optional[CommitMetadataStore] = None,
    ) -> None:
        self.deletion_policy = deletion_policy
        self.live_view = live_view
        self.metadata_store = metadata_store

    def get_commit_by_name(self, commit_name: str) -> IndexCommit:
        """Look up a named commit.

        Raises:
            CommitNotFoundError: If no commit is recorded under commit_name
        """
        commit = None
        if self.metadata_store is not None:
            commit = self.metadata_store.get_commit_by_name(commit_name)
        if commit is None:
            raise CommitNotFoundError(commit_name)
        return commit

    def latest_commit(self) -> IndexCommit:
        """Latest retained commit, or the live view's current commit.

        Raises:
            NoCommitError: If the index has no commit at all
        """
        commit = self.deletion_policy.latest_commit
        if commit is not None:
            return commit
        return self.live_view.current_commit()

    def resolve(self, commit_name: Optional[str] = None) -> CommitReservation:
        """Resolve the commit to copy.

        Args:
            commit_name: Named commit to copy, or None for the latest commit

        Returns:
            CommitReservation; latest-mode reservations hold the generation
        """
        return self._reserve(self._lookup(commit_name), commit_name)

    async def resolve_async(self, commit_name: Optional[str] = None) -> CommitReservation:
        """Like resolve(), with the index reads run in the executor.

        The reservation itself is taken on the event loop after the lookup
        returns, so a cancelled caller never leaves a reservation behind.
        """
        loop = asyncio.get_event_loop()
        commit = await loop.run_in_executor(None, self._lookup, commit_name)
        return self._reserve(commit, commit_name)

    def _lookup(self, commit_name: Optional[str]) -> IndexCommit:
        if commit_name is not None:
            return self.get_commit_by_name(commit_name)
        return self.latest_commit()

    def _reserve(self, commit: IndexCommit, commit_name: Optional[str]) -> CommitReservation:
        if commit_name is not None:
            logger.debug(
                "Resolved named commit",
                extra={"commit_name": commit_name, "generation": commit.generation},
            )
            return CommitReservation(commit)

        self.deletion_policy.save_commit_point(commit.generation)
        logger.debug("Reserved latest commit", extra={"generation": commit.generation})
        return CommitReservation(commit, self.deletion_policy)

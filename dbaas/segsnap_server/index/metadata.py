"""
Named commit metadata for the segment index.

A named commit is a generation the operator wants to keep around so it can
be snapshotted later by name. Recording a name takes a reservation with the
deletion policy; deleting the name releases it.

Invariants:
    - Each recorded name holds exactly one reservation on its generation
    - Names are unique
    - The JSON file (when configured) is replaced atomically
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from .base import IndexCommit
from .segment_index import SegmentIndex

logger = logging.getLogger(__name__)


class SnapshotMetadataManager:
    """Records index commits under names.

    Example:
        >>> manager = SnapshotMetadataManager(index)
        >>> manager.snapshot("before-reindex")
        >>> manager.get_commit_by_name("before-reindex").generation
        3
    """

    def __init__(self, index: SegmentIndex, path: str | Path | None = None) -> None:
        """Initialize the manager, restoring reservations from path if present.

        Args:
            index: Index whose commits are named
            path: Optional JSON file persisting name -> generation
        """
        self.index = index
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._names: Dict[str, int] = {}

        if self.path and self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            for name, generation in loaded.items():
                self._names[name] = int(generation)
                self.index.deletion_policy.save_commit_point(int(generation))
            logger.info("Loaded named commits", extra={"count": len(self._names)})

    def snapshot(self, name: str, generation: int | None = None) -> IndexCommit:
        """Record a commit under a name.

        Args:
            name: Commit name
            generation: Generation to record (defaults to the current commit)

        Returns:
            The recorded commit

        Raises:
            ValueError: If the name is taken or the generation does not exist
        """
        with self._lock:
            if name in self._names:
                raise ValueError(f"Commit name already recorded: {name}")

            if generation is None:
                commit = self.index.current_commit()
            else:
                found = self.index.get_commit(generation)
                if found is None:
                    raise ValueError(f"No commit with generation {generation}")
                commit = found

            self.index.deletion_policy.save_commit_point(commit.generation)
            self._names[name] = commit.generation
            self._persist()

        logger.info(
            "Recorded named commit", extra={"name": name, "generation": commit.generation}
        )
        return commit

    def delete_snapshot(self, name: str) -> Optional[int]:
        """Forget a name and release its reservation.

        Returns:
            The generation that was recorded, or None if the name was unknown
        """
        with self._lock:
            generation = self._names.pop(name, None)
            if generation is None:
                return None
            self.index.deletion_policy.release_commit_point(generation)
            self._persist()
        logger.info("Deleted named commit", extra={"name": name, "generation": generation})
        return generation

    def get_commit_by_name(self, name: str) -> Optional[IndexCommit]:
        with self._lock:
            generation = self._names.get(name)
        if generation is None:
            return None
        return self.index.get_commit(generation)

    def list_snapshots(self) -> Dict[str, int]:
        """All recorded names mapped to their generation."""
        with self._lock:
            return dict(self._names)

    def _persist(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self._names, f, indent=2, sort_keys=True)
        os.replace(tmp_name, self.path)

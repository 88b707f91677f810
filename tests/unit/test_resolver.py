"""
Unit tests for commit resolution and reservations.

Tests cover:
- Latest-commit mode reserves the generation
- Named mode takes no reservation
- Release happens exactly once
- Executor-backed resolution
"""

import pytest

from dbaas.segsnap_server.errors import CommitNotFoundError
from dbaas.segsnap_server.index import (
    InMemoryIndexDirectory,
    NoCommitError,
    SegmentIndex,
    SnapshotMetadataManager,
)
from dbaas.segsnap_server.snapshot import CommitReservation, CommitResolver


class TestCommitResolver:
    """Tests for CommitResolver."""

    @pytest.fixture
    def index(self):
        index = SegmentIndex(InMemoryIndexDirectory())
        index.commit({"_0.cfs": b"a"})
        return index

    @pytest.fixture
    def metadata(self, index):
        return SnapshotMetadataManager(index)

    @pytest.fixture
    def resolver(self, index, metadata):
        return CommitResolver(index.deletion_policy, index, metadata)

    def test_latest_reserves(self, index, resolver):
        """Latest mode reserves the generation until released."""
        reservation = resolver.resolve()

        assert reservation.generation == 1
        assert reservation.holds_reservation
        assert index.deletion_policy.reserved_count(1) == 1

        assert reservation.release() is True
        assert index.deletion_policy.reserved_count(1) == 0

    def test_release_is_idempotent(self, index, resolver):
        """Releasing twice drops only one reservation."""
        index.deletion_policy.save_commit_point(1)
        reservation = resolver.resolve()

        assert reservation.release() is True
        assert reservation.release() is False
        assert reservation.released
        assert index.deletion_policy.reserved_count(1) == 1

    def test_context_manager_releases(self, index, resolver):
        """Leaving the with-block releases, even on error."""
        with pytest.raises(RuntimeError):
            with resolver.resolve():
                assert index.deletion_policy.reserved_count(1) == 1
                raise RuntimeError("copy failed")
        assert index.deletion_policy.reserved_count(1) == 0

    def test_latest_tracks_new_commits(self, index, resolver):
        """Latest mode follows the index."""
        index.commit({"_1.cfs": b"b"})
        with resolver.resolve() as reservation:
            assert reservation.generation == 2

    def test_named_takes_no_reservation(self, index, metadata, resolver):
        """Named mode relies on the metadata store's own reservation."""
        metadata.snapshot("keep")
        index.commit({"_1.cfs": b"b"})

        reservation = resolver.resolve("keep")
        assert reservation.generation == 1
        assert not reservation.holds_reservation
        assert index.deletion_policy.reserved_count(1) == 1

        assert reservation.release() is False
        assert index.deletion_policy.reserved_count(1) == 1

    def test_unknown_name(self, resolver):
        """An unrecorded name raises CommitNotFoundError."""
        with pytest.raises(CommitNotFoundError) as exc_info:
            resolver.resolve("missing")
        assert "Unable to find an index commit with name missing" in str(exc_info.value)
        assert exc_info.value.code == "COMMIT_NOT_FOUND"

    def test_name_without_store(self, index):
        """Without a metadata store every name is unknown."""
        resolver = CommitResolver(index.deletion_policy, index)
        with pytest.raises(CommitNotFoundError):
            resolver.resolve("keep")

    def test_empty_index(self):
        """Latest mode on an empty index raises NoCommitError."""
        index = SegmentIndex(InMemoryIndexDirectory())
        resolver = CommitResolver(index.deletion_policy, index)
        with pytest.raises(NoCommitError):
            resolver.resolve()
        assert index.deletion_policy.reserved_generations == {}

    def test_repr(self, resolver):
        reservation = resolver.resolve()
        assert "gen=1" in repr(reservation)
        assert isinstance(reservation, CommitReservation)
        reservation.release()

    @pytest.mark.asyncio
    async def test_resolve_async_reserves_latest(self, index, resolver):
        """The executor-backed lookup reserves like resolve()."""
        reservation = await resolver.resolve_async()

        assert reservation.generation == 1
        assert index.deletion_policy.reserved_count(1) == 1
        reservation.release()
        assert index.deletion_policy.reserved_count(1) == 0

    @pytest.mark.asyncio
    async def test_resolve_async_named(self, index, metadata, resolver):
        metadata.snapshot("keep")
        index.commit({"_1.cfs": b"b"})

        reservation = await resolver.resolve_async("keep")
        assert reservation.generation == 1
        assert not reservation.holds_reservation

        with pytest.raises(CommitNotFoundError):
            await resolver.resolve_async("missing")

    @pytest.mark.asyncio
    async def test_resolve_async_empty_index(self):
        """Errors raised in the executor reach the caller with nothing reserved."""
        index = SegmentIndex(InMemoryIndexDirectory())
        resolver = CommitResolver(index.deletion_policy, index)
        with pytest.raises(NoCommitError):
            await resolver.resolve_async()
        assert index.deletion_policy.reserved_generations == {}

"""
Unit tests for the snapshot copy engine.

Tests cover:
- Full copies and rollback on failure or cancellation
- Incremental reconciliation by checksum
- Segments file written last
- Stale file removal
"""

import asyncio

import pytest

from dbaas.segsnap_server.errors import RepositoryIOError
from dbaas.segsnap_server.index import InMemoryIndexDirectory, SegmentIndex
from dbaas.segsnap_server.repository import InMemoryRepository
from dbaas.segsnap_server.snapshot import CopyEngine, SnapshotDescriptor

BASE = "backups/core1"


def _names(repo):
    return [name for _, name in repo.write_log]


class TestCopyEngine:
    """Tests for CopyEngine."""

    @pytest.fixture
    def index(self):
        index = SegmentIndex(InMemoryIndexDirectory())
        index.commit({"_0.cfs": b"segment zero", "_0.si": b"info zero"})
        return index

    @pytest.fixture
    def repo(self):
        repo = InMemoryRepository()
        repo.put_file("backups", "README", b"")
        return repo

    @pytest.fixture
    def engine(self, repo, index):
        return CopyEngine(repo, index.directory)

    @pytest.fixture
    def descriptor(self, repo):
        return SnapshotDescriptor.create(repo, BASE, "nightly")

    @pytest.mark.asyncio
    async def test_full_copy(self, repo, index, engine, descriptor):
        """A full copy writes every file, data files first."""
        commit = index.current_commit()
        result = await engine.create(commit, descriptor)

        assert result.success
        assert result.generation == 1
        assert result.file_count == 3
        assert result.files_copied == 3
        assert _names(repo) == ["_0.cfs", "_0.si", "segments_1"]
        assert repo.read_file(descriptor.snapshot_location, "_0.cfs") == b"segment zero"

    @pytest.mark.asyncio
    async def test_full_copy_rolls_back(self, repo, index, engine, descriptor):
        """A failed full copy deletes the snapshot directory."""
        repo.fail_copy.add("_0.si")

        with pytest.raises(RepositoryIOError):
            await engine.create(index.current_commit(), descriptor)

        assert not await repo.exists(descriptor.snapshot_location)
        assert "segments_1" not in _names(repo)

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(self, repo, index, engine, descriptor):
        """The copy error is raised even if rollback fails too."""
        repo.fail_copy.add("segments_1")
        repo.fail_delete_directory.add(descriptor.snapshot_location)

        with pytest.raises(RepositoryIOError) as exc_info:
            await engine.create(index.current_commit(), descriptor)
        assert "segments_1" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancelled_full_copy_rolls_back(self, repo, index, engine, descriptor):
        """Cancelling a full copy midway deletes the snapshot directory."""
        repo.stall_copy.add("_0.si")
        task = asyncio.create_task(engine.create(index.current_commit(), descriptor))
        await repo.copy_stalled.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert _names(repo) == ["_0.cfs"]
        assert not await repo.exists(descriptor.snapshot_location)

    @pytest.mark.asyncio
    async def test_cancelled_incremental_copy_not_rolled_back(
        self, repo, index, engine, descriptor
    ):
        """A cancelled incremental copy keeps what it already wrote."""
        repo.stall_copy.add("_0.si")
        task = asyncio.create_task(
            engine.create(index.current_commit(), descriptor, incremental=True)
        )
        await repo.copy_stalled.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert repo.read_file(descriptor.snapshot_location, "_0.cfs") == b"segment zero"
        assert "segments_1" not in repo.files_in(descriptor.snapshot_location)

    @pytest.mark.asyncio
    async def test_incremental_into_empty_location(self, repo, index, engine, descriptor):
        """An incremental copy into a missing directory copies everything."""
        result = await engine.create(index.current_commit(), descriptor, incremental=True)

        assert result.files_copied == 3
        assert _names(repo)[-1] == "segments_1"

    @pytest.mark.asyncio
    async def test_incremental_is_idempotent(self, repo, index, engine, descriptor):
        """Re-running an incremental copy of the same commit writes nothing."""
        commit = index.current_commit()
        await engine.create(commit, descriptor, incremental=True)
        repo.clear_logs()

        result = await engine.create(commit, descriptor, incremental=True)

        assert result.files_copied == 0
        assert result.files_deleted == 0
        assert repo.write_log == []
        assert repo.delete_log == []

    @pytest.mark.asyncio
    async def test_incremental_next_generation(self, repo, index, engine, descriptor):
        """Moving a snapshot from G1 to G2 copies new files, segments last, then drops stale ones."""
        await engine.create(index.current_commit(), descriptor, incremental=True)
        repo.clear_logs()

        commit = index.commit({"_1.cfs": b"segment one"}, drop=["_0.cfs", "_0.si"])
        result = await engine.create(commit, descriptor, incremental=True)

        assert _names(repo) == ["_1.cfs", "segments_2"]
        assert sorted(name for _, name in repo.delete_log) == ["_0.cfs", "_0.si", "segments_1"]
        assert repo.files_in(descriptor.snapshot_location) == ["_1.cfs", "segments_2"]
        assert result.files_copied == 2
        assert result.files_deleted == 3

    @pytest.mark.asyncio
    async def test_incremental_shared_files_skipped(self, repo, index, engine, descriptor):
        """Files shared between generations are not copied again."""
        await engine.create(index.current_commit(), descriptor, incremental=True)
        repo.clear_logs()

        commit = index.commit({"_1.cfs": b"segment one"})
        await engine.create(commit, descriptor, incremental=True)

        assert _names(repo) == ["_1.cfs", "segments_2"]

    @pytest.mark.asyncio
    async def test_incremental_recopies_changed_file(self, repo, index, engine, descriptor):
        """A destination file with different content is replaced."""
        commit = index.current_commit()
        await engine.create(commit, descriptor, incremental=True)
        repo.put_file(descriptor.snapshot_location, "_0.cfs", b"bit rot")
        repo.clear_logs()

        result = await engine.create(commit, descriptor, incremental=True)

        assert _names(repo) == ["_0.cfs"]
        assert result.files_copied == 1
        assert repo.read_file(descriptor.snapshot_location, "_0.cfs") == b"segment zero"

    @pytest.mark.asyncio
    async def test_incremental_recopies_unreadable_file(self, repo, index, engine, descriptor):
        """A destination file whose checksum cannot be computed is replaced."""
        commit = index.current_commit()
        await engine.create(commit, descriptor, incremental=True)
        repo.fail_checksum.add("_0.si")
        repo.clear_logs()

        await engine.create(commit, descriptor, incremental=True)

        assert _names(repo) == ["_0.si"]
        assert repo.delete_log == [(descriptor.snapshot_location, "_0.si")]

    @pytest.mark.asyncio
    async def test_incremental_failure_not_rolled_back(self, repo, index, engine, descriptor):
        """A failed incremental copy keeps the previous generation in place."""
        await engine.create(index.current_commit(), descriptor, incremental=True)

        commit = index.commit({"_1.cfs": b"segment one"})
        repo.fail_copy.add("_1.cfs")
        with pytest.raises(RepositoryIOError):
            await engine.create(commit, descriptor, incremental=True)

        assert repo.files_in(descriptor.snapshot_location) == ["_0.cfs", "_0.si", "segments_1"]

    @pytest.mark.asyncio
    async def test_incremental_unlistable_destination(self, repo, index, engine, descriptor):
        """A destination that cannot be listed is treated as empty."""
        commit = index.current_commit()
        await engine.create(commit, descriptor, incremental=True)
        repo.fail_list.add(descriptor.snapshot_location)
        repo.clear_logs()

        result = await engine.create(commit, descriptor, incremental=True)

        assert result.files_copied == 3
        assert _names(repo)[-1] == "segments_1"

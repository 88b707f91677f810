"""
Unit tests for the snapshot lifecycle controller.

Tests cover:
- Validation before any write
- Blocking and background snapshot creation
- Reservation release on every path, cancellation included
- Retention after anonymous snapshots
- Snapshot deletion
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from dbaas.segsnap_server.errors import (
    BaseLocationMissingError,
    CommitNotFoundError,
    RepositoryIOError,
    SnapshotExistsError,
    SnapshotNotFoundError,
)
from dbaas.segsnap_server.index import (
    InMemoryIndexDirectory,
    SegmentIndex,
    SnapshotMetadataManager,
)
from dbaas.segsnap_server.repository import InMemoryRepository
from dbaas.segsnap_server.snapshot import SnapShooter

BASE = "backups/core1"


class _Clock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start=datetime(2024, 6, 1, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        value = self.current
        self.current += timedelta(minutes=1)
        return value


class TestSnapShooter:
    """Tests for SnapShooter."""

    @pytest.fixture
    def index(self):
        index = SegmentIndex(InMemoryIndexDirectory())
        index.commit({"_0.cfs": b"segment zero"})
        return index

    @pytest.fixture
    def metadata(self, index):
        return SnapshotMetadataManager(index)

    @pytest.fixture
    def repo(self):
        repo = InMemoryRepository()
        repo.make_dirs(BASE)
        return repo

    @pytest.fixture
    def make_shooter(self, repo, index, metadata):
        def _make(**kwargs):
            return SnapShooter.for_index(repo, index, BASE, metadata=metadata, **kwargs)

        return _make

    # Validation

    @pytest.mark.asyncio
    async def test_base_location_must_exist(self, index):
        """A missing base location is reported before anything is copied."""
        repo = InMemoryRepository()
        shooter = SnapShooter.for_index(repo, index, "nowhere", snapshot_name="a")

        with pytest.raises(BaseLocationMissingError) as exc_info:
            await shooter.validate_create()
        assert "Directory does not exist: nowhere" in str(exc_info.value)
        assert repo.write_log == []

    @pytest.mark.asyncio
    async def test_existing_snapshot_rejected(self, repo, make_shooter):
        """A non-incremental snapshot may not overwrite an existing one."""
        repo.put_file(f"{BASE}/snapshot.daily", "segments_1", b"{}")

        with pytest.raises(SnapshotExistsError):
            await make_shooter(snapshot_name="daily").validate_create()

        # Incremental snapshots reuse the directory
        await make_shooter(snapshot_name="daily", incremental=True).validate_create()

    # Blocking creation

    @pytest.mark.asyncio
    async def test_create_named(self, repo, index, make_shooter):
        """A named snapshot copies the latest commit and releases its reservation."""
        shooter = make_shooter(snapshot_name="daily")
        await shooter.validate_create()

        result = await shooter.create_snapshot()

        assert result.success
        assert result.snapshot_name == "daily"
        assert result.directory_name == "snapshot.daily"
        assert result.file_count == 2
        assert repo.files_in(f"{BASE}/snapshot.daily") == ["_0.cfs", "segments_1"]
        assert index.deletion_policy.reserved_generations == {}

    @pytest.mark.asyncio
    async def test_create_from_named_commit(self, repo, index, metadata, make_shooter):
        """A commit name selects an older recorded generation."""
        metadata.snapshot("before-merge")
        index.commit({"_1.cfs": b"segment one"}, drop=["_0.cfs"])

        shooter = make_shooter(snapshot_name="old", commit_name="before-merge")
        result = await shooter.create_snapshot()

        assert result.generation == 1
        assert repo.files_in(f"{BASE}/snapshot.old") == ["_0.cfs", "segments_1"]
        assert index.deletion_policy.reserved_generations == {1: 1}

    @pytest.mark.asyncio
    async def test_unknown_commit_name(self, make_shooter):
        shooter = make_shooter(snapshot_name="x", commit_name="missing")
        with pytest.raises(CommitNotFoundError):
            await shooter.create_snapshot()

    @pytest.mark.asyncio
    async def test_blocking_failure_raises(self, repo, index, make_shooter):
        """The blocking call raises after rollback and releases the reservation."""
        repo.fail_copy.add("segments_1")
        shooter = make_shooter(snapshot_name="daily")

        with pytest.raises(RepositoryIOError):
            await shooter.create_snapshot()

        assert not await repo.exists(f"{BASE}/snapshot.daily")
        assert index.deletion_policy.reserved_generations == {}

    # Background creation

    @pytest.mark.asyncio
    async def test_async_delivers_result(self, index, make_shooter):
        """The callback and the task both receive the result."""
        received = []
        shooter = make_shooter(snapshot_name="daily")

        task = await shooter.create_snapshot_async(1, on_complete=received.append)
        assert index.deletion_policy.reserved_count(1) == 1

        result = await task
        assert received == [result]
        assert result.success
        assert index.deletion_policy.reserved_count(1) == 0
        assert shooter.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_async_unknown_commit_raises_immediately(self, make_shooter):
        """Commit resolution errors surface from the call, not the task."""
        shooter = make_shooter(commit_name="missing")
        with pytest.raises(CommitNotFoundError):
            await shooter.create_snapshot_async(1)
        assert shooter.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_async_failure_result(self, repo, index, make_shooter):
        """Copy failures become failure-shaped results."""
        repo.fail_copy.add("_0.cfs")
        received = []
        shooter = make_shooter(snapshot_name="daily")

        result = await (await shooter.create_snapshot_async(1, on_complete=received.append))

        assert not result.success
        assert result.status == "failed"
        assert result.error_code == "IO_FAILURE"
        assert "exception" in result.to_dict()
        assert received == [result]
        assert not await repo.exists(f"{BASE}/snapshot.daily")
        assert index.deletion_policy.reserved_generations == {}

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, make_shooter):
        """A failing callback does not fail the task."""

        def _boom(result):
            raise RuntimeError("callback bug")

        task = await make_shooter(snapshot_name="daily").create_snapshot_async(1, _boom)
        result = await task
        assert result.success

    @pytest.mark.asyncio
    async def test_concurrent_snapshots_count_reservations(self, index, make_shooter):
        """Parallel snapshots of one commit each hold their own reservation."""
        t1 = await make_shooter(snapshot_name="a").create_snapshot_async(1)
        t2 = await make_shooter(snapshot_name="b").create_snapshot_async(1)
        assert index.deletion_policy.reserved_count(1) == 2

        await asyncio.gather(t1, t2)
        assert index.deletion_policy.reserved_count(1) == 0

    # Cancellation

    @pytest.mark.asyncio
    async def test_cancel_before_start_releases_reservation(self, repo, index, make_shooter):
        """A task cancelled before it runs still releases and reports."""
        received = []
        shooter = make_shooter(snapshot_name="daily")
        task = await shooter.create_snapshot_async(1, received.append)
        assert index.deletion_policy.reserved_count(1) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert index.deletion_policy.reserved_count(1) == 0
        assert shooter.pending_tasks == 0
        assert len(received) == 1
        assert not received[0].success
        assert received[0].error_code == "CANCELLED"
        assert repo.write_log == []

    @pytest.mark.asyncio
    async def test_cancel_during_copy(self, repo, index, make_shooter):
        """Cancelling mid-copy rolls back, releases and reports once."""
        repo.stall_copy.add("segments_1")
        received = []
        shooter = make_shooter(snapshot_name="daily")
        task = await shooter.create_snapshot_async(1, received.append)
        await repo.copy_stalled.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not await repo.exists(f"{BASE}/snapshot.daily")
        assert index.deletion_policy.reserved_generations == {}
        assert [r.error_code for r in received] == ["CANCELLED"]

    @pytest.mark.asyncio
    async def test_cancel_blocking_create(self, repo, index, make_shooter):
        """Cancelling the blocking call rolls back and releases the reservation."""
        repo.stall_copy.add("segments_1")
        task = asyncio.create_task(make_shooter(snapshot_name="daily").create_snapshot())
        await repo.copy_stalled.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not await repo.exists(f"{BASE}/snapshot.daily")
        assert index.deletion_policy.reserved_generations == {}

    # Retention

    @pytest.mark.asyncio
    async def test_anonymous_snapshots_pruned(self, repo, make_shooter):
        """After each anonymous snapshot only number_to_keep remain."""
        clock = _Clock()
        names = []
        for _ in range(3):
            shooter = make_shooter(now=clock)
            result = await (await shooter.create_snapshot_async(2))
            names.append(result.directory_name)

        assert result.pruned == [names[0]]
        listed = [d.name for d in await shooter.list_snapshots()]
        assert listed == [names[2], names[1]]

    @pytest.mark.asyncio
    async def test_named_snapshots_not_pruned(self, repo, make_shooter):
        """Named snapshots neither trigger nor suffer retention."""
        clock = _Clock()
        await (await make_shooter(now=clock).create_snapshot_async(1))
        await (await make_shooter(snapshot_name="keep").create_snapshot_async(1))
        result = await (await make_shooter(now=clock).create_snapshot_async(1))

        listed = [d.name for d in await make_shooter(snapshot_name="x").list_snapshots()]
        assert listed == [result.directory_name, "snapshot.keep"]

    @pytest.mark.asyncio
    async def test_failed_snapshot_does_not_prune(self, repo, make_shooter):
        clock = _Clock()
        first = await (await make_shooter(now=clock).create_snapshot_async(1))

        repo.fail_copy.add("_0.cfs")
        result = await (await make_shooter(now=clock).create_snapshot_async(1))

        assert not result.success
        assert await repo.exists(f"{BASE}/{first.directory_name}")

    @pytest.mark.asyncio
    async def test_retention_failure_reported(self, repo, make_shooter):
        """A retention failure is reported but the snapshot still succeeds."""
        clock = _Clock()
        old = []
        for _ in range(2):
            old.append((await (await make_shooter(now=clock).create_snapshot_async(5))).directory_name)
        repo.fail_delete_directory.add(f"{BASE}/{old[0]}")

        result = await (await make_shooter(now=clock).create_snapshot_async(1))

        assert result.success
        assert result.pruned == [old[1]]
        assert result.retention_error is not None
        assert "retentionError" in result.to_dict()

    # Deletion

    @pytest.mark.asyncio
    async def test_validate_delete_requires_name(self, make_shooter):
        with pytest.raises(ValueError):
            await make_shooter().validate_delete()

    @pytest.mark.asyncio
    async def test_validate_delete_missing(self, make_shooter):
        with pytest.raises(SnapshotNotFoundError) as exc_info:
            await make_shooter(snapshot_name="ghost").validate_delete()
        assert str(exc_info.value) == f"Snapshot ghost cannot be found in directory: {BASE}"

    @pytest.mark.asyncio
    async def test_delete_snapshot(self, repo, make_shooter):
        """A named snapshot can be removed."""
        await make_shooter(snapshot_name="daily").create_snapshot()
        shooter = make_shooter(snapshot_name="daily")
        await shooter.validate_delete()

        result = await shooter.delete_snapshot()

        assert result.success
        assert result.deleted_at is not None
        assert not await repo.exists(f"{BASE}/snapshot.daily")

    @pytest.mark.asyncio
    async def test_delete_failure_reported(self, repo, make_shooter):
        await make_shooter(snapshot_name="daily").create_snapshot()
        repo.fail_delete_directory.add(f"{BASE}/snapshot.daily")

        result = await make_shooter(snapshot_name="daily").delete_snapshot()

        assert not result.success
        assert result.status == "Unable to delete snapshot: daily"
        assert result.to_dict()["exception"]

    @pytest.mark.asyncio
    async def test_delete_async(self, repo, make_shooter):
        await make_shooter(snapshot_name="daily").create_snapshot()
        received = []

        task = await make_shooter(snapshot_name="daily").delete_snapshot_async(
            on_complete=received.append
        )
        result = await task

        assert received == [result]
        assert result.success

    # End to end

    @pytest.mark.asyncio
    async def test_incremental_generations(self, repo, index, make_shooter):
        """An incremental named snapshot follows the index from G1 to G2."""
        await make_shooter(snapshot_name="mirror", incremental=True).create_snapshot()
        index.commit({"_1.cfs": b"segment one"}, drop=["_0.cfs"])
        repo.clear_logs()

        result = await make_shooter(snapshot_name="mirror", incremental=True).create_snapshot()

        assert result.generation == 2
        assert [name for _, name in repo.write_log] == ["_1.cfs", "segments_2"]
        assert repo.files_in(f"{BASE}/snapshot.mirror") == ["_1.cfs", "segments_2"]

    @pytest.mark.asyncio
    async def test_anonymous_incremental_generations(self, repo, index, make_shooter):
        """An anonymous incremental snapshot at G2 = G1 + {_1.cfs} copies only the new files."""
        fixed = datetime(2024, 6, 1, tzinfo=timezone.utc)
        first = await make_shooter(incremental=True, now=lambda: fixed).create_snapshot()
        index.commit({"_1.cfs": b"segment one"})
        repo.clear_logs()

        result = await make_shooter(incremental=True, now=lambda: fixed).create_snapshot()

        assert result.directory_name == first.directory_name
        assert [name for _, name in repo.write_log] == ["_1.cfs", "segments_2"]
        # Only the superseded manifest is dropped
        assert [name for _, name in repo.delete_log] == ["segments_1"]

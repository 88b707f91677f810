"""
Snapshot CLI tool for segsnap.

Creates, deletes and lists snapshots of a segment index without a running
server.

Usage:
    segsnap-snapshot create --index-dir <path> --repo-root <path> [--name N] [--incremental] [--keep K]
    segsnap-snapshot delete --repo-root <path> --name N
    segsnap-snapshot list --repo-root <path>

Options not given on the command line fall back to the environment
variables read by ServerConfig.

Invariants:
    - create validates before copying; nothing is written on validation errors
    - Exit status is 0 on success and 1 on any failure
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Any, Optional

from ..config import LocalRepositoryConfig, RepositoryBackend, ServerConfig
from ..errors import SnapshotError
from ..index import (
    FSIndexDirectory,
    InMemoryIndexDirectory,
    NoCommitError,
    SegmentIndex,
    SnapshotMetadataManager,
)
from ..repository import BackupRepository, create_repository
from ..snapshot import SnapShooter, SnapshotResult

logger = logging.getLogger(__name__)


class SnapshotCLI:
    """Command implementations for the snapshot tool.

    Example:
        >>> cli = SnapshotCLI(config)
        >>> exit_code = asyncio.run(cli.create(name="daily"))
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config

    def _repository(self) -> BackupRepository:
        return create_repository(self.config)

    def _shooter(
        self,
        repository: BackupRepository,
        name: Optional[str] = None,
        commit_name: Optional[str] = None,
        incremental: bool = False,
        with_index: bool = True,
    ) -> SnapShooter:
        metadata = None
        if with_index:
            index = SegmentIndex(FSIndexDirectory(self.config.index.index_dir, create=False))
            metadata = SnapshotMetadataManager(index, self.config.index.metadata_path)
        else:
            # delete and list only touch the repository; the index is never read
            index = SegmentIndex(InMemoryIndexDirectory())
        return SnapShooter.for_index(
            repository,
            index,
            self.config.snapshot.location,
            snapshot_name=name,
            commit_name=commit_name,
            incremental=incremental,
            metadata=metadata,
        )

    async def create(
        self,
        name: Optional[str] = None,
        commit_name: Optional[str] = None,
        incremental: bool = False,
        keep: Optional[int] = None,
    ) -> int:
        """Create a snapshot; prune old anonymous snapshots when keep is given."""
        repository = self._repository()
        try:
            shooter = self._shooter(repository, name, commit_name, incremental)
            await shooter.validate_create()
            if keep is None:
                result = await shooter.create_snapshot()
            else:
                task = await shooter.create_snapshot_async(keep)
                result = await task
        except (SnapshotError, NoCommitError, ValueError) as e:
            print(f"Snapshot failed: {e}")
            return 1
        finally:
            await repository.close()

        _print_result(result)
        return 0 if result.success else 1

    async def delete(self, name: str) -> int:
        """Delete a named snapshot."""
        repository = self._repository()
        try:
            shooter = self._shooter(repository, name, with_index=False)
            await shooter.validate_delete()
            result = await shooter.delete_snapshot()
        except SnapshotError as e:
            print(f"Delete failed: {e}")
            return 1
        finally:
            await repository.close()

        if not result.success:
            print(f"{result.status}: {result.error}")
            return 1
        print(f"Deleted snapshot {name}")
        return 0

    async def list(self) -> int:
        """Print every snapshot directory under the base location."""
        repository = self._repository()
        try:
            shooter = self._shooter(repository, with_index=False)
            snapshots = await shooter.list_snapshots()
        except SnapshotError as e:
            print(f"List failed: {e}")
            return 1
        finally:
            await repository.close()

        for snap in snapshots:
            when = snap.timestamp.isoformat() if snap.timestamp else "-"
            print(f"{snap.name:<40} {when}")
        return 0


def _print_result(result: SnapshotResult) -> None:
    if result.success:
        print("Snapshot completed successfully")
        print(f"  Directory: {result.directory_name}")
        print(f"  Generation: {result.generation}")
        print(f"  Files: {result.file_count} ({result.files_copied} copied, {result.files_deleted} deleted)")
        if result.pruned:
            print(f"  Pruned: {', '.join(result.pruned)}")
        if result.retention_error:
            print(f"  Retention warning: {result.retention_error}")
    else:
        print(f"Snapshot failed: {result.error}")


def build_config(args: Any) -> ServerConfig:
    """Overlay command-line options on the environment configuration."""
    config = ServerConfig.from_env()
    if getattr(args, "repo_root", None):
        config = replace(
            config,
            repository_backend=RepositoryBackend.LOCAL,
            local=LocalRepositoryConfig(root_dir=args.repo_root),
        )
    snapshot = config.snapshot
    if getattr(args, "location", None):
        snapshot = replace(snapshot, location=args.location)
    index = config.index
    if getattr(args, "index_dir", None):
        index = replace(index, index_dir=args.index_dir)
    return replace(config, snapshot=snapshot, index=index)


def main() -> None:
    """CLI entry point for the snapshot tool."""
    parser = argparse.ArgumentParser(description="segsnap snapshot management tool")
    parser.add_argument("--repo-root", help="Local repository root (forces the local backend)")
    parser.add_argument("--location", help="Base location for snapshots")
    parser.add_argument("--index-dir", help="Index directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a snapshot")
    create_parser.add_argument("--name", help="Snapshot name (default: timestamp)")
    create_parser.add_argument("--commit-name", help="Copy a named commit instead of the latest")
    create_parser.add_argument("--incremental", action="store_true", help="Copy only changed files")
    create_parser.add_argument(
        "--keep", type=int, help="Anonymous snapshots to keep (prunes older ones)"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a named snapshot")
    delete_parser.add_argument("--name", required=True, help="Snapshot name")

    subparsers.add_parser("list", help="List snapshots")

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    cli = SnapshotCLI(config)
    if args.command == "create":
        code = asyncio.run(
            cli.create(
                name=args.name,
                commit_name=args.commit_name,
                incremental=args.incremental,
                keep=args.keep,
            )
        )
    elif args.command == "delete":
        code = asyncio.run(cli.delete(args.name))
    else:
        code = asyncio.run(cli.list())
    sys.exit(code)


if __name__ == "__main__":
    main()

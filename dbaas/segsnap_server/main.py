"""
segsnap server - Main entry point.

This module starts the snapshot service:
- Opens the segment index and its named-commit metadata
- Connects the backup repository
- Runs the snapshot scheduler until SIGINT/SIGTERM

Usage:
    python -m dbaas.segsnap_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The base snapshot location exists before the scheduler starts
    - An in-flight snapshot task is shielded from scheduler cancellation

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import ServerConfig
from .index import FSIndexDirectory, SegmentIndex, SnapshotMetadataManager
from .repository import BackupRepository, create_repository
from .snapshot import SnapshotScheduler

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


class Server:
    """segsnap service orchestrator.

    Attributes:
        config: Server configuration
        repository: Backup repository
        index: Segment index being snapshotted
        metadata: Named-commit metadata
        scheduler: Periodic snapshot loop

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig.from_env()
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.repository: BackupRepository | None = None
        self.index: SegmentIndex | None = None
        self.metadata: SnapshotMetadataManager | None = None
        self.scheduler: SnapshotScheduler | None = None
        self._scheduler_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start all components."""
        self.config.log_config()

        self.index = SegmentIndex(FSIndexDirectory(self.config.index.index_dir))
        self.metadata = SnapshotMetadataManager(self.index, self.config.index.metadata_path)

        self.repository = create_repository(self.config)
        await self.repository.create_directory(self.config.snapshot.location)

        if self.config.snapshot.scheduler_enabled:
            self.scheduler = SnapshotScheduler(
                self.repository,
                self.index,
                self.config.snapshot.location,
                interval_seconds=self.config.snapshot.interval_seconds,
                number_to_keep=self.config.snapshot.number_to_keep,
                incremental=self.config.snapshot.incremental,
                snapshot_name=self.config.snapshot.snapshot_name,
                metadata=self.metadata,
            )
            self._scheduler_task = asyncio.create_task(self.scheduler.start())
        else:
            logger.info("Snapshot scheduler disabled")

        logger.info("segsnap server started")

    async def stop(self) -> None:
        """Stop all components gracefully."""
        logger.info("Stopping segsnap server")

        if self.scheduler:
            await self.scheduler.stop()
        if self._scheduler_task:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass

        if self.repository:
            await self.repository.close()

        self._shutdown_event.set()
        logger.info("segsnap server stopped")

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()


async def run_server() -> None:
    """Run the server until a termination signal arrives."""
    config = ServerConfig.from_env()
    setup_logging(config)

    server = Server(config)
    loop = asyncio.get_event_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(server.stop()))

    await server.start()
    await server.wait_for_shutdown()


def main() -> None:
    """Entry point."""
    try:
        asyncio.run(run_server())
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Configuration management for segsnap.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class RepositoryBackend(Enum):
    """Supported backup repository backends."""

    LOCAL = "local"
    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the snapshot repository.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        snapshot_prefix: Key prefix under which snapshot locations live
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "segsnap-backups"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    snapshot_prefix: str = "snapshots"
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "segsnap-backups"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            snapshot_prefix=os.getenv("S3_SNAPSHOT_PREFIX", "snapshots"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class LocalRepositoryConfig:
    """Local filesystem repository configuration.

    Attributes:
        root_dir: Directory that holds snapshot base locations
    """

    root_dir: str = "/var/lib/segsnap/backups"

    @classmethod
    def from_env(cls) -> LocalRepositoryConfig:
        """Load configuration from environment variables."""
        return cls(root_dir=os.getenv("SNAPSHOT_LOCAL_ROOT", "/var/lib/segsnap/backups"))


@dataclass(frozen=True)
class IndexConfig:
    """Segment index configuration.

    Attributes:
        index_dir: Directory containing the live index files
        metadata_path: JSON file recording named commits (optional)
    """

    index_dir: str = "/var/lib/segsnap/index"
    metadata_path: str | None = None

    @classmethod
    def from_env(cls) -> IndexConfig:
        """Load configuration from environment variables."""
        return cls(
            index_dir=os.getenv("INDEX_DIR", "/var/lib/segsnap/index"),
            metadata_path=os.getenv("INDEX_SNAPSHOT_METADATA"),
        )


@dataclass(frozen=True)
class SnapshotConfig:
    """Snapshot engine configuration.

    Attributes:
        location: Base location for snapshot directories (relative to the repository)
        incremental: Whether scheduled snapshots copy incrementally
        number_to_keep: Anonymous snapshots retained after each scheduled run
        interval_seconds: Interval between scheduled snapshots
        scheduler_enabled: Whether the background scheduler runs
        snapshot_name: Fixed name refreshed by each scheduled run (None = timestamped)
    """

    location: str = "default"
    incremental: bool = False
    number_to_keep: int = 1
    interval_seconds: int = 3600  # 1 hour
    scheduler_enabled: bool = True
    snapshot_name: str | None = None

    @classmethod
    def from_env(cls) -> SnapshotConfig:
        """Load configuration from environment variables."""
        return cls(
            location=os.getenv("SNAPSHOT_LOCATION", "default"),
            incremental=os.getenv("SNAPSHOT_INCREMENTAL", "false").lower() == "true",
            number_to_keep=int(os.getenv("SNAPSHOT_NUMBER_TO_KEEP", "1")),
            interval_seconds=int(os.getenv("SNAPSHOT_INTERVAL_SECONDS", "3600")),
            scheduler_enabled=os.getenv("SNAPSHOT_SCHEDULER_ENABLED", "true").lower() == "true",
            snapshot_name=os.getenv("SNAPSHOT_NAME"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete segsnap configuration.

    Attributes:
        repository_backend: Which backup repository to use
        s3: S3 configuration (if repository_backend is S3)
        local: Local repository configuration (if repository_backend is LOCAL)
        index: Segment index configuration
        snapshot: Snapshot engine configuration
        observability: Logging configuration
    """

    repository_backend: RepositoryBackend = RepositoryBackend.LOCAL
    s3: S3Config = field(default_factory=S3Config)
    local: LocalRepositoryConfig = field(default_factory=LocalRepositoryConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("SNAPSHOT_REPOSITORY", "local").lower()
        try:
            backend = RepositoryBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid SNAPSHOT_REPOSITORY '{backend_str}'. Must be one of: local, s3, memory"
            )

        config = cls(
            repository_backend=backend,
            s3=S3Config.from_env(),
            local=LocalRepositoryConfig.from_env(),
            index=IndexConfig.from_env(),
            snapshot=SnapshotConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.repository_backend == RepositoryBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when SNAPSHOT_REPOSITORY=s3")
        if self.repository_backend == RepositoryBackend.LOCAL and not self.local.root_dir:
            raise ValueError("SNAPSHOT_LOCAL_ROOT is required when SNAPSHOT_REPOSITORY=local")

        if self.snapshot.number_to_keep < 1:
            raise ValueError("SNAPSHOT_NUMBER_TO_KEEP must be >= 1")
        if self.snapshot.interval_seconds <= 0:
            raise ValueError("SNAPSHOT_INTERVAL_SECONDS must be > 0")
        # A fixed name is refreshed in place; a full copy into it fails every run after the first.
        if (
            self.snapshot.scheduler_enabled
            and self.snapshot.snapshot_name
            and not self.snapshot.incremental
        ):
            raise ValueError(
                "SNAPSHOT_NAME requires SNAPSHOT_INCREMENTAL=true when the scheduler is enabled"
            )

        if not os.path.exists(self.index.index_dir):
            logger.warning(
                f"Index directory does not exist: {self.index.index_dir}. "
                "Snapshots will fail until the index has a commit."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "segsnap configuration loaded",
            extra={
                "repository_backend": self.repository_backend.value,
                "s3_bucket": self.s3.bucket
                if self.repository_backend == RepositoryBackend.S3
                else None,
                "local_root": self.local.root_dir
                if self.repository_backend == RepositoryBackend.LOCAL
                else None,
                "index_dir": self.index.index_dir,
                "snapshot_location": self.snapshot.location,
                "incremental": self.snapshot.incremental,
                "number_to_keep": self.snapshot.number_to_keep,
                "scheduler_enabled": self.snapshot.scheduler_enabled,
                "log_level": self.observability.log_level,
            },
        )

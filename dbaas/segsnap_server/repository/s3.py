"""
S3 backup repository.

Locations are key prefixes inside one bucket:
    s3://<bucket>/<snapshot_prefix>/<location>/snapshot.<name>/<file>

S3 has no directories. A directory exists when at least one key lives
under its prefix; create_directory() writes a zero-byte marker object
"<location>/" so an empty base location can exist.

Invariants:
    - put_object is atomic per key, so copies are atomic per file
    - Directory markers never show up in list_all()
    - Batch deletes are limited to 1000 keys per request

How to change safely:
    - Keep the key layout stable; existing snapshots depend on it
    - Test against MinIO before changing pagination or batching
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from ..checksum import FileChecksum, checksum_bytes
from ..config import S3Config
from ..errors import CorruptFileError, RepositoryIOError
from ..index.base import IndexDirectory
from .base import PathType, join_location

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


def _read_source(source_dir: IndexDirectory, file_name: str) -> bytes:
    with source_dir.open_input(file_name) as f:
        return f.read()


class S3BackupRepository:
    """BackupRepository backed by an S3 bucket.

    Attributes:
        s3_config: S3 configuration

    Example:
        >>> repo = S3BackupRepository(S3Config.from_env())
        >>> await repo.connect()
        >>> await repo.exists("core1")
        True
        >>> await repo.close()
    """

    def __init__(self, s3_config: S3Config, client: Any = None) -> None:
        """Initialize the repository.

        Args:
            s3_config: S3 configuration
            client: Pre-built S3 client (skips session setup when given)
        """
        self.s3_config = s3_config
        self._s3_client = client
        self._s3_ctx = None
        self._session = None

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client is not None:
            return

        self._session = get_session()

        client_kwargs = {
            "region_name": self.s3_config.region,
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.info("S3 repository connected", extra={"bucket": self.s3_config.bucket})

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_ctx is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
            self._s3_client = None

    async def _client(self) -> Any:
        if self._s3_client is None:
            await self.connect()
        return self._s3_client

    def _key(self, location: str) -> str:
        location = location.strip("/")
        prefix = self.s3_config.snapshot_prefix.strip("/")
        return join_location(prefix, location) if prefix else location

    def _dir_prefix(self, location: str) -> str:
        return self._key(location) + "/"

    def resolve(self, base: str, child: str) -> str:
        return join_location(base, child)

    async def _has_keys_under(self, location: str) -> bool:
        client = await self._client()
        response = await client.list_objects_v2(
            Bucket=self.s3_config.bucket,
            Prefix=self._dir_prefix(location),
            MaxKeys=1,
        )
        return response.get("KeyCount", len(response.get("Contents", []))) > 0

    async def _is_object(self, location: str) -> bool:
        client = await self._client()
        try:
            await client.head_object(Bucket=self.s3_config.bucket, Key=self._key(location))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def exists(self, location: str) -> bool:
        try:
            return await self._has_keys_under(location) or await self._is_object(location)
        except ClientError as e:
            raise RepositoryIOError(f"Unable to check {location}: {e}", location=location) from e

    async def list_all(self, location: str) -> List[str]:
        client = await self._client()
        prefix = self._dir_prefix(location)
        names = set()
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(
                Bucket=self.s3_config.bucket, Prefix=prefix, Delimiter="/"
            ):
                for common in page.get("CommonPrefixes", []):
                    names.add(common["Prefix"][len(prefix):].rstrip("/"))
                for obj in page.get("Contents", []):
                    if obj["Key"] != prefix:
                        names.add(obj["Key"][len(prefix):])
        except ClientError as e:
            raise RepositoryIOError(f"Unable to list {location}: {e}", location=location) from e
        return sorted(n for n in names if n)

    async def get_path_type(self, location: str) -> PathType:
        try:
            if await self._has_keys_under(location):
                return PathType.DIRECTORY
            if await self._is_object(location):
                return PathType.FILE
        except ClientError as e:
            raise RepositoryIOError(f"Unable to stat {location}: {e}", location=location) from e
        raise RepositoryIOError(f"Path does not exist: {location}", location=location)

    async def create_directory(self, location: str) -> None:
        client = await self._client()
        try:
            await client.put_object(
                Bucket=self.s3_config.bucket, Key=self._dir_prefix(location), Body=b""
            )
        except ClientError as e:
            raise RepositoryIOError(f"Unable to create {location}: {e}", location=location) from e

    async def copy_file_from(
        self,
        source_dir: IndexDirectory,
        file_name: str,
        dest_location: str,
    ) -> None:
        try:
            data = await asyncio.get_event_loop().run_in_executor(
                None, _read_source, source_dir, file_name
            )
        except OSError as e:
            raise RepositoryIOError(
                f"Unable to read {file_name}: {e}", location=dest_location
            ) from e

        client = await self._client()
        try:
            await client.put_object(
                Bucket=self.s3_config.bucket,
                Key=self._key(join_location(dest_location, file_name)),
                Body=data,
                ContentType="application/octet-stream",
            )
        except ClientError as e:
            raise RepositoryIOError(
                f"Unable to upload {file_name} to {dest_location}: {e}",
                location=dest_location,
            ) from e

    async def checksum(self, location: str, file_name: str) -> FileChecksum:
        client = await self._client()
        key = self._key(join_location(location, file_name))
        try:
            response = await client.get_object(Bucket=self.s3_config.bucket, Key=key)
            content = await response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                raise RepositoryIOError(f"File not found: {key}", location=location) from e
            raise CorruptFileError(f"Unable to read {key}: {e}", file_name=file_name) from e

        declared = response.get("ContentLength")
        if declared is not None and declared != len(content):
            raise CorruptFileError(
                f"Length mismatch for {key}: expected {declared}, read {len(content)}",
                file_name=file_name,
            )
        return checksum_bytes(content)

    async def _delete_keys(self, keys: List[str], location: str) -> None:
        client = await self._client()
        failed = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = await client.delete_objects(
                    Bucket=self.s3_config.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except ClientError as e:
                logger.warning(f"Batch delete under {location} failed: {e}")
                failed.extend(batch)
                continue
            failed.extend(err["Key"] for err in response.get("Errors", []))

        if failed:
            raise RepositoryIOError(
                f"Unable to delete {len(failed)} object(s) under {location}",
                location=location,
            )

    async def delete(self, location: str, names: Iterable[str]) -> None:
        keys = [self._key(join_location(location, name)) for name in names]
        if keys:
            await self._delete_keys(keys, location)

    async def delete_directory(self, location: str) -> None:
        client = await self._client()
        prefix = self._dir_prefix(location)
        keys = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.s3_config.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            raise RepositoryIOError(f"Unable to list {location}: {e}", location=location) from e

        if keys:
            await self._delete_keys(keys, location)

    def __str__(self) -> str:
        return f"S3BackupRepository(s3://{self.s3_config.bucket}/{self.s3_config.snapshot_prefix})"

import posixpath
import sys
import uuid
from typing import Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError
from loguru import logger

from fsbatch.errors import (
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
    TypeMismatchError,
)
from fsbatch.storage.backend import base_name, resolve_path

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class _S3Entry:
    def __init__(self, storage: "S3Storage", root_prefix: str, full_path: str, quota: "_S3Quota"):
        self._storage = storage
        self._root_prefix = root_prefix
        self._full_path = full_path
        self._quota = quota

    @property
    def name(self) -> str:
        return base_name(self._full_path)

    @property
    def full_path(self) -> str:
        return self._full_path

    def _key(self, full_path: str) -> str:
        return f"{self._root_prefix}{full_path}"

    @property
    def key(self) -> str:
        return self._key(self._full_path)


class _S3Quota:
    def __init__(self, storage: "S3Storage", root_prefix: str, limit: int):
        self._storage = storage
        self._root_prefix = root_prefix
        self.limit = limit

    async def usage(self) -> int:
        return await self._storage._prefix_size(f"{self._root_prefix}/")

    async def check(self, growth: int) -> None:
        if growth <= 0:
            return
        requested = await self.usage() + growth
        if requested > self.limit:
            raise QuotaExceededError(requested, self.limit)


class S3FileObject(_S3Entry):
    def __init__(self, storage, root_prefix, full_path, quota, size: int):
        super().__init__(storage, root_prefix, full_path, quota)
        self._size = size

    @property
    def size(self) -> int:
        return self._size

    async def read(self) -> bytes:
        return await self._storage._get_object(self.key)


class S3Writer(_S3Entry):
    """Positional writer over a whole S3 object.

    S3 objects cannot be patched in place, so every write or truncate reads
    the current object, splices the change in memory and puts it back.
    """

    def __init__(self, storage, root_prefix, full_path, quota, length: int):
        super().__init__(storage, root_prefix, full_path, quota)
        self._position = 0
        self._length = length

    @property
    def position(self) -> int:
        return self._position

    @property
    def length(self) -> int:
        return self._length

    async def write(self, data: bytes) -> None:
        content = await self._storage._get_object(self.key)
        if self._position > len(content):
            content += b"\x00" * (self._position - len(content))
        end = self._position + len(data)
        updated = content[: self._position] + data + content[end:]
        await self._quota.check(len(updated) - len(content))
        await self._storage._put_object(self.key, updated)
        self._position = end
        self._length = len(updated)

    async def truncate(self, size: int) -> None:
        content = await self._storage._get_object(self.key)
        if size <= len(content):
            updated = content[:size]
        else:
            updated = content + b"\x00" * (size - len(content))
        await self._quota.check(len(updated) - len(content))
        await self._storage._put_object(self.key, updated)
        self._length = size
        self._position = min(self._position, size)


class S3File(_S3Entry):
    async def open(self) -> S3FileObject:
        head = await self._storage._head_object(self.key)
        if head is None:
            raise NotFoundError(f"File not found: {self.full_path}")
        return S3FileObject(
            self._storage, self._root_prefix, self._full_path, self._quota,
            size=head.get("ContentLength", 0),
        )

    async def create_writer(self) -> S3Writer:
        head = await self._storage._head_object(self.key)
        if head is None:
            raise NotFoundError(f"File not found: {self.full_path}")
        return S3Writer(
            self._storage, self._root_prefix, self._full_path, self._quota,
            length=head.get("ContentLength", 0),
        )

    async def remove(self) -> None:
        await self._storage._delete_object(self.key)


class S3Directory(_S3Entry):
    async def _directory_exists(self, full_path: str) -> bool:
        if full_path == "/":
            return True
        return await self._storage._prefix_exists(f"{self._key(full_path)}/")

    async def get_file(
        self, name: str, create: bool = False, exclusive: bool = False
    ) -> S3File:
        full_path = resolve_path(self._full_path, name)
        if await self._directory_exists(full_path):
            raise TypeMismatchError(f"Not a file: {full_path}")

        key = self._key(full_path)
        if await self._storage._head_object(key) is not None:
            if create and exclusive:
                raise ConflictError(f"File already exists: {full_path}")
            return S3File(self._storage, self._root_prefix, full_path, self._quota)
        if not create:
            raise NotFoundError(f"File not found: {full_path}")
        if not await self._directory_exists(posixpath.dirname(full_path)):
            raise NotFoundError(f"Directory not found: {posixpath.dirname(full_path)}")

        await self._storage._put_object(key, b"")
        return S3File(self._storage, self._root_prefix, full_path, self._quota)

    async def get_directory(self, name: str, create: bool = False) -> "S3Directory":
        full_path = resolve_path(self._full_path, name)
        if full_path != "/" and await self._storage._head_object(self._key(full_path)) is not None:
            raise TypeMismatchError(f"Not a directory: {full_path}")
        if await self._directory_exists(full_path):
            return S3Directory(self._storage, self._root_prefix, full_path, self._quota)
        if not create:
            raise NotFoundError(f"Directory not found: {full_path}")
        if not await self._directory_exists(posixpath.dirname(full_path)):
            raise NotFoundError(f"Parent directory not found: {full_path}")

        await self._storage._put_object(f"{self._key(full_path)}/", b"")
        return S3Directory(self._storage, self._root_prefix, full_path, self._quota)


class S3Storage:
    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = "fsbatch",
        endpoint_url: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session()
        self._temporary_prefixes: list[str] = []

    def _get_client_kwargs(self) -> dict:
        kwargs = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    def _client(self):
        return self._session.client("s3", **self._get_client_kwargs())

    def _get_root_prefix(self, persistent: bool) -> str:
        if persistent:
            return f"{self.prefix}/persistent"
        return f"{self.prefix}/temporary/{uuid.uuid4().hex}"

    async def open_session(self, persistent: bool, quota_bytes: int) -> S3Directory:
        if quota_bytes <= 0:
            raise StorageError(f"Quota must be positive, got {quota_bytes}")

        root_prefix = self._get_root_prefix(persistent)
        quota = _S3Quota(self, root_prefix, quota_bytes)
        usage = await quota.usage()
        if usage > quota_bytes:
            raise QuotaExceededError(usage, quota_bytes)
        if not persistent:
            self._temporary_prefixes.append(root_prefix)

        logger.info(
            f"Opened S3 storage at s3://{self.bucket}/{root_prefix}/ (quota: {quota_bytes} bytes)"
        )
        return S3Directory(self, root_prefix, "/", quota)

    async def _head_object(self, key: str) -> Optional[dict]:
        try:
            async with self._client() as s3:
                return await s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in _MISSING_CODES:
                return None
            raise StorageError(f"Failed to stat s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat s3://{self.bucket}/{key}: {e}") from e

    async def _get_object(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except ClientError as e:
            if e.response["Error"]["Code"] in _MISSING_CODES:
                raise NotFoundError(f"Object not found: {key}") from e
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e

    async def _put_object(self, key: str, content: bytes) -> None:
        try:
            async with self._client() as s3:
                await s3.put_object(Bucket=self.bucket, Key=key, Body=content)
                logger.debug(f"Uploaded {len(content)} bytes to s3://{self.bucket}/{key}")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write s3://{self.bucket}/{key}: {e}") from e

    async def _delete_object(self, key: str) -> None:
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=key)
                logger.debug(f"Deleted s3://{self.bucket}/{key}")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete s3://{self.bucket}/{key}: {e}") from e

    async def _prefix_exists(self, prefix: str) -> bool:
        try:
            async with self._client() as s3:
                response = await s3.list_objects_v2(
                    Bucket=self.bucket, Prefix=prefix, MaxKeys=1
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e
        return bool(response.get("Contents"))

    async def _prefix_size(self, prefix: str) -> int:
        total = 0
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        total += obj.get("Size", 0)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e
        return total

    async def close(self) -> None:
        for root_prefix in self._temporary_prefixes:
            await self._delete_prefix(f"{root_prefix}/")
        self._temporary_prefixes.clear()

    async def _delete_prefix(self, prefix: str) -> None:
        async with self._client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            objects_to_delete = []

            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects_to_delete.append({"Key": obj["Key"]})

            for i in range(0, len(objects_to_delete), 1000):
                batch = objects_to_delete[i : i + 1000]
                await s3.delete_objects(Bucket=self.bucket, Delete={"Objects": batch})
            if objects_to_delete:
                logger.info(f"Deleted {len(objects_to_delete)} objects under {prefix}")

    async def validate_connection(self) -> None:
        try:
            async with self._client() as s3:
                try:
                    await s3.head_bucket(Bucket=self.bucket)
                    return
                except ClientError as e:
                    code = e.response["Error"]["Code"]
                    if code in ("403", "AccessDenied"):
                        self._exit_with_error(
                            "S3 Authentication Failed",
                            f"Access to bucket '{self.bucket}' was denied.",
                            [
                                "Check AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY",
                                "Check that the credentials can access the bucket",
                            ],
                        )
                    if code not in ("404", "NoSuchBucket"):
                        raise

                logger.info(f"Bucket {self.bucket} not found, creating it")
                try:
                    if self.region == "us-east-1":
                        await s3.create_bucket(Bucket=self.bucket)
                    else:
                        await s3.create_bucket(
                            Bucket=self.bucket,
                            CreateBucketConfiguration={"LocationConstraint": self.region},
                        )
                except ClientError as e:
                    self._exit_with_error(
                        "S3 Bucket Creation Failed",
                        f"Could not create bucket '{self.bucket}': {e}",
                        [f"Create it manually: aws s3 mb s3://{self.bucket}"],
                    )
        except EndpointConnectionError:
            if self.endpoint_url:
                hints = [
                    f"Check that the service at {self.endpoint_url} is running",
                    "For LocalStack: localstack start",
                ]
            else:
                hints = [
                    "Check your network connection and --s3-region",
                    "--s3-endpoint is only needed for LocalStack/MinIO",
                ]
            self._exit_with_error(
                "S3 Connection Failed", "Could not reach the S3 endpoint.", hints
            )

    def _exit_with_error(self, title: str, message: str, hints: list[str]) -> None:
        print("=" * 50)
        print(f"Error: {title}")
        print(message)
        print(f"Bucket: {self.bucket}")
        if self.endpoint_url:
            print(f"Endpoint: {self.endpoint_url}")
        print()
        for hint in hints:
            print(f"  - {hint}")
        print("=" * 50)
        sys.exit(1)

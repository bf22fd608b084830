"""AWS S3 object store."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from sftp_bridge.common.exceptions import BackendError, FileTooLargeError, NotFoundError
from sftp_bridge.storage.base import (
    DEFAULT_CONTENT_TYPE,
    ObjectInfo,
    PrefixListing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
DELETE_BATCH_SIZE = 1000
DEFAULT_MAX_WORKERS = 64


class S3ObjectStore:
    """Object store backed by one S3 bucket.

    The boto3 client is thread-safe and shared by every SFTP session. Blocking
    calls run on the store's own thread pool, never the loop's default
    executor. Size ``max_workers`` to the connection limit: a session has at
    most one call in flight, so no session ever queues behind another.
    """

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Any = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._bucket = bucket
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="s3-store")
        if client is None:
            credentials = {}
            if access_key_id and secret_access_key:
                credentials = {
                    "aws_access_key_id": access_key_id,
                    "aws_secret_access_key": secret_access_key,
                }
            client = boto3.client(
                "s3",
                region_name=region or None,
                config=Config(
                    connect_timeout=min(timeout, 10.0),
                    read_timeout=timeout,
                    retries={"max_attempts": 1, "mode": "standard"},
                ),
                **credentials,
            )
        self._client = client
        logger.info(
            f"S3 object store initialized (bucket={bucket}, region={region}, workers={max_workers})"
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _call(self, op: str, key: str, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        started = asyncio.Event()

        def run() -> T:
            loop.call_soon_threadsafe(started.set)
            return fn()

        future = loop.run_in_executor(self._executor, run)
        # A call cancelled while still queued never runs; don't wait for it to start.
        future.add_done_callback(lambda _: started.set())
        try:
            # The timeout covers the call itself, not time spent queued for a worker.
            await started.wait()
            return await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise BackendError(f"{op} {key}: timed out after {self._timeout}s") from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in NOT_FOUND_CODES:
                raise NotFoundError(f"No such object: {key}") from exc
            raise BackendError(f"{op} {key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"{op} {key}: {exc}") from exc

    async def get_object(self, key: str, max_size: Optional[int] = None) -> bytes:
        def _get() -> bytes:
            r = self._client.get_object(Bucket=self._bucket, Key=key)
            length = r.get("ContentLength") or 0
            if max_size and length > max_size:
                r["Body"].close()
                raise FileTooLargeError(
                    f"{key} is {length} bytes, limit is {max_size}"
                )
            return r["Body"].read()

        return await self._call("get_object", key, _get)

    async def head_object(self, key: str) -> ObjectInfo:
        def _head() -> ObjectInfo:
            r = self._client.head_object(Bucket=self._bucket, Key=key)
            return ObjectInfo(
                key=key,
                size=r.get("ContentLength") or 0,
                last_modified=r.get("LastModified"),
            )

        return await self._call("head_object", key, _head)

    async def put_object(
        self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> None:
        def _put() -> None:
            self._client.put_object(
                Bucket=self._bucket, Key=key, Body=body, ContentType=content_type
            )

        await self._call("put_object", key, _put)
        logger.info(f"Stored {key} ({len(body)} bytes)")

    async def delete_object(self, key: str) -> None:
        def _delete() -> None:
            self._client.delete_object(Bucket=self._bucket, Key=key)

        await self._call("delete_object", key, _delete)
        logger.info(f"Deleted {key}")

    async def list_prefix(self, prefix: str, delimiter: str = "/") -> PrefixListing:
        def _list() -> PrefixListing:
            listing = PrefixListing(prefix=prefix)
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(
                Bucket=self._bucket, Prefix=prefix, Delimiter=delimiter
            ):
                for cp in page.get("CommonPrefixes") or []:
                    if cp.get("Prefix"):
                        listing.common_prefixes.append(cp["Prefix"])
                for obj in page.get("Contents") or []:
                    listing.objects.append(
                        ObjectInfo(
                            key=obj["Key"],
                            size=obj.get("Size") or 0,
                            last_modified=obj.get("LastModified"),
                        )
                    )
            return listing

        return await self._call("list_objects_v2", prefix, _list)

    async def delete_prefix(self, prefix: str) -> int:
        def _delete_all() -> int:
            keys: List[str] = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents") or [])

            for start in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[start:start + DELETE_BATCH_SIZE]
                r = self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = r.get("Errors") or []
                if errors:
                    first = errors[0]
                    raise BackendError(
                        f"delete_objects: {len(errors)} failures, "
                        f"first {first.get('Key')}: {first.get('Code')}"
                    )
            return len(keys)

        count = await self._call("delete_objects", prefix, _delete_all)
        logger.warning(f"Deleted {count} objects under {prefix}")
        return count

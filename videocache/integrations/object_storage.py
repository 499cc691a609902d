"""S3-compatible object storage (Cloudflare R2 in production) for mirrored media.

boto3 is blocking, so every call runs in the default executor.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000
CACHE_CONTROL = "public, max-age=31536000"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStorage:
    """Blob store keyed by `{assetType}/{hash}.{ext}`, published under a public base URL."""

    def __init__(
        self,
        bucket: str,
        public_domain: str,
        endpoint_url: str | None = None,
        region: str = "auto",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.bucket = bucket
        self.public_domain = public_domain.rstrip("/")
        self.endpoint_url = endpoint_url or None
        self.region = region
        self._credentials = (access_key_id, secret_access_key)
        self._client = client
        self._sleep = sleep

    def open(self) -> None:
        if self._client is None:
            access_key_id, secret_access_key = self._credentials
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                region_name=self.region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=Config(retries={"max_attempts": 2}, connect_timeout=10, read_timeout=60),
            )
            logger.info("Object storage ready | bucket=%s | domain=%s", self.bucket, self.public_domain)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def client(self):
        if self._client is None:
            self.open()
        return self._client

    async def _call(self, method: str, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(getattr(self.client, method), **kwargs))

    # ─── URL helpers ───

    def public_url(self, key: str) -> str:
        return f"{self.public_domain}/{key}"

    def is_durable(self, url: str | None) -> bool:
        """True when the URL points into this storage's public domain."""
        return bool(url) and bool(self.public_domain) and url.startswith(self.public_domain + "/")

    def key_from_url(self, url: str) -> str | None:
        if not self.is_durable(url):
            return None
        key = urlparse(url).path.lstrip("/")
        return key or None

    # ─── Blob operations ───

    async def exists(self, key: str, retries: int = 2) -> bool:
        """HEAD the key. A definite 404 answers at once; other errors are retried, then treated as a miss."""
        for attempt in range(retries + 1):
            try:
                await self._call("head_object", Bucket=self.bucket, Key=key)
                return True
            except ClientError as e:
                code = str(e.response.get("Error", {}).get("Code", ""))
                if code in NOT_FOUND_CODES:
                    return False
                logger.debug("Storage HEAD error | key=%s | attempt=%d | %s", key, attempt + 1, code)
            except BotoCoreError as e:
                logger.debug("Storage HEAD error | key=%s | attempt=%d | %s", key, attempt + 1, str(e)[:100])
            if attempt < retries:
                await self._sleep((2 ** attempt) * 0.1)
        return False

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        """Write the blob and return its public URL. Raises ClientError / BotoCoreError."""
        await self._call(
            "put_object",
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl=CACHE_CONTROL,
        )
        return self.public_url(key)

    async def get(self, key: str) -> bytes | None:
        try:
            resp = await self._call("get_object", Bucket=self.bucket, Key=key)
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code", "")) in NOT_FOUND_CODES:
                return None
            raise
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, resp["Body"].read)

    async def delete(self, key: str) -> bool:
        try:
            await self._call("delete_object", Bucket=self.bucket, Key=key)
            logger.info("Storage delete OK | key=%s", key)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error("Storage delete failed | key=%s | %s", key, str(e)[:200])
            return False

    async def delete_many(self, keys: list[str]) -> list[str]:
        """Batch delete. Returns only the keys the store confirmed; failures are logged, never raised."""
        unique = list(dict.fromkeys(k for k in keys if k))
        deleted: list[str] = []

        for i in range(0, len(unique), DELETE_BATCH_SIZE):
            chunk = unique[i:i + DELETE_BATCH_SIZE]
            try:
                resp = await self._call(
                    "delete_objects",
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                logger.error("Storage batch delete failed | keys=%d | %s", len(chunk), str(e)[:200])
                continue

            deleted.extend(d["Key"] for d in resp.get("Deleted", []))
            for err in resp.get("Errors", []):
                logger.warning(
                    "Storage delete error | key=%s | code=%s | %s",
                    err.get("Key"), err.get("Code"), str(err.get("Message", ""))[:100],
                )

        if unique:
            logger.info("Storage batch delete | requested=%d | deleted=%d", len(unique), len(deleted))
        return deleted

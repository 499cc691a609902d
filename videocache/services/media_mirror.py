"""Media Mirror — copies transient CDN URLs into durable object storage.

Storage keys hash the origin URL string (not the bytes), so repeated requests for one URL
resolve to the same key and short-circuit on the existence check without downloading.
Every public entry point returns None instead of raising; callers keep the origin URL.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse, urlunparse

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from videocache.exceptions import DownloadError, MirrorError, UploadError
from videocache.integrations.object_storage import ObjectStorage
from videocache.orchestrator.schemas import MediaItem

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IMAGE_ACCEPT = "image/webp,image/apng,image/avif,image/*,*/*;q=0.8"

# First matching host fragment decides the Referer/Origin; TikTok is the default.
PLATFORM_SITES: list[tuple[tuple[str, ...], str]] = [
    (("douyinpic.com", "douyinvod.com", "douyin.com"), "https://www.douyin.com"),
    (("xhscdn", "xiaohongshu"), "https://www.xiaohongshu.com"),
    (("tiktokcdn", "tiktok.com", "tiktokv"), "https://www.tiktok.com"),
]
DEFAULT_SITE = "https://www.tiktok.com"


class AssetType(str, Enum):
    THUMBNAIL = "thumbnail"
    VIDEO = "video"

    @property
    def prefix(self) -> str:
        return f"{self.value}s"

    @property
    def extension(self) -> str:
        return "jpg" if self is AssetType.THUMBNAIL else "mp4"

    @property
    def content_type(self) -> str:
        return "image/jpeg" if self is AssetType.THUMBNAIL else "video/mp4"


@dataclass(frozen=True)
class MirroredAsset:
    key: str
    public_url: str
    content_type: str


@dataclass
class MirrorResult:
    thumbnail: str | None = None
    video: str | None = None


def url_hash(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def asset_key(origin_url: str, asset_type: AssetType) -> str:
    return f"{asset_type.prefix}/{url_hash(origin_url)}.{asset_type.extension}"


def strip_query(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(query="", fragment=""))


def site_for_url(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    for fragments, site in PLATFORM_SITES:
        if any(f in host for f in fragments):
            return site
    return DEFAULT_SITE


def download_headers(url: str, asset_type: AssetType) -> dict[str, str]:
    """Headers a platform CDN expects from a browser on its own site."""
    site = site_for_url(url)
    headers = {
        "User-Agent": USER_AGENT,
        "Referer": f"{site}/",
        "Origin": site,
    }
    if asset_type is AssetType.THUMBNAIL:
        headers["Accept"] = IMAGE_ACCEPT
    return headers


class MediaMirror:
    """Download-once, upload-with-retry mirroring of origin media into ObjectStorage."""

    def __init__(
        self,
        storage: ObjectStorage,
        download_timeout: int = 30,
        upload_attempts: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.storage = storage
        self.download_timeout = download_timeout
        self.upload_attempts = upload_attempts
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.download_timeout, follow_redirects=True)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.open()
        return self._client

    # ─── Public API ───

    async def mirror(self, origin_url: str | None, asset_type: AssetType) -> str | None:
        """Return a durable URL for origin_url, or None when mirroring is not possible."""
        if not origin_url:
            return None
        if self.storage.is_durable(origin_url):
            return origin_url
        try:
            asset = await self.mirror_asset(origin_url, asset_type)
            return asset.public_url
        except MirrorError as e:
            logger.warning("Mirror failed | type=%s | %s | url=%s", asset_type.value, e, origin_url[:100])
        except Exception as e:
            logger.error("Mirror error | type=%s | %s | url=%s", asset_type.value, str(e)[:200], origin_url[:100])
        return None

    async def mirror_media(self, thumbnail_url: str | None, video_url: str | None) -> MirrorResult:
        """Mirror one item's thumbnail and video concurrently."""
        thumbnail, video = await asyncio.gather(
            self.mirror(thumbnail_url, AssetType.THUMBNAIL),
            self.mirror(video_url, AssetType.VIDEO),
        )
        return MirrorResult(thumbnail=thumbnail, video=video)

    async def mirror_item(self, item: MediaItem, include_video: bool = True) -> MediaItem:
        """Swap an item's media references for durable copies, keeping origin URLs on failure."""
        result = await self.mirror_media(item.thumbnail, item.video_url if include_video else None)
        return item.model_copy(update={
            "thumbnail": result.thumbnail or item.thumbnail,
            "video_url": result.video or item.video_url,
        })

    # ─── Internals ───

    async def mirror_asset(self, origin_url: str, asset_type: AssetType) -> MirroredAsset:
        """Existence check → download → upload. Raises DownloadError / UploadError."""
        key = asset_key(origin_url, asset_type)
        if await self.storage.exists(key):
            logger.info("Mirror hit | key=%s", key)
            return MirroredAsset(key, self.storage.public_url(key), asset_type.content_type)

        start = time.monotonic()
        body = await self._download(origin_url, asset_type)
        public_url = await self._upload(key, body, asset_type.content_type)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info("Mirror OK | key=%s | %.1fKB | %dms", key, len(body) / 1024, elapsed_ms)
        return MirroredAsset(key, public_url, asset_type.content_type)

    async def _download(self, url: str, asset_type: AssetType) -> bytes:
        headers = download_headers(url, asset_type)
        try:
            return await self._fetch(url, headers)
        except DownloadError as first:
            base_url = strip_query(url)
            if base_url == url:
                raise
            # Signed CDN URLs expire; the bare path often still serves.
            logger.warning("Mirror download failed, retrying without query | %s", first)
            try:
                return await self._fetch(base_url, headers)
            except DownloadError as second:
                raise DownloadError(f"Download failed after query-strip retry: {second}") from second

    async def _fetch(self, url: str, headers: dict[str, str]) -> bytes:
        client = await self._http()
        try:
            resp = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise DownloadError(f"Origin fetch error: {str(e)[:200]}") from e
        if resp.status_code >= 300:
            raise DownloadError(f"Origin returned {resp.status_code}", {"url": url[:100]})
        if not resp.content:
            raise DownloadError("Origin returned an empty body", {"url": url[:100]})
        return resp.content

    async def _upload(self, key: str, body: bytes, content_type: str) -> str:
        last_error: Exception | None = None
        for attempt in range(self.upload_attempts):
            try:
                return await self.storage.put(key, body, content_type)
            except (ClientError, BotoCoreError) as e:
                last_error = e
                logger.warning(
                    "Mirror upload failed | key=%s | attempt=%d/%d | %s",
                    key, attempt + 1, self.upload_attempts, str(e)[:200],
                )
            if attempt < self.upload_attempts - 1:
                await self._sleep((2 ** attempt) * 0.5)
        raise UploadError(f"Upload failed after {self.upload_attempts} attempts: {last_error}", {"key": key})

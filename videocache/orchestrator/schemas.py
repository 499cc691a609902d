"""Pydantic models shared across the fetch, cache and HTTP layers.

Split into: canonical media data, cache records, telemetry, and API I/O.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Platform = Literal["tiktok", "douyin", "xiaohongshu"]
PLATFORMS: tuple[str, ...] = ("tiktok", "douyin", "xiaohongshu")

DEFAULT_DATE_RANGE = "all"

# Fields that may point at either durable storage or a transient origin URL.
REFERENCE_FIELDS: tuple[str, ...] = ("thumbnail", "video_url", "creator_url")
# Optional fields a merge must never blank out.
OPTIONAL_FIELDS: tuple[str, ...] = REFERENCE_FIELDS + ("follower_count", "web_video_url")


def normalize_query(query: str) -> str:
    """Collapse whitespace and lower-case so equivalent queries share a key."""
    return " ".join(query.split()).lower()


def make_cache_key(platform: str, query: str, date_range: str = DEFAULT_DATE_RANGE) -> str:
    return f"{platform}:{normalize_query(query)}:{date_range or DEFAULT_DATE_RANGE}"


# ═══════════════ CANONICAL MEDIA ═══════════════

class MediaItem(BaseModel):
    """One platform post/video in canonical form."""
    id: str
    title: str = ""
    description: str = ""
    creator: str = "Unknown"
    creator_url: str | None = None
    follower_count: int | None = Field(default=None, ge=0)
    play_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    share_count: int = Field(default=0, ge=0)
    create_time: int = 0          # epoch millis
    duration: int = Field(default=0, ge=0)  # seconds
    hashtags: list[str] = Field(default_factory=list)
    thumbnail: str | None = None
    video_url: str | None = None
    web_video_url: str | None = None

    @model_validator(mode="after")
    def _unique_hashtags(self) -> MediaItem:
        seen: set[str] = set()
        ordered = []
        for tag in self.hashtags:
            if tag and tag not in seen:
                seen.add(tag)
                ordered.append(tag)
        self.hashtags = ordered
        return self


# ═══════════════ CACHE RECORD ═══════════════

class CacheRecord(BaseModel):
    """Persisted aggregate of items for one (platform, query, date range) key."""
    cache_key: str
    platform: str
    query: str
    date_range: str = DEFAULT_DATE_RANGE
    items: list[MediaItem] = Field(default_factory=list)
    item_count: int = 0
    created_at: datetime
    updated_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    access_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _derive_item_count(self) -> CacheRecord:
        self.item_count = len(self.items)
        return self


# ═══════════════ TELEMETRY ═══════════════

class KeywordStats(BaseModel):
    """Access telemetry for one query, summed across platforms and date ranges."""
    keyword: str
    access_count: int = 0
    item_count: int = 0
    last_accessed_at: datetime | None = None
    platforms: list[str] = Field(default_factory=list)


class CacheStats(BaseModel):
    total_records: int = 0
    platform_counts: dict[str, int] = Field(default_factory=dict)
    total_unique_items: int = 0
    last_update: datetime | None = None


class DeleteResult(BaseModel):
    deleted_records: int = 0
    deleted_assets: int = 0


class RefreshSummary(BaseModel):
    """Outcome of one scheduled refresh run."""
    keywords: list[str] = Field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    items_by_platform: dict[str, int] = Field(default_factory=dict)
    thumbnails_by_platform: dict[str, int] = Field(default_factory=dict)
    duration_ms: int = 0


# ═══════════════ API I/O ═══════════════

class ScrapeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1, max_length=400)
    platform: Platform
    limit: int = Field(default=50, ge=1, le=200)
    date_range: str = Field(default=DEFAULT_DATE_RANGE, alias="dateRange")


class ScrapeResponse(BaseModel):
    success: bool = True
    query: str | None = None
    platform: str | None = None
    videos: list[MediaItem] = Field(default_factory=list)
    count: int = 0
    duration: int = 0
    error: str | None = None


class DeleteRequest(BaseModel):
    """Selector for an explicit cache delete."""
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["single", "expired", "stale"]
    platform: Platform | None = None
    query: str | None = Field(default=None, max_length=400)
    date_range: str = Field(default=DEFAULT_DATE_RANGE, alias="dateRange")
    days_inactive: int = Field(default=30, ge=1, alias="daysInactive")

    @model_validator(mode="after")
    def _single_needs_key(self) -> DeleteRequest:
        if self.action == "single" and (not self.platform or not self.query):
            raise ValueError("platform and query are required for single delete")
        return self

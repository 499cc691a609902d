"""Cache Merge Engine — upserts fetched items into the per-query CacheRecord.

Merge rules for an item id present on both sides:
  - reference fields (thumbnail / video / creator URL): a durable value on either
    side wins; otherwise the incoming value, or the existing one if incoming is empty
  - other optional fields never go from set to empty
  - everything else comes from the incoming item (fresh counters)
Existing items without an incoming match are kept in place; new ids are appended.

The load → merge → upsert sequence is not atomic. Concurrent refreshes of one key
can lose an update; the next refresh reconciles it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from videocache.orchestrator.schemas import (
    REFERENCE_FIELDS,
    CacheRecord,
    MediaItem,
    make_cache_key,
    normalize_query,
)
from videocache.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)
# Optional fields that are not media references.
PLAIN_OPTIONAL_FIELDS = ("follower_count", "web_video_url")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_empty(value) -> bool:
    return value is None or value == ""


def pick_reference(existing: str | None, incoming: str | None, is_durable: Callable[[str], bool]) -> str | None:
    if incoming and is_durable(incoming):
        return incoming
    if existing and is_durable(existing):
        return existing
    return incoming or existing


def merge_item(existing: MediaItem, incoming: MediaItem, is_durable: Callable[[str], bool]) -> MediaItem:
    update = {
        field: pick_reference(getattr(existing, field), getattr(incoming, field), is_durable)
        for field in REFERENCE_FIELDS
    }
    for field in PLAIN_OPTIONAL_FIELDS:
        if _is_empty(getattr(incoming, field)):
            update[field] = getattr(existing, field)
    return incoming.model_copy(update=update)


def merge_items(
    existing: list[MediaItem],
    incoming: list[MediaItem],
    is_durable: Callable[[str], bool],
) -> list[MediaItem]:
    """Merge by id. Result size is N + M − K for K overlapping ids."""
    incoming_by_id: dict[str, MediaItem] = {}
    for item in incoming:
        incoming_by_id.setdefault(item.id, item)

    merged = [
        merge_item(item, incoming_by_id[item.id], is_durable) if item.id in incoming_by_id else item
        for item in existing
    ]
    existing_ids = {item.id for item in existing}
    merged.extend(item for item in incoming_by_id.values() if item.id not in existing_ids)
    return merged


class CacheMergeEngine:
    """Owns upsert/read semantics of CacheRecords over a CacheStore."""

    def __init__(
        self,
        store: CacheStore,
        ttl: timedelta = DEFAULT_TTL,
        is_durable: Callable[[str], bool] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if ttl < timedelta(0):
            raise ValueError("ttl must not be negative")
        self.store = store
        self.ttl = ttl
        self.is_durable = is_durable or (lambda url: False)
        self.clock = clock

    async def upsert(
        self, platform: str, query: str, date_range: str, items: list[MediaItem],
    ) -> CacheRecord:
        """Merge items into the record for the key and reset its expiry. StoreError propagates."""
        cache_key = make_cache_key(platform, query, date_range)
        now = self.clock()

        existing = await self.store.get(cache_key)
        merged = merge_items(existing.items if existing else [], items, self.is_durable)

        record = CacheRecord(
            cache_key=cache_key,
            platform=platform,
            query=normalize_query(query),
            date_range=date_range,
            items=merged,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            last_accessed_at=now,
            expires_at=now + self.ttl,
            access_count=existing.access_count if existing else 0,
        )
        stored = await self.store.upsert(record)
        logger.info(
            "Cache saved | key=%s | incoming=%d | before=%d | after=%d",
            cache_key, len(items), len(existing.items) if existing else 0, stored.item_count,
        )
        return stored

    async def read(self, platform: str, query: str, date_range: str) -> CacheRecord | None:
        """Return the record as stored; every hit bumps access_count and last_accessed_at."""
        cache_key = make_cache_key(platform, query, date_range)
        record = await self.store.get(cache_key)
        if record:
            await self.store.touch(cache_key, self.clock())
            logger.info("Cache HIT | key=%s | items=%d", cache_key, record.item_count)
        return record

    async def records_by_platform(
        self, platform: str, limit: int | None = None, skip: int = 0,
    ) -> list[CacheRecord]:
        return await self.store.list_by_platform(platform, limit=limit, skip=skip)

    async def videos_by_platform(
        self, platform: str, limit: int | None = None, skip: int = 0,
    ) -> list[MediaItem]:
        """All items across a platform's records, newest record first, first id wins."""
        seen: dict[str, MediaItem] = {}
        for record in await self.store.list_by_platform(platform):
            for item in record.items:
                seen.setdefault(item.id, item)
        videos = list(seen.values())[skip:]
        return videos[:limit] if limit else videos

"""Persistent store interface for CacheRecords, plus the in-memory implementation.

The in-memory store is the graceful-degradation fallback when PostgreSQL is
unavailable, and the store used by tests.
"""

import logging
from datetime import datetime
from typing import Protocol

from videocache.orchestrator.schemas import (
    REFERENCE_FIELDS,
    CacheRecord,
    CacheStats,
    KeywordStats,
)

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    backend: str

    async def get(self, cache_key: str) -> CacheRecord | None:
        """Plain point read. Does not touch telemetry."""
        ...

    async def touch(self, cache_key: str, now: datetime) -> None:
        """Increment access_count and set last_accessed_at."""
        ...

    async def upsert(self, record: CacheRecord) -> CacheRecord:
        """Write a record; created_at and access_count are kept from an existing row."""
        ...

    async def delete(self, cache_key: str) -> bool: ...

    async def delete_many(self, cache_keys: list[str]) -> int: ...

    async def list_by_platform(
        self, platform: str, limit: int | None = None, skip: int = 0,
    ) -> list[CacheRecord]: ...

    async def find_expired(self, now: datetime) -> list[CacheRecord]: ...

    async def find_stale(self, cutoff: datetime) -> list[CacheRecord]: ...

    async def aggregate_by_query(self) -> list[KeywordStats]: ...

    async def referenced_assets(self, urls: set[str], exclude_keys: set[str]) -> set[str]:
        """Which of `urls` are still referenced by records outside `exclude_keys`."""
        ...

    async def stats(self) -> CacheStats: ...


def record_references(record: CacheRecord) -> set[str]:
    refs: set[str] = set()
    for item in record.items:
        for field in REFERENCE_FIELDS:
            value = getattr(item, field)
            if value:
                refs.add(value)
    return refs


def group_by_query(records: list[CacheRecord]) -> list[KeywordStats]:
    """Sum access and item counts per query across platforms and date ranges."""
    groups: dict[str, KeywordStats] = {}
    for record in records:
        stats = groups.get(record.query)
        if stats is None:
            stats = groups[record.query] = KeywordStats(keyword=record.query)
        stats.access_count += record.access_count
        stats.item_count += record.item_count
        if stats.last_accessed_at is None or record.last_accessed_at > stats.last_accessed_at:
            stats.last_accessed_at = record.last_accessed_at
        if record.platform not in stats.platforms:
            stats.platforms.append(record.platform)
    return sorted(groups.values(), key=lambda s: s.access_count, reverse=True)


class MemoryCacheStore:
    """Dict-backed CacheStore. Returns copies so callers cannot mutate stored state."""

    backend = "memory"

    def __init__(self):
        self._records: dict[str, CacheRecord] = {}

    async def get(self, cache_key: str) -> CacheRecord | None:
        record = self._records.get(cache_key)
        return record.model_copy(deep=True) if record else None

    async def touch(self, cache_key: str, now: datetime) -> None:
        record = self._records.get(cache_key)
        if record:
            record.access_count += 1
            record.last_accessed_at = now

    async def upsert(self, record: CacheRecord) -> CacheRecord:
        existing = self._records.get(record.cache_key)
        stored = record.model_copy(deep=True)
        if existing:
            stored.created_at = existing.created_at
            stored.access_count = existing.access_count
        self._records[record.cache_key] = stored
        return stored.model_copy(deep=True)

    async def delete(self, cache_key: str) -> bool:
        return self._records.pop(cache_key, None) is not None

    async def delete_many(self, cache_keys: list[str]) -> int:
        return sum(1 for key in set(cache_keys) if self._records.pop(key, None) is not None)

    async def list_by_platform(
        self, platform: str, limit: int | None = None, skip: int = 0,
    ) -> list[CacheRecord]:
        records = sorted(
            (r for r in self._records.values() if r.platform == platform),
            key=lambda r: r.updated_at,
            reverse=True,
        )
        records = records[skip:]
        if limit:
            records = records[:limit]
        return [r.model_copy(deep=True) for r in records]

    async def find_expired(self, now: datetime) -> list[CacheRecord]:
        return [r.model_copy(deep=True) for r in self._records.values() if r.expires_at < now]

    async def find_stale(self, cutoff: datetime) -> list[CacheRecord]:
        return [r.model_copy(deep=True) for r in self._records.values() if r.last_accessed_at < cutoff]

    async def aggregate_by_query(self) -> list[KeywordStats]:
        return group_by_query(list(self._records.values()))

    async def referenced_assets(self, urls: set[str], exclude_keys: set[str]) -> set[str]:
        still_used: set[str] = set()
        for key, record in self._records.items():
            if key not in exclude_keys:
                still_used |= record_references(record) & urls
        return still_used

    async def stats(self) -> CacheStats:
        stats = CacheStats(total_records=len(self._records))
        unique_ids: set[str] = set()
        for record in self._records.values():
            stats.platform_counts[record.platform] = stats.platform_counts.get(record.platform, 0) + 1
            unique_ids.update(item.id for item in record.items)
            if stats.last_update is None or record.updated_at > stats.last_update:
                stats.last_update = record.updated_at
        stats.total_unique_items = len(unique_ids)
        return stats

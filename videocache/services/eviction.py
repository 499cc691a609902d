"""Eviction — removes whole CacheRecords by expiry, staleness or explicit request.

Each eviction deletes mirrored assets first (best effort), then the records.
Assets still referenced by a surviving record are left in place.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from videocache.integrations.object_storage import ObjectStorage
from videocache.orchestrator.schemas import CacheRecord, DeleteRequest, DeleteResult, make_cache_key
from videocache.services.cache_store import CacheStore, record_references

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvictionService:
    """Expiry and staleness sweeps plus explicit deletes."""

    def __init__(
        self,
        store: CacheStore,
        storage: ObjectStorage,
        stale_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.storage = storage
        self.stale_days = stale_days
        self.clock = clock

    async def sweep_expired(self) -> DeleteResult:
        """Evict every record whose expires_at has passed."""
        records = await self.store.find_expired(self.clock())
        return await self._evict(records, reason="expired")

    async def sweep_stale(self, days_inactive: int | None = None) -> DeleteResult:
        """Evict every record not read for `days_inactive` days, regardless of expiry."""
        days = days_inactive or self.stale_days
        cutoff = self.clock() - timedelta(days=days)
        records = await self.store.find_stale(cutoff)
        return await self._evict(records, reason=f"stale>{days}d")

    async def delete_single(self, platform: str, query: str, date_range: str) -> DeleteResult:
        record = await self.store.get(make_cache_key(platform, query, date_range))
        return await self._evict([record] if record else [], reason="explicit")

    async def delete_cache(self, selector: DeleteRequest) -> DeleteResult:
        if selector.action == "single":
            return await self.delete_single(selector.platform, selector.query, selector.date_range)
        if selector.action == "expired":
            return await self.sweep_expired()
        return await self.sweep_stale(selector.days_inactive)

    async def _evict(self, records: list[CacheRecord], reason: str) -> DeleteResult:
        if not records:
            logger.info("Eviction | reason=%s | nothing to delete", reason)
            return DeleteResult()

        start = time.monotonic()
        cache_keys = {record.cache_key for record in records}
        durable: set[str] = set()
        for record in records:
            durable |= {url for url in record_references(record) if self.storage.is_durable(url)}

        shared = await self.store.referenced_assets(durable, cache_keys)
        asset_keys = [self.storage.key_from_url(url) for url in sorted(durable - shared)]

        deleted_assets: list[str] = []
        try:
            deleted_assets = await self.storage.delete_many([k for k in asset_keys if k])
        except Exception as e:
            logger.error("Eviction asset cleanup failed | reason=%s | %s", reason, str(e)[:200])

        deleted_records = await self.store.delete_many(sorted(cache_keys))
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Eviction OK | reason=%s | records=%d | assets=%d/%d | shared_kept=%d | %dms",
            reason, deleted_records, len(deleted_assets), len(asset_keys), len(shared), elapsed_ms,
        )
        return DeleteResult(deleted_records=deleted_records, deleted_assets=len(deleted_assets))

"""Keyword Selector — picks popular queries for scheduled refresh from read telemetry."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from videocache.orchestrator.schemas import KeywordStats
from videocache.services.cache_store import CacheStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rank_keywords(
    groups: list[KeywordStats],
    min_access_count: int,
    max_count: int,
    recent_cutoff: datetime,
) -> list[KeywordStats]:
    """Keep groups read often and recently enough; most-read first, capped to max_count."""
    eligible = [
        g for g in groups
        if g.access_count >= min_access_count
        and g.last_accessed_at is not None
        and g.last_accessed_at >= recent_cutoff
    ]
    eligible.sort(key=lambda g: g.access_count, reverse=True)
    return eligible[:max_count]


class KeywordSelector:
    def __init__(self, store: CacheStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    async def select_refresh_targets(
        self, min_access_count: int = 2, max_count: int = 100, recent_days: int = 7,
    ) -> list[KeywordStats]:
        groups = await self.store.aggregate_by_query()
        cutoff = self.clock() - timedelta(days=recent_days)
        selected = rank_keywords(groups, min_access_count, max_count, cutoff)
        logger.info(
            "Keyword selection | groups=%d | selected=%d | min_access=%d | recent=%dd",
            len(groups), len(selected), min_access_count, recent_days,
        )
        return selected

    async def top_keywords(self, limit: int = 50) -> list[KeywordStats]:
        """Unfiltered access ranking for reporting."""
        groups = await self.store.aggregate_by_query()
        return sorted(groups, key=lambda g: g.access_count, reverse=True)[:limit]

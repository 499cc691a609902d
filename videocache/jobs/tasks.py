"""Scheduled job bodies.

Plain coroutines over injected services so they can be awaited directly.
A failing run is logged and returns None; the next scheduled run is unaffected.
"""

import logging

from videocache.orchestrator.refresh import RefreshService
from videocache.orchestrator.schemas import DeleteResult, RefreshSummary
from videocache.services.eviction import EvictionService

logger = logging.getLogger(__name__)


async def refresh_popular_keywords(
    refresh: RefreshService,
    min_access_count: int = 2,
    max_count: int = 100,
    recent_days: int = 7,
) -> RefreshSummary | None:
    logger.info("Job start | refresh_popular_keywords")
    try:
        return await refresh.refresh_top_keywords(min_access_count, max_count, recent_days)
    except Exception as e:
        logger.error("Job failed | refresh_popular_keywords | %s", str(e)[:200])
        return None


async def sweep_expired_cache(eviction: EvictionService) -> DeleteResult | None:
    logger.info("Job start | sweep_expired_cache")
    try:
        return await eviction.sweep_expired()
    except Exception as e:
        logger.error("Job failed | sweep_expired_cache | %s", str(e)[:200])
        return None


async def sweep_stale_cache(eviction: EvictionService, days_inactive: int = 30) -> DeleteResult | None:
    logger.info("Job start | sweep_stale_cache | days=%d", days_inactive)
    try:
        return await eviction.sweep_stale(days_inactive)
    except Exception as e:
        logger.error("Job failed | sweep_stale_cache | %s", str(e)[:200])
        return None

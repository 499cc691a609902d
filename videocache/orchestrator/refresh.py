"""Refresh orchestration — fetch → merge for one query, one keyword, or the popular set.

Platforms within one keyword run concurrently. Keywords in a scheduled run are
processed one at a time to bound the number of outstanding external jobs.
"""

import asyncio
import logging
import time

from videocache.orchestrator.schemas import DEFAULT_DATE_RANGE, MediaItem, RefreshSummary
from videocache.pipelines import get_adapter
from videocache.pipelines.fanout import FanOutAggregator
from videocache.services.cache_merge import CacheMergeEngine
from videocache.services.keyword_selector import KeywordSelector

logger = logging.getLogger(__name__)


class RefreshService:
    """Single entry point for on-demand and scheduled refreshes."""

    def __init__(
        self,
        aggregator: FanOutAggregator,
        merge_engine: CacheMergeEngine,
        selector: KeywordSelector,
        platforms: list[str] | tuple[str, ...] = ("tiktok", "douyin"),
        refresh_limit: int = 60,
    ):
        self.aggregator = aggregator
        self.merge_engine = merge_engine
        self.selector = selector
        self.platforms = tuple(platforms)
        self.refresh_limit = refresh_limit

    async def refresh(
        self, platform: str, query: str, limit: int = 50, date_range: str = DEFAULT_DATE_RANGE,
    ) -> list[MediaItem]:
        """Fetch one platform and merge the result into its cache record.

        Fetch failures degrade to an empty list. StoreError from the upsert propagates.
        """
        adapter = get_adapter(platform)
        items = await self.aggregator.fetch(adapter, query, limit, date_range)
        if not items:
            logger.warning("Refresh empty | platform=%s | query=%s | cache untouched", platform, query)
            return []
        await self.merge_engine.upsert(platform, query, date_range, items)
        return items

    async def refresh_keyword(
        self,
        query: str,
        platforms: list[str] | tuple[str, ...] | None = None,
        limit: int | None = None,
        date_range: str = DEFAULT_DATE_RANGE,
    ) -> dict[str, list[MediaItem]]:
        """Refresh every platform for one query concurrently; re-raise the first failure."""
        platforms = tuple(platforms or self.platforms)
        limit = limit or self.refresh_limit
        results = await asyncio.gather(
            *(self.refresh(platform, query, limit, date_range) for platform in platforms),
            return_exceptions=True,
        )
        by_platform: dict[str, list[MediaItem]] = {}
        first_error: BaseException | None = None
        for platform, result in zip(platforms, results):
            if isinstance(result, BaseException):
                logger.error("Refresh failed | platform=%s | query=%s | %s", platform, query, str(result)[:200])
                first_error = first_error or result
                by_platform[platform] = []
            else:
                by_platform[platform] = result
        if first_error is not None:
            raise first_error
        return by_platform

    async def refresh_top_keywords(
        self, min_access_count: int = 2, max_count: int = 100, recent_days: int = 7,
    ) -> RefreshSummary:
        """Scheduled run: refresh popular keywords sequentially and report coverage."""
        start = time.monotonic()
        targets = await self.selector.select_refresh_targets(min_access_count, max_count, recent_days)
        summary = RefreshSummary(keywords=[t.keyword for t in targets])
        if not targets:
            logger.info(
                "Scheduled refresh | no keywords | access>=%d | recent=%dd", min_access_count, recent_days,
            )
            return summary

        items_by_platform = dict.fromkeys(self.platforms, 0)
        thumbnails_by_platform = dict.fromkeys(self.platforms, 0)

        for index, target in enumerate(targets, start=1):
            logger.info(
                "Scheduled refresh | [%d/%d] | keyword=%s | access=%d",
                index, len(targets), target.keyword, target.access_count,
            )
            try:
                results = await self.refresh_keyword(target.keyword)
            except Exception as e:
                summary.failed += 1
                logger.error("Scheduled refresh failed | keyword=%s | %s", target.keyword, str(e)[:200])
                continue
            summary.succeeded += 1
            for platform, items in results.items():
                items_by_platform[platform] = items_by_platform.get(platform, 0) + len(items)
                thumbnails_by_platform[platform] = (
                    thumbnails_by_platform.get(platform, 0) + sum(1 for item in items if item.thumbnail)
                )

        summary.items_by_platform = items_by_platform
        summary.thumbnails_by_platform = thumbnails_by_platform
        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Scheduled refresh OK | keywords=%d | ok=%d | failed=%d | items=%s | thumbnails=%s | %dms",
            len(targets), summary.succeeded, summary.failed,
            items_by_platform, thumbnails_by_platform, summary.duration_ms,
        )
        return summary

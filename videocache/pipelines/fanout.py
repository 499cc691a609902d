"""Fan-out Aggregator — concurrent job variants per platform, merged by id.

Flow: variants in parallel (JobPoller.execute) → first-seen-wins merge in
variant order → platform filter → truncate to limit → adapt → mirror media.
A failed variant contributes nothing; the platform result is whatever survived.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from videocache.exceptions import JobError
from videocache.orchestrator.schemas import MediaItem
from videocache.pipelines.base import PlatformAdapter, variant_quota
from videocache.services.job_poller import JobApi, JobPoller
from videocache.services.media_mirror import MediaMirror

logger = logging.getLogger(__name__)


def merge_documents(
    variant_results: list[list[dict[str, Any]]],
    extract_id: Callable[[dict], str | None],
) -> list[dict[str, Any]]:
    """Union of documents by natural id. Earlier variants win; id-less documents are dropped."""
    merged: dict[str, dict[str, Any]] = {}
    for docs in variant_results:
        for doc in docs:
            doc_id = extract_id(doc)
            if doc_id and doc_id not in merged:
                merged[doc_id] = doc
    return list(merged.values())


class FanOutAggregator:
    """Runs a platform's job variants concurrently and returns canonical items."""

    def __init__(
        self,
        api: JobApi,
        mirror: MediaMirror | None = None,
        mirror_videos: bool = True,
        mirror_concurrency: int = 8,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api = api
        self.mirror = mirror
        self.mirror_videos = mirror_videos
        self.mirror_concurrency = max(1, mirror_concurrency)
        self._sleep = sleep

    async def fetch(
        self, adapter: PlatformAdapter, query: str, limit: int, date_range: str,
    ) -> list[MediaItem]:
        start = time.monotonic()
        poller = JobPoller(self.api, adapter.policy, sleep=self._sleep)
        quota = variant_quota(limit, len(adapter.variants), adapter.base_quota)

        results = await asyncio.gather(*(
            self._run_variant(poller, adapter, variant, adapter.build_params(query, date_range, variant, quota))
            for variant in adapter.variants
        ))

        docs = [doc for doc in merge_documents(results, adapter.extract_id) if adapter.accepts(doc)]
        items = self._adapt_all(adapter, docs[:limit])
        if self.mirror is not None and items:
            items = await self._mirror_all(items)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Fan-out OK | platform=%s | query=%s | variants=%s | raw=%d | unique=%d | items=%d | %dms",
            adapter.platform, query, [len(r) for r in results], sum(len(r) for r in results),
            len(docs), len(items), elapsed_ms,
        )
        return items

    async def _run_variant(
        self, poller: JobPoller, adapter: PlatformAdapter, variant: str, params: dict[str, Any],
    ) -> list[dict[str, Any]]:
        try:
            return await poller.execute(adapter.actor_id, params)
        except JobError as e:
            logger.warning(
                "Fan-out variant failed | platform=%s | variant=%s | %s",
                adapter.platform, variant, str(e)[:200],
            )
            return []

    def _adapt_all(self, adapter: PlatformAdapter, docs: list[dict[str, Any]]) -> list[MediaItem]:
        items = []
        for doc in docs:
            try:
                items.append(adapter.adapt(doc))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    "Adapter skipped document | platform=%s | id=%s | %s",
                    adapter.platform, adapter.extract_id(doc), str(e)[:200],
                )
        return items

    async def _mirror_all(self, items: list[MediaItem]) -> list[MediaItem]:
        semaphore = asyncio.Semaphore(self.mirror_concurrency)

        async def mirror_one(item: MediaItem) -> MediaItem:
            async with semaphore:
                return await self.mirror.mirror_item(item, include_video=self.mirror_videos)

        return list(await asyncio.gather(*(mirror_one(item) for item in items)))

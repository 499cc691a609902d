"""Tests for the fan-out aggregator — variant merge, failure isolation, mirroring."""

import asyncio

import pytest

from conftest import FakeJobApi, FakeStorage
from videocache.integrations.apify import ApifyClient
from videocache.pipelines.base import PlatformAdapter, variant_quota
from videocache.pipelines.douyin import DouyinAdapter
from videocache.pipelines.fanout import FanOutAggregator, merge_documents
from videocache.pipelines.tiktok import TikTokAdapter
from videocache.pipelines.xiaohongshu import XiaohongshuAdapter
from videocache.orchestrator.schemas import MediaItem
from videocache.services.job_poller import PollPolicy
from videocache.services.media_mirror import MediaMirror
from videocache.utils.accessors import field


class ThreeVariantAdapter(PlatformAdapter):
    platform = "test"
    actor_id = "test~actor"
    variants = ("one", "two", "three")
    policy = PollPolicy(max_attempts=3)
    id_fields = (field("id"),)

    def build_params(self, query, date_range, variant, quota):
        return {"q": query, "sort": variant, "max": quota}

    def adapt(self, doc):
        return MediaItem(id=doc["id"], title=doc.get("title", ""), thumbnail=doc.get("thumb"))


class TestMergeDocuments:
    def test_first_seen_wins(self):
        merged = merge_documents(
            [[{"id": "a", "v": 1}, {"id": "b", "v": 1}], [{"id": "b", "v": 2}, {"id": "c", "v": 2}]],
            lambda d: d.get("id"),
        )
        assert [(d["id"], d["v"]) for d in merged] == [("a", 1), ("b", 1), ("c", 2)]

    def test_documents_without_id_dropped(self):
        merged = merge_documents([[{"id": "a"}, {"title": "no id"}, {"id": ""}]], lambda d: d.get("id"))
        assert [d["id"] for d in merged] == ["a"]


class TestFanOutAggregator:
    @pytest.mark.asyncio
    async def test_union_with_failed_variant(self, sleep):
        api = FakeJobApi([
            {"results": [{"id": "a"}, {"id": "b"}]},
            {"results": [{"id": "b"}, {"id": "c"}]},
            {"statuses": ["FAILED"]},
        ])
        items = await FanOutAggregator(api, sleep=sleep).fetch(ThreeVariantAdapter(), "cat", 50, "all")

        assert [item.id for item in items] == ["a", "b", "c"]
        assert [params["sort"] for _, params in api.submitted] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_all_variants_fail(self, sleep):
        api = FakeJobApi([{"submit_error": True}, {"statuses": ["ABORTED"]}, {"statuses": ["RUNNING"]}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(ThreeVariantAdapter(), "cat", 50, "all")
        assert items == []

    @pytest.mark.asyncio
    async def test_truncates_to_limit(self, sleep):
        docs = [{"id": str(i)} for i in range(10)]
        api = FakeJobApi([{"results": docs}, {"results": []}, {"results": []}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(ThreeVariantAdapter(), "cat", 4, "all")
        assert [item.id for item in items] == ["0", "1", "2", "3"]

    @pytest.mark.asyncio
    async def test_bad_document_skipped(self, sleep):
        class StrictAdapter(ThreeVariantAdapter):
            def adapt(self, doc):
                if doc.get("broken"):
                    raise ValueError("bad doc")
                return super().adapt(doc)

        api = FakeJobApi([{"results": [{"id": "a", "broken": True}, {"id": "b"}]}, {}, {}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(StrictAdapter(), "cat", 10, "all")
        assert [item.id for item in items] == ["b"]

    @pytest.mark.asyncio
    async def test_douyin_params_per_variant(self, sleep, sample_douyin_doc):
        api = FakeJobApi([{"results": [sample_douyin_doc]}, {"results": [sample_douyin_doc]}, {}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(DouyinAdapter(), "妆容", 60, "7days")

        assert len(items) == 1
        assert {params["searchSortFilter"] for _, params in api.submitted} == {"most_liked", "latest", "general"}
        assert all(params["maxItemsPerUrl"] == 30 for _, params in api.submitted)
        assert all(actor == "natanielsantos~douyin-scraper" for actor, _ in api.submitted)

    @pytest.mark.asyncio
    async def test_xiaohongshu_filters_image_notes(self, sleep, sample_xiaohongshu_doc):
        image_note = {"item": {"id": "img-1", "note_card": {"type": "normal"}}}
        api = FakeJobApi([{"results": [image_note, sample_xiaohongshu_doc]}, {}, {}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(XiaohongshuAdapter(), "通勤妆", 10, "all")
        assert [item.id for item in items] == ["65f0a1b2c3d4e5f600000003"]

    @pytest.mark.asyncio
    async def test_mirrors_thumbnails(self, sleep, httpx_mock):
        storage = FakeStorage()
        mirror = MediaMirror(storage, sleep=sleep)
        httpx_mock.add_response(url="https://p16.tiktokcdn.com/a.jpg", content=b"jpeg-bytes")
        api = FakeJobApi([
            {"results": [{"id": "a", "thumb": "https://p16.tiktokcdn.com/a.jpg"}, {"id": "b"}]}, {}, {},
        ])
        aggregator = FanOutAggregator(api, mirror=mirror, sleep=sleep)

        items = await aggregator.fetch(ThreeVariantAdapter(), "cat", 10, "all")
        await mirror.aclose()

        assert items[0].thumbnail.startswith("https://media.example.com/thumbnails/")
        assert items[1].thumbnail is None
        assert len(storage.blobs) == 1


class GatedJobApi(FakeJobApi):
    """Submits block until `expected` submissions are in flight at once."""

    def __init__(self, scripts, expected):
        super().__init__(scripts)
        self.expected = expected
        self.in_flight = 0
        self.peak = 0
        self._all_in = asyncio.Event()

    async def submit(self, job_type, params):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        if self.in_flight >= self.expected:
            self._all_in.set()
        await asyncio.wait_for(self._all_in.wait(), timeout=1)
        self.in_flight -= 1
        return await super().submit(job_type, params)


class TestFanOutConcurrency:
    @pytest.mark.asyncio
    async def test_variants_run_concurrently(self, sleep):
        api = GatedJobApi([{"results": [{"id": "a"}]}, {"results": [{"id": "b"}]}, {}], expected=3)
        items = await FanOutAggregator(api, sleep=sleep).fetch(ThreeVariantAdapter(), "cat", 10, "all")

        assert api.peak == 3
        assert {item.id for item in items} == {"a", "b"}


class TestMalformedProviderData:
    @pytest.mark.asyncio
    async def test_non_json_dataset_only_loses_its_variant(self, sleep, httpx_mock):
        base = "https://api.apify.test/v2"
        adapter = DouyinAdapter()
        quota = variant_quota(10, len(adapter.variants), adapter.base_quota)
        datasets = {
            "most_liked": {"text": "<html>gateway</html>"},
            "latest": {"json": [{"id": "b"}]},
            "general": {"json": [{"id": "c"}]},
        }
        for variant, body in datasets.items():
            httpx_mock.add_response(
                method="POST",
                url=f"{base}/acts/{adapter.actor_id}/runs",
                match_json=adapter.build_params("妆容", "all", variant, quota),
                json={"data": {"id": f"run-{variant}"}},
            )
            httpx_mock.add_response(
                url=f"{base}/actor-runs/run-{variant}", json={"data": {"status": "SUCCEEDED"}},
            )
            httpx_mock.add_response(url=f"{base}/actor-runs/run-{variant}/dataset/items?format=json", **body)

        async with ApifyClient("token", base_url=base) as api:
            items = await FanOutAggregator(api, sleep=sleep).fetch(adapter, "妆容", 10, "all")

        assert [item.id for item in items] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_overflowed_counter_keeps_document(self, sleep):
        # json.loads("1e999") yields inf
        api = FakeJobApi([{"results": [{"id": "ok"}, {"id": "bad", "likes": float("inf"), "shares": -1}]}])
        items = await FanOutAggregator(api, sleep=sleep).fetch(TikTokAdapter(), "cat", 10, "all")

        assert [item.id for item in items] == ["ok", "bad"]
        assert items[1].like_count == 0
        assert items[1].share_count == 0

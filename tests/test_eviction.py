"""Tests for eviction sweeps and explicit deletes."""

from datetime import timedelta

import pytest

from conftest import NOW, PUBLIC_DOMAIN, FakeStorage, make_item, make_record
from videocache.exceptions import StoreError
from videocache.jobs import tasks
from videocache.orchestrator.schemas import DeleteRequest
from videocache.services.eviction import EvictionService


def durable(key: str) -> str:
    return f"{PUBLIC_DOMAIN}/{key}"


@pytest.fixture
def eviction(store, storage, clock):
    return EvictionService(store, storage, stale_days=30, clock=clock)


class TestExpirySweep:
    @pytest.mark.asyncio
    async def test_two_records_five_assets_one_delete_fails(self, store, clock):
        storage = FakeStorage(fail_delete={"videos/v2.mp4"})
        eviction = EvictionService(store, storage, clock=clock)
        expired = NOW - timedelta(hours=1)
        await store.upsert(make_record(query="a", expires_at=expired, items=[
            make_item("1", thumbnail=durable("thumbnails/t1.jpg"), video_url=durable("videos/v1.mp4")),
            make_item("2", thumbnail=durable("thumbnails/t2.jpg")),
        ]))
        await store.upsert(make_record(query="b", expires_at=expired, items=[
            make_item("3", thumbnail=durable("thumbnails/t3.jpg"), video_url=durable("videos/v2.mp4")),
        ]))

        result = await eviction.sweep_expired()

        assert result.deleted_records == 2
        assert result.deleted_assets == 4
        assert len(storage.delete_requests) == 1
        assert len(storage.delete_requests[0]) == 5
        assert await store.find_expired(NOW) == []
        assert (await store.stats()).total_records == 0

    @pytest.mark.asyncio
    async def test_transient_urls_not_sent_to_storage(self, eviction, store, storage):
        await store.upsert(make_record(expires_at=NOW - timedelta(days=1), items=[
            make_item("1", thumbnail="https://p16.tiktokcdn.com/a.jpg", creator_url=durable("thumbnails/c.jpg")),
        ]))
        result = await eviction.sweep_expired()
        assert storage.delete_requests == [["thumbnails/c.jpg"]]
        assert result.deleted_assets == 1

    @pytest.mark.asyncio
    async def test_live_records_untouched(self, eviction, store, storage):
        await store.upsert(make_record(query="live"))
        result = await eviction.sweep_expired()
        assert result.deleted_records == 0
        assert storage.delete_requests == []
        assert await store.get("tiktok:live:all") is not None

    @pytest.mark.asyncio
    async def test_shared_asset_protected(self, eviction, store, storage):
        shared = durable("thumbnails/shared.jpg")
        await store.upsert(make_record(query="old", expires_at=NOW - timedelta(days=1), items=[
            make_item("1", thumbnail=shared, video_url=durable("videos/only-old.mp4")),
        ]))
        await store.upsert(make_record(platform="douyin", query="new", items=[make_item("9", thumbnail=shared)]))

        result = await eviction.sweep_expired()

        assert storage.delete_requests == [["videos/only-old.mp4"]]
        assert result.deleted_records == 1
        assert result.deleted_assets == 1

    @pytest.mark.asyncio
    async def test_storage_exception_does_not_block_record_delete(self, store, clock):
        class BrokenStorage(FakeStorage):
            async def delete_many(self, keys):
                raise RuntimeError("storage down")

        eviction = EvictionService(store, BrokenStorage(), clock=clock)
        await store.upsert(make_record(expires_at=NOW - timedelta(days=1), items=[
            make_item("1", thumbnail=durable("thumbnails/a.jpg")),
        ]))
        result = await eviction.sweep_expired()
        assert result.deleted_records == 1
        assert result.deleted_assets == 0


class TestStaleSweep:
    @pytest.mark.asyncio
    async def test_stale_independent_of_expiry(self, eviction, store):
        await store.upsert(make_record(
            query="idle", last_accessed_at=NOW - timedelta(days=31), expires_at=NOW + timedelta(days=3),
        ))
        await store.upsert(make_record(query="recent", last_accessed_at=NOW - timedelta(days=2)))

        result = await eviction.sweep_stale()

        assert result.deleted_records == 1
        assert await store.get("tiktok:idle:all") is None
        assert await store.get("tiktok:recent:all") is not None

    @pytest.mark.asyncio
    async def test_custom_threshold(self, eviction, store):
        await store.upsert(make_record(query="idle", last_accessed_at=NOW - timedelta(days=10)))
        assert (await eviction.sweep_stale(30)).deleted_records == 0
        assert (await eviction.sweep_stale(7)).deleted_records == 1


class TestDeleteCache:
    @pytest.mark.asyncio
    async def test_single(self, eviction, store, storage):
        await store.upsert(make_record(query="cat", items=[make_item("1", thumbnail=durable("thumbnails/x.jpg"))]))
        await store.upsert(make_record(query="dog"))

        result = await eviction.delete_cache(DeleteRequest(action="single", platform="tiktok", query="Cat"))

        assert result.deleted_records == 1
        assert result.deleted_assets == 1
        assert await store.get("tiktok:dog:all") is not None

    @pytest.mark.asyncio
    async def test_single_missing(self, eviction):
        result = await eviction.delete_cache(DeleteRequest(action="single", platform="tiktok", query="none"))
        assert result.deleted_records == 0

    @pytest.mark.asyncio
    async def test_stale_selector(self, eviction, store):
        await store.upsert(make_record(query="idle", last_accessed_at=NOW - timedelta(days=15)))
        result = await eviction.delete_cache(DeleteRequest(action="stale", daysInactive=14))
        assert result.deleted_records == 1

    def test_single_requires_key(self):
        with pytest.raises(ValueError):
            DeleteRequest(action="single", platform="tiktok")


class TestSweepJobs:
    @pytest.mark.asyncio
    async def test_store_error_aborts_only_that_run(self, storage, clock):
        class FailingStore:
            calls = 0

            async def find_expired(self, now):
                FailingStore.calls += 1
                raise StoreError("connection lost")

        eviction = EvictionService(FailingStore(), storage, clock=clock)

        assert await tasks.sweep_expired_cache(eviction) is None
        assert await tasks.sweep_expired_cache(eviction) is None
        assert FailingStore.calls == 2

    @pytest.mark.asyncio
    async def test_sweep_job_returns_result(self, eviction, store):
        await store.upsert(make_record(expires_at=NOW - timedelta(days=1)))
        result = await tasks.sweep_expired_cache(eviction)
        assert result.deleted_records == 1

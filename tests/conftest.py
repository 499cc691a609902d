"""Shared test fixtures and fakes."""

import os
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

# No real credentials or database during tests
os.environ.setdefault("APIFY_API_KEY", "")
os.environ.setdefault("STORAGE_ENDPOINT", "")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from videocache.exceptions import SubmissionError  # noqa: E402
from videocache.integrations.apify import RunStatus  # noqa: E402
from videocache.integrations.object_storage import ObjectStorage  # noqa: E402
from videocache.orchestrator.schemas import CacheRecord, MediaItem, make_cache_key  # noqa: E402
from videocache.services.cache_store import MemoryCacheStore  # noqa: E402

PUBLIC_DOMAIN = "https://media.example.com"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# ═══════════════ FAKES ═══════════════


class SleepRecorder:
    """Drop-in for asyncio.sleep that records requested intervals and returns at once."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeJobApi:
    """Scripted JobApi. Each submitted run consumes the next script entry in order.

    Script entry keys: statuses (list, last one repeats), results (list), submit_error (bool).
    """

    def __init__(self, scripts: list[dict]):
        self.scripts = list(scripts)
        self.submitted: list[tuple[str, dict]] = []
        self.status_calls: Counter = Counter()
        self.result_calls: Counter = Counter()
        self._runs: dict[str, dict] = {}

    async def submit(self, job_type: str, params: dict) -> str:
        index = len(self.submitted)
        self.submitted.append((job_type, params))
        script = self.scripts[index] if index < len(self.scripts) else {}
        if script.get("submit_error"):
            raise SubmissionError("rejected", actor=job_type)
        run_id = f"run-{index}"
        self._runs[run_id] = {
            "statuses": list(script.get("statuses", ["SUCCEEDED"])),
            "results": script.get("results", []),
        }
        return run_id

    async def get_status(self, run_id: str) -> RunStatus:
        self.status_calls[run_id] += 1
        statuses = self._runs[run_id]["statuses"]
        status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        return RunStatus(status, "" if status == "SUCCEEDED" else f"{status} message")

    async def get_results(self, run_id: str) -> list[dict]:
        self.result_calls[run_id] += 1
        return self._runs[run_id]["results"]


class FakeStorage(ObjectStorage):
    """ObjectStorage with an in-memory blob map; URL helpers are the real ones."""

    def __init__(self, fail_delete: set[str] | None = None, put_failures: int = 0):
        super().__init__(bucket="test-bucket", public_domain=PUBLIC_DOMAIN)
        self.blobs: dict[str, bytes] = {}
        self.fail_delete = fail_delete or set()
        self.put_failures = put_failures
        self.put_calls = 0
        self.delete_requests: list[list[str]] = []

    async def exists(self, key: str, retries: int = 2) -> bool:
        return key in self.blobs

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        from botocore.exceptions import ClientError

        self.put_calls += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "PutObject")
        self.blobs[key] = body
        return self.public_url(key)

    async def delete_many(self, keys: list[str]) -> list[str]:
        self.delete_requests.append(list(keys))
        deleted = []
        for key in keys:
            if key in self.fail_delete:
                continue
            self.blobs.pop(key, None)
            deleted.append(key)
        return deleted


# ═══════════════ FACTORIES ═══════════════


def make_item(item_id: str, **fields) -> MediaItem:
    return MediaItem(id=item_id, title=fields.pop("title", f"Video {item_id}"), **fields)


def make_record(
    platform: str = "tiktok",
    query: str = "makeup",
    items: list[MediaItem] | None = None,
    date_range: str = "all",
    now: datetime = NOW,
    **fields,
) -> CacheRecord:
    values = {
        "cache_key": make_cache_key(platform, query, date_range),
        "platform": platform,
        "query": query,
        "date_range": date_range,
        "items": items or [],
        "created_at": now,
        "updated_at": now,
        "last_accessed_at": now,
        "expires_at": now + timedelta(days=7),
        "access_count": 0,
    }
    values.update(fields)
    return CacheRecord(**values)


# ═══════════════ FIXTURES ═══════════════


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sample_tiktok_doc():
    """Sample apidojo~tiktok-scraper dataset item."""
    return {
        "id": "7300000000000000001",
        "title": "5 minute everyday makeup #makeup #grwm",
        "views": 120000,
        "likes": "8500",
        "comments": 320,
        "shares": 45,
        "uploadedAt": 1700000000,
        "hashtags": [{"name": "makeup"}, "grwm", {"name": "makeup"}],
        "channel": {
            "name": "Beauty Daily",
            "username": "beautydaily",
            "url": "https://www.tiktok.com/@beautydaily",
            "followers": 54000,
        },
        "video": {
            "url": "https://v16.tiktokcdn.com/video/abc.mp4?sig=1",
            "cover": "https://p16.tiktokcdn.com/cover/abc.jpg?x-expires=1",
            "duration": 42,
        },
    }


@pytest.fixture
def sample_douyin_doc():
    """Sample natanielsantos~douyin-scraper dataset item."""
    return {
        "id": "7200000000000000002",
        "text": "春季妆容教程",
        "createTime": 1690000000,
        "hashtags": [{"name": "妆容"}, "教程"],
        "authorMeta": {
            "name": "化妆师小王",
            "avatarLarge": "https://p3.douyinpic.com/avatar/large.jpeg",
            "followersCount": "120000",
        },
        "statistics": {"diggCount": 9100, "commentCount": 230, "shareCount": 18},
        "videoMeta": {
            "cover": "https://p3.douyinpic.com/cover/xyz.jpeg",
            "playUrl": "https://v3.douyinvod.com/video/xyz.mp4",
            "duration": 35,
        },
        "url": "https://www.douyin.com/video/7200000000000000002",
    }


@pytest.fixture
def sample_xiaohongshu_doc():
    """Sample easyapi~rednote-xiaohongshu-search-scraper dataset item (video note)."""
    return {
        "item": {
            "id": "65f0a1b2c3d4e5f600000003",
            "note_card": {
                "type": "video",
                "display_title": "通勤妆分享",
                "user": {"nickname": "小红薯", "avatar": "https://sns-avatar.xhscdn.com/avatar/1.jpg"},
                "interact_info": {
                    "liked_count": "1.2万",
                    "comment_count": "87",
                    "shared_count": "15",
                },
                "corner_tag_info": [{"type": "publish_time", "text": "3天前"}],
                "cover": {"url_default": "https://sns-webpic.xhscdn.com/cover/default.jpg"},
            },
            "video": {"media": {"duration": 58, "cover": "https://sns-video.xhscdn.com/cover/v.jpg"}},
        },
        "link": "https://www.xiaohongshu.com/explore/65f0a1b2c3d4e5f600000003",
    }

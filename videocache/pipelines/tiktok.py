"""TikTok adapter — single relevance-sorted search run."""

from typing import Any

from videocache.orchestrator.schemas import MediaItem
from videocache.pipelines.base import PlatformAdapter
from videocache.services.job_poller import PollPolicy
from videocache.utils.accessors import dig, field, first_non_empty, to_int, to_str
from videocache.utils.time_parser import now_ms

DATE_RANGES = {
    "all": "DEFAULT",
    "yesterday": "YESTERDAY",
    "7days": "THIS_WEEK",
    "1month": "THIS_MONTH",
    "3months": "LAST_THREE_MONTHS",
}

THUMBNAIL_FIELDS = (
    field("video.thumbnail"),
    field("video.cover"),
    field("cover"),
    field("coverUrl"),
    field("video.dynamicCover"),
    field("video.originCover"),
    field("thumbnail"),
    field("dynamicCover"),
)
VIDEO_URL_FIELDS = (field("video.url"), field("downloadUrl"), field("videoUrl"))
CREATOR_FIELDS = (field("channel.name"), field("channel.username"))


def _page_url(doc: dict) -> str | None:
    if doc.get("postPage"):
        return doc["postPage"]
    channel_url = to_str(dig(doc, "channel.url"))
    if channel_url and doc.get("id"):
        return f"{channel_url.rstrip('/')}/video/{doc['id']}"
    return None


def _hashtags(doc: dict) -> list[str]:
    tags = []
    for tag in doc.get("hashtags") or []:
        name = tag if isinstance(tag, str) else (tag or {}).get("name")
        if name:
            tags.append(str(name))
    return tags


class TikTokAdapter(PlatformAdapter):
    platform = "tiktok"
    actor_id = "apidojo~tiktok-scraper"
    variants = ("relevance",)
    base_quota = 60
    policy = PollPolicy(initial_interval=0.5, backoff_factor=2.0, max_interval=8.0, max_attempts=90)
    id_fields = (field("id"),)

    def build_params(self, query: str, date_range: str, variant: str, quota: int) -> dict[str, Any]:
        return {
            "keywords": [query],
            "maxItems": quota,
            "sortType": "RELEVANCE",
            "location": "US",
            "dateRange": DATE_RANGES.get(date_range, "DEFAULT"),
            "includeSearchKeywords": False,
            "startUrls": [],
        }

    def adapt(self, doc: dict) -> MediaItem:
        title = to_str(doc.get("title")) or ""
        uploaded_at = to_int(doc.get("uploadedAt"))
        followers = dig(doc, "channel.followers")
        return MediaItem(
            id=self.extract_id(doc),
            title=title,
            description=title,
            creator=first_non_empty(doc, CREATOR_FIELDS, "Unknown"),
            creator_url=to_str(dig(doc, "channel.url")),
            follower_count=to_int(followers) if followers is not None else None,
            play_count=to_int(doc.get("views")),
            like_count=to_int(doc.get("likes")),
            comment_count=to_int(doc.get("comments")),
            share_count=to_int(doc.get("shares")),
            create_time=uploaded_at * 1000 if uploaded_at else now_ms(),
            duration=to_int(dig(doc, "video.duration")),
            hashtags=_hashtags(doc),
            thumbnail=to_str(first_non_empty(doc, THUMBNAIL_FIELDS)),
            video_url=to_str(first_non_empty(doc, VIDEO_URL_FIELDS)),
            web_video_url=_page_url(doc),
        )

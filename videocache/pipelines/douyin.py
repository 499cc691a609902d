"""Douyin adapter — three concurrent sort variants per search."""

from typing import Any

from videocache.orchestrator.schemas import MediaItem
from videocache.pipelines.base import PlatformAdapter
from videocache.services.job_poller import PollPolicy
from videocache.utils.accessors import dig, field, first_non_empty, to_int, to_str
from videocache.utils.time_parser import now_ms

PUBLISH_TIME_FILTERS = {
    "all": "all",
    "yesterday": "last_day",
    "7days": "last_week",
    "6months": "last_half_year",
}

TITLE_FIELDS = (field("text"), field("desc"), field("description"))
CREATOR_FIELDS = (field("authorMeta.name"), field("authorName"))
CREATOR_URL_FIELDS = (field("authorMeta.avatarLarge"), field("authorUrl"))
THUMBNAIL_FIELDS = (field("videoMeta.cover"), field("videoMeta.originCover"), field("thumb"))
VIDEO_URL_FIELDS = (
    field("videoMeta.playUrl"),
    field("video.url"),
    field("downloadUrl"),
    field("playUrl"),
)
DURATION_FIELDS = (field("videoMeta.duration"), field("duration"))


def _hashtags(doc: dict) -> list[str]:
    return [
        str(tag if isinstance(tag, str) else tag.get("name"))
        for tag in doc.get("hashtags") or []
        if isinstance(tag, str) or (isinstance(tag, dict) and tag.get("name"))
    ]


class DouyinAdapter(PlatformAdapter):
    platform = "douyin"
    actor_id = "natanielsantos~douyin-scraper"
    variants = ("most_liked", "latest", "general")
    base_quota = 20
    policy = PollPolicy(initial_interval=0.5, backoff_factor=1.5, max_interval=5.0, max_attempts=120)
    id_fields = (field("id"), field("awemeId"))

    def build_params(self, query: str, date_range: str, variant: str, quota: int) -> dict[str, Any]:
        return {
            "searchTermsOrHashtags": [query],
            "searchSortFilter": variant,
            "searchPublishTimeFilter": PUBLISH_TIME_FILTERS.get(date_range, "all"),
            "maxItemsPerUrl": quota,
            "shouldDownloadVideos": True,
            "shouldDownloadCovers": False,
        }

    def adapt(self, doc: dict) -> MediaItem:
        created = to_int(doc.get("createTime"))
        followers = dig(doc, "authorMeta.followersCount")
        likes = to_int(dig(doc, "statistics.diggCount"))
        return MediaItem(
            id=self.extract_id(doc),
            title=first_non_empty(doc, TITLE_FIELDS, ""),
            description=first_non_empty(doc, TITLE_FIELDS[:2], ""),
            creator=first_non_empty(doc, CREATOR_FIELDS, "Unknown"),
            creator_url=to_str(first_non_empty(doc, CREATOR_URL_FIELDS)),
            follower_count=to_int(followers) if followers is not None else None,
            # The provider reports no play count; likes are the closest signal.
            play_count=to_int(dig(doc, "statistics.playCount"), likes),
            like_count=likes,
            comment_count=to_int(dig(doc, "statistics.commentCount")),
            share_count=to_int(dig(doc, "statistics.shareCount")),
            create_time=created * 1000 if created else now_ms(),
            duration=to_int(first_non_empty(doc, DURATION_FIELDS)),
            hashtags=_hashtags(doc),
            thumbnail=to_str(first_non_empty(doc, THUMBNAIL_FIELDS)),
            video_url=to_str(first_non_empty(doc, VIDEO_URL_FIELDS)),
            web_video_url=to_str(doc.get("url")),
        )

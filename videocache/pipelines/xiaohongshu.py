"""Xiaohongshu adapter — three sort variants, video notes only.

Search results mix image and video notes; only notes carrying video are kept.
Publish time is only available as a relative corner tag.
"""

from typing import Any

from videocache.orchestrator.schemas import MediaItem
from videocache.pipelines.base import PlatformAdapter
from videocache.services.job_poller import PollPolicy
from videocache.utils.accessors import dig, field, first_non_empty, to_int, to_str
from videocache.utils.time_parser import parse_corner_tags

TITLE_FIELDS = (field("item.note_card.display_title"), field("item.title"))
THUMBNAIL_FIELDS = (field("item.video.media.cover"), field("item.note_card.cover.url_default"))
PAGE_URL_FIELDS = (field("link"), field("postUrl"), field("url"))


class XiaohongshuAdapter(PlatformAdapter):
    platform = "xiaohongshu"
    actor_id = "easyapi~rednote-xiaohongshu-search-scraper"
    variants = ("general", "latest", "hotest")
    base_quota = 25
    policy = PollPolicy(initial_interval=0.5, backoff_factor=1.5, max_interval=6.0, max_attempts=90)
    id_fields = (field("item.id"), field("id"))

    def build_params(self, query: str, date_range: str, variant: str, quota: int) -> dict[str, Any]:
        return {
            "keywords": [query],
            "sortType": variant,
            "noteType": "video",
            "maxItems": quota,
        }

    def accepts(self, doc: dict) -> bool:
        return (
            dig(doc, "item.note_card.type") == "video"
            or dig(doc, "item.type") == "video"
            or bool(dig(doc, "item.video.media"))
        )

    def adapt(self, doc: dict) -> MediaItem:
        title = first_non_empty(doc, TITLE_FIELDS, "")
        interact = dig(doc, "item.note_card.interact_info") or {}
        return MediaItem(
            id=self.extract_id(doc),
            title=title,
            description=title,
            creator=dig(doc, "item.note_card.user.nickname") or "Unknown",
            creator_url=to_str(dig(doc, "item.note_card.user.avatar")),
            play_count=to_int(interact.get("play_count")),
            like_count=to_int(interact.get("liked_count")),
            comment_count=to_int(interact.get("comment_count")),
            share_count=to_int(interact.get("shared_count")),
            create_time=parse_corner_tags(dig(doc, "item.note_card.corner_tag_info")),
            duration=to_int(dig(doc, "item.video.media.duration")),
            thumbnail=to_str(first_non_empty(doc, THUMBNAIL_FIELDS)),
            web_video_url=to_str(first_non_empty(doc, PAGE_URL_FIELDS)),
        )

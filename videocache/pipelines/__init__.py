"""Platform fetch pipelines.

Flow per platform: adapter variants → JobPoller → FanOutAggregator (merge, adapt, mirror)
"""

from videocache.pipelines.base import PlatformAdapter
from videocache.pipelines.douyin import DouyinAdapter
from videocache.pipelines.tiktok import TikTokAdapter
from videocache.pipelines.xiaohongshu import XiaohongshuAdapter

ADAPTERS: dict[str, PlatformAdapter] = {
    adapter.platform: adapter
    for adapter in (TikTokAdapter(), DouyinAdapter(), XiaohongshuAdapter())
}


def get_adapter(platform: str) -> PlatformAdapter:
    try:
        return ADAPTERS[platform]
    except KeyError:
        raise ValueError(f"Unsupported platform: {platform}") from None

"""Relative publish-time parsing for Xiaohongshu notes.

The provider only exposes publish time as corner tags such as "5分钟前" or "3个月前".
Months and years are approximated as 30 and 365 days.
"""

import re
import time

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

RELATIVE_UNITS = [
    (re.compile(r"(\d+)\s*分钟前"), MINUTE_MS),
    (re.compile(r"(\d+)\s*小时前"), HOUR_MS),
    (re.compile(r"(\d+)\s*天前"), DAY_MS),
    (re.compile(r"(\d+)\s*周前"), 7 * DAY_MS),
    (re.compile(r"(\d+)\s*个月前"), 30 * DAY_MS),
    (re.compile(r"(\d+)\s*年前"), 365 * DAY_MS),
]


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_relative_time(text: str | None, now: int | None = None) -> int | None:
    """Epoch millis for a relative Chinese time string, or None if unrecognized."""
    if not text:
        return None
    now = now_ms() if now is None else now
    for pattern, unit_ms in RELATIVE_UNITS:
        match = pattern.search(text)
        if match:
            return now - int(match.group(1)) * unit_ms
    return None


def parse_corner_tags(corner_tags: list | None, now: int | None = None) -> int:
    """Publish time from a note's corner_tag_info, falling back to now."""
    now = now_ms() if now is None else now
    for tag in corner_tags or []:
        if isinstance(tag, dict) and tag.get("type") == "publish_time":
            parsed = parse_relative_time(tag.get("text"), now)
            return parsed if parsed is not None else now
    return now

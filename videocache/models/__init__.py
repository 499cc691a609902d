"""SQLAlchemy ORM models."""

from videocache.models.base import Base
from videocache.models.video_cache import VideoCache

__all__ = ["Base", "VideoCache"]

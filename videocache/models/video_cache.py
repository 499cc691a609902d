"""VideoCache model — one persisted CacheRecord per (platform, query, date range)."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from videocache.models.base import Base


class VideoCache(Base):
    """Cached media items for one query key, with TTL and access telemetry."""

    __tablename__ = "video_cache"
    __table_args__ = (
        Index("ix_video_cache_platform_updated", "platform", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    cache_key: Mapped[str] = mapped_column(
        String(512), unique=True, nullable=False, index=True,
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    query: Mapped[str] = mapped_column(String(400), nullable=False, index=True)
    date_range: Mapped[str] = mapped_column(String(32), nullable=False, insert_default="all")
    items: Mapped[list] = mapped_column(JSONB, nullable=False, insert_default=list)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, insert_default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, insert_default=0)

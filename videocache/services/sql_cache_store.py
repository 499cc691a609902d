"""PostgreSQL-backed CacheStore.

Insert-once fields (created_at, access_count) are protected by the upsert itself:
the ON CONFLICT branch never names them. Read telemetry is a single atomic UPDATE.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from videocache.database import Database
from videocache.exceptions import StoreError
from videocache.models.video_cache import VideoCache
from videocache.orchestrator.schemas import (
    REFERENCE_FIELDS,
    CacheRecord,
    CacheStats,
    KeywordStats,
    MediaItem,
)

logger = logging.getLogger(__name__)

UNIQUE_ITEMS_SQL = text(
    "SELECT COUNT(DISTINCT elem->>'id') FROM video_cache, jsonb_array_elements(items) AS elem"
)


def _to_record(row: VideoCache) -> CacheRecord:
    return CacheRecord(
        cache_key=row.cache_key,
        platform=row.platform,
        query=row.query,
        date_range=row.date_range,
        items=[MediaItem.model_validate(item) for item in row.items or []],
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_accessed_at=row.last_accessed_at,
        expires_at=row.expires_at,
        access_count=row.access_count,
    )


class SqlCacheStore:
    """CacheStore over the `video_cache` table."""

    backend = "postgres"

    def __init__(self, db: Database):
        self.db = db

    @asynccontextmanager
    async def _session(self, op: str):
        try:
            async with self.db.session() as session:
                yield session
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.error("Store %s failed | %s", op, str(e)[:200])
            raise StoreError(f"Store {op} failed: {str(e)[:200]}") from e

    async def get(self, cache_key: str) -> CacheRecord | None:
        async with self._session("get") as session:
            row = await session.scalar(select(VideoCache).where(VideoCache.cache_key == cache_key))
            return _to_record(row) if row else None

    async def touch(self, cache_key: str, now: datetime) -> None:
        async with self._session("touch") as session:
            await session.execute(
                update(VideoCache)
                .where(VideoCache.cache_key == cache_key)
                .values(access_count=VideoCache.access_count + 1, last_accessed_at=now)
            )
            await session.commit()

    async def upsert(self, record: CacheRecord) -> CacheRecord:
        values = {
            "cache_key": record.cache_key,
            "platform": record.platform,
            "query": record.query,
            "date_range": record.date_range,
            "items": [item.model_dump(mode="json") for item in record.items],
            "item_count": len(record.items),
            "updated_at": record.updated_at,
            "last_accessed_at": record.last_accessed_at,
            "expires_at": record.expires_at,
        }
        stmt = pg_insert(VideoCache).values(
            id=uuid.uuid4(),
            created_at=record.created_at,
            access_count=record.access_count,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[VideoCache.cache_key],
            set_={key: stmt.excluded[key] for key in values if key != "cache_key"},
        ).returning(VideoCache)

        async with self._session("upsert") as session:
            result = await session.scalars(stmt, execution_options={"populate_existing": True})
            row = result.one()
            stored = _to_record(row)
            await session.commit()
        logger.info("Store upsert | key=%s | items=%d", record.cache_key, stored.item_count)
        return stored

    async def delete(self, cache_key: str) -> bool:
        return await self.delete_many([cache_key]) > 0

    async def delete_many(self, cache_keys: list[str]) -> int:
        if not cache_keys:
            return 0
        async with self._session("delete") as session:
            result = await session.execute(
                delete(VideoCache).where(VideoCache.cache_key.in_(set(cache_keys)))
            )
            await session.commit()
            return result.rowcount or 0

    async def list_by_platform(
        self, platform: str, limit: int | None = None, skip: int = 0,
    ) -> list[CacheRecord]:
        stmt = (
            select(VideoCache)
            .where(VideoCache.platform == platform)
            .order_by(VideoCache.updated_at.desc())
            .offset(skip)
        )
        if limit:
            stmt = stmt.limit(limit)
        async with self._session("scan") as session:
            rows = (await session.scalars(stmt)).all()
            return [_to_record(row) for row in rows]

    async def find_expired(self, now: datetime) -> list[CacheRecord]:
        async with self._session("find_expired") as session:
            rows = (await session.scalars(select(VideoCache).where(VideoCache.expires_at < now))).all()
            return [_to_record(row) for row in rows]

    async def find_stale(self, cutoff: datetime) -> list[CacheRecord]:
        async with self._session("find_stale") as session:
            rows = (await session.scalars(
                select(VideoCache).where(VideoCache.last_accessed_at < cutoff)
            )).all()
            return [_to_record(row) for row in rows]

    async def aggregate_by_query(self) -> list[KeywordStats]:
        total_access = func.sum(VideoCache.access_count)
        stmt = (
            select(
                VideoCache.query,
                total_access,
                func.sum(VideoCache.item_count),
                func.max(VideoCache.last_accessed_at),
                func.array_agg(func.distinct(VideoCache.platform)),
            )
            .group_by(VideoCache.query)
            .order_by(total_access.desc())
        )
        async with self._session("aggregate") as session:
            rows = (await session.execute(stmt)).all()
        return [
            KeywordStats(
                keyword=query,
                access_count=int(access or 0),
                item_count=int(items or 0),
                last_accessed_at=last_accessed,
                platforms=list(platforms or []),
            )
            for query, access, items, last_accessed, platforms in rows
        ]

    async def referenced_assets(self, urls: set[str], exclude_keys: set[str]) -> set[str]:
        if not urls:
            return set()
        stmt = select(VideoCache.items)
        if exclude_keys:
            stmt = stmt.where(VideoCache.cache_key.notin_(exclude_keys))
        still_used: set[str] = set()
        async with self._session("references") as session:
            for items in (await session.scalars(stmt)).all():
                for item in items or []:
                    for field in REFERENCE_FIELDS:
                        value = item.get(field)
                        if value in urls:
                            still_used.add(value)
        return still_used

    async def stats(self) -> CacheStats:
        async with self._session("stats") as session:
            total = await session.scalar(select(func.count()).select_from(VideoCache))
            per_platform = (await session.execute(
                select(VideoCache.platform, func.count()).group_by(VideoCache.platform)
            )).all()
            unique_items = await session.scalar(UNIQUE_ITEMS_SQL)
            last_update = await session.scalar(select(func.max(VideoCache.updated_at)))
        return CacheStats(
            total_records=total or 0,
            platform_counts={platform: count for platform, count in per_platform},
            total_unique_items=unique_items or 0,
            last_update=last_update,
        )

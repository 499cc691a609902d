"""Video Cache — FastAPI application entry point.

Thin HTTP surface over the refresh, cache and eviction services.
All clients are built in the lifespan and injected through app.state.
"""

import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from videocache.config import Settings, settings
from videocache.database import Database
from videocache.exceptions import StoreError
from videocache.integrations.apify import ApifyClient
from videocache.integrations.object_storage import ObjectStorage
from videocache.jobs.scheduler import JobScheduler
from videocache.orchestrator.refresh import RefreshService
from videocache.orchestrator.schemas import (
    DEFAULT_DATE_RANGE,
    DeleteRequest,
    Platform,
    ScrapeRequest,
    ScrapeResponse,
)
from videocache.pipelines.fanout import FanOutAggregator
from videocache.services.cache_merge import CacheMergeEngine
from videocache.services.cache_store import CacheStore, MemoryCacheStore
from videocache.services.eviction import EvictionService
from videocache.services.keyword_selector import KeywordSelector
from videocache.services.media_mirror import MediaMirror
from videocache.services.sql_cache_store import SqlCacheStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("videocache")


# ═══════════════ SERVICES ═══════════════

@dataclass
class AppServices:
    """Explicitly constructed clients and services shared by all requests."""
    config: Settings
    store: CacheStore
    storage: ObjectStorage
    merge_engine: CacheMergeEngine
    eviction: EvictionService
    selector: KeywordSelector
    refresh: RefreshService
    apify: ApifyClient | None = None
    mirror: MediaMirror | None = None
    database: Database | None = None
    scheduler: JobScheduler | None = None

    async def aclose(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        if self.mirror is not None:
            await self.mirror.aclose()
        if self.apify is not None:
            await self.apify.aclose()
        self.storage.close()
        if self.database is not None:
            await self.database.close()


async def build_services(config: Settings) -> AppServices:
    # Database (graceful degradation to the in-memory store)
    database: Database | None = Database(config.database_url)
    if await database.connect():
        store: CacheStore = SqlCacheStore(database)
    else:
        database = None
        store = MemoryCacheStore()
    logger.info("Cache store: %s", store.backend)

    apify = ApifyClient(config.apify_api_key, config.apify_base_url, config.apify_timeout_seconds)
    await apify.open()

    storage = ObjectStorage(
        bucket=config.storage_bucket,
        public_domain=config.storage_public_domain,
        endpoint_url=config.storage_endpoint,
        region=config.storage_region,
        access_key_id=config.storage_access_key_id,
        secret_access_key=config.storage_secret_access_key,
    )
    mirror: MediaMirror | None = None
    if config.has_storage:
        storage.open()
        mirror = MediaMirror(storage, config.mirror_download_timeout, config.mirror_upload_attempts)
        await mirror.open()
    else:
        logger.warning("Object storage not configured, items keep origin media URLs")

    aggregator = FanOutAggregator(
        apify, mirror, mirror_videos=config.mirror_videos, mirror_concurrency=config.mirror_concurrency,
    )
    merge_engine = CacheMergeEngine(store, ttl=config.cache_ttl, is_durable=storage.is_durable)
    selector = KeywordSelector(store)
    eviction = EvictionService(store, storage, stale_days=config.stale_days)
    refresh = RefreshService(
        aggregator, merge_engine, selector,
        platforms=config.platform_list, refresh_limit=config.refresh_limit,
    )
    scheduler = JobScheduler(refresh, eviction, config) if config.scheduler_enabled else None

    return AppServices(
        config=config,
        store=store,
        storage=storage,
        merge_engine=merge_engine,
        eviction=eviction,
        selector=selector,
        refresh=refresh,
        apify=apify,
        mirror=mirror,
        database=database,
        scheduler=scheduler,
    )


# ═══════════════ DEPENDENCIES ═══════════════

def get_services(request: Request) -> AppServices:
    return request.app.state.services


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


class ApiKeyError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message


async def require_api_key(request: Request, services: AppServices = Depends(get_services)) -> None:
    expected = services.config.api_secret
    if not expected:
        logger.error("Auth | API secret not configured")
        raise ApiKeyError(500, "Server configuration error")
    if not secrets.compare_digest(request.headers.get("x-api-key", "").encode(), expected.encode()):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Auth | invalid or missing API key | ip=%s", client_ip)
        raise ApiKeyError(401, "Invalid or missing API key")


# ═══════════════ APP ═══════════════

def create_app(config: Settings = settings, services: AppServices | None = None) -> FastAPI:
    """Build the app. Pre-built services skip client construction in the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            logger.info("Video cache starting | apify=%s | storage=%s", config.has_apify_key, config.has_storage)
            app.state.services = await build_services(config)
        svc: AppServices = app.state.services
        if svc.scheduler is not None:
            svc.scheduler.start()

        yield

        if owned:
            await svc.aclose()
        elif svc.scheduler is not None:
            svc.scheduler.shutdown()
        logger.info("Video cache shutting down")

    app = FastAPI(
        title="Video Cache API",
        description="Short-video metadata cache over Apify scrapers",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["POST", "OPTIONS", "GET"],
        allow_headers=["Content-Type", "X-API-Key"],
    )

    @app.exception_handler(ApiKeyError)
    async def api_key_error(request: Request, exc: ApiKeyError):
        return _error(exc.status_code, exc.message, videos=[], count=0, duration=0)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return _error(400, f"{location}: {first.get('msg', 'invalid request')}".strip(": "))

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        logger.error("Store unavailable | %s %s | %s", request.method, request.url.path, str(exc)[:200])
        return _error(503, "Cache store unavailable")

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health(services: AppServices = Depends(get_services)):
        return {
            "status": "ok",
            "store": services.store.backend,
            "has_apify": services.config.has_apify_key,
            "has_storage": services.config.has_storage,
            "scheduler": services.scheduler.status() if services.scheduler else {"running": False, "jobs": []},
        }

    @app.post("/api/scrape", dependencies=[Depends(require_api_key)])
    async def scrape(body: ScrapeRequest, services: AppServices = Depends(get_services)):
        """Fetch one platform on demand and merge the result into the cache."""
        start = time.monotonic()
        if not services.config.has_apify_key:
            return _error(500, "APIFY_API_KEY not configured", videos=[], count=0, duration=0)

        query = body.query.strip()
        if not query:
            return _error(400, "Query is required", videos=[], count=0, duration=0)

        logger.info("Scrape start | platform=%s | query=%s | limit=%d", body.platform, query, body.limit)
        videos = await services.refresh.refresh(body.platform, query, body.limit, body.date_range)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info("Scrape OK | platform=%s | videos=%d | %dms", body.platform, len(videos), elapsed_ms)
        return ScrapeResponse(
            query=query, platform=body.platform, videos=videos, count=len(videos), duration=elapsed_ms,
        )

    @app.get("/api/videos")
    async def list_videos(
        platform: Platform,
        limit: int = Query(default=20, ge=1, le=500),
        skip: int = Query(default=0, ge=0),
        services: AppServices = Depends(get_services),
    ):
        videos = await services.merge_engine.videos_by_platform(platform, limit=limit, skip=skip)
        return {
            "success": True, "platform": platform, "videos": videos,
            "count": len(videos), "limit": limit, "skip": skip,
        }

    @app.get("/api/videos/cache")
    async def get_cache(
        platform: Platform,
        query: str = Query(min_length=1, max_length=400),
        date_range: str = Query(default=DEFAULT_DATE_RANGE, alias="dateRange"),
        services: AppServices = Depends(get_services),
    ):
        record = await services.merge_engine.read(platform, query, date_range)
        if record is None:
            return _error(404, f'No cache found for platform "{platform}" and query "{query}"')
        return {"success": True, "cache": record}

    @app.get("/api/videos/stats")
    async def cache_stats(services: AppServices = Depends(get_services)):
        return {"success": True, "stats": await services.store.stats()}

    @app.get("/api/videos/platform/{platform}")
    async def platform_caches(
        platform: Platform,
        limit: int = Query(default=100, ge=1, le=500),
        skip: int = Query(default=0, ge=0),
        services: AppServices = Depends(get_services),
    ):
        caches = await services.merge_engine.records_by_platform(platform, limit=limit, skip=skip)
        return {
            "success": True, "platform": platform, "caches": caches,
            "count": len(caches), "limit": limit, "skip": skip,
        }

    @app.get("/api/videos/keywords")
    @app.get("/api/videos/keywords/top")
    async def top_keywords(
        limit: int = Query(default=50, ge=1, le=500),
        services: AppServices = Depends(get_services),
    ):
        keywords = await services.selector.top_keywords(limit)
        return {"success": True, "keywords": keywords, "count": len(keywords), "limit": limit}

    @app.post("/api/cache/delete", dependencies=[Depends(require_api_key)])
    async def delete_cache(body: DeleteRequest, services: AppServices = Depends(get_services)):
        result = await services.eviction.delete_cache(body)
        return {"success": True, "action": body.action, **result.model_dump()}


app = create_app()


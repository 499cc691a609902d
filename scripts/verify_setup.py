#!/usr/bin/env python3
"""Live setup verification script — run outside sandbox with real credentials.

Usage:
  1. Fill in APIFY_API_KEY, DATABASE_URL and the STORAGE_* variables in .env
  2. Run: python scripts/verify_setup.py [--scrape]

Steps:
  Step 1: Verify .env configuration
  Step 2: Connect to PostgreSQL and create tables
  Step 3: Object storage round trip (put → exists → delete)
  Step 4: Live TikTok fetch through the fan-out aggregator (only with --scrape, costs Apify credits)
"""

import asyncio
import os
import sys
import uuid

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def step_header(n: int, title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  Step {n}: {title}")
    print(f"{'='*60}\n")


def ok(msg: str) -> None:
    print(f"  ✅ {msg}")


def fail(msg: str) -> None:
    print(f"  ❌ {msg}")


def info(msg: str) -> None:
    print(f"  ℹ️  {msg}")


async def step1_verify_env():
    step_header(1, "Verify .env Configuration")
    from videocache.config import settings

    passed = True
    if settings.has_apify_key:
        ok(f"APIFY_API_KEY: set ({settings.apify_api_key[:8]}...)")
    else:
        fail("APIFY_API_KEY: NOT SET — scraping will not work")
        passed = False

    if settings.api_secret:
        ok("API_SECRET: set")
    else:
        fail("API_SECRET: NOT SET — protected endpoints will answer 500")
        passed = False

    if settings.has_storage:
        ok(f"Storage: bucket={settings.storage_bucket} domain={settings.storage_public_domain}")
    else:
        info("Storage: not configured (items keep origin media URLs)")

    ok(f"Refresh platforms: {settings.platform_list} every {settings.scrape_interval_hours}h")
    ok(f"Cache TTL: {settings.cache_expiry_days}d | stale after {settings.stale_days}d")
    return passed


async def step2_database():
    step_header(2, "PostgreSQL Connection")
    from videocache.config import settings
    from videocache.database import Database
    from videocache.services.sql_cache_store import SqlCacheStore

    db = Database(settings.database_url)
    if not await db.connect():
        fail("Database unavailable — the app will fall back to the in-memory store")
        return False
    try:
        stats = await SqlCacheStore(db).stats()
        ok(f"Connected | records={stats.total_records} | unique items={stats.total_unique_items}")
        for platform, count in sorted(stats.platform_counts.items()):
            print(f"    - {platform}: {count} records")
        return True
    finally:
        await db.close()


async def step3_storage():
    step_header(3, "Object Storage Round Trip")
    from videocache.config import settings
    from videocache.integrations.object_storage import ObjectStorage

    if not settings.has_storage:
        info("Skipped (storage not configured)")
        return False

    storage = ObjectStorage(
        bucket=settings.storage_bucket,
        public_domain=settings.storage_public_domain,
        endpoint_url=settings.storage_endpoint,
        region=settings.storage_region,
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
    )
    key = f"thumbnails/verify-{uuid.uuid4().hex[:12]}.jpg"
    try:
        url = await storage.put(key, b"verify", "image/jpeg")
        ok(f"Put OK: {url}")
        if not await storage.exists(key):
            fail("Uploaded object not found by HEAD")
            return False
        ok("Exists OK")
        deleted = await storage.delete_many([key])
        if deleted != [key]:
            fail(f"Batch delete did not confirm the key: {deleted}")
            return False
        ok("Batch delete OK")
        return True
    except Exception as e:
        fail(f"Storage error: {str(e)[:200]}")
        return False
    finally:
        storage.close()


async def step4_live_fetch():
    step_header(4, "Live TikTok Fetch")
    from videocache.config import settings
    from videocache.integrations.apify import ApifyClient
    from videocache.pipelines import get_adapter
    from videocache.pipelines.fanout import FanOutAggregator

    info("Searching: 'cat' (limit 5, no mirroring)")
    async with ApifyClient(settings.apify_api_key, settings.apify_base_url) as apify:
        items = await FanOutAggregator(apify).fetch(get_adapter("tiktok"), "cat", 5, "all")

    if items:
        ok(f"Got {len(items)} items")
        for item in items[:3]:
            print(f"    - [{item.id}] {item.title[:50]}... ({item.play_count} plays)")
        return True
    fail("No items returned — check APIFY_API_KEY and actor availability")
    return False


async def main():
    print("\n🎬 Video Cache — Live Setup Verification")
    print("=" * 60)

    results = {}
    results[1] = await step1_verify_env()
    results[2] = await step2_database()
    results[3] = await step3_storage()

    if "--scrape" in sys.argv[1:]:
        results[4] = await step4_live_fetch()
    else:
        info("Step 4 skipped (pass --scrape to run a live Apify fetch)")

    # Summary
    print(f"\n{'='*60}")
    print("  SUMMARY")
    print(f"{'='*60}")
    for step_n, passed in sorted(results.items()):
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"  Step {step_n}: {status}")

    total_passed = sum(1 for v in results.values() if v)
    print(f"\n  {total_passed}/{len(results)} steps passed")
    print(f"{'='*60}\n")

    sys.exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    asyncio.run(main())

"""Diagnostics API routes for testing Ludus connectivity."""

import logging

from fastapi import APIRouter

from rangewatch.cache import redis_cache
from rangewatch.config import get_config
from rangewatch.polling.ludus import LudusClient
from rangewatch.polling.operations import operations
from rangewatch.polling.scheduler import (
    CACHE_LAST_POLL,
    CACHE_RANGE_STATES,
    CACHE_RANGES,
    CACHE_SUMMARY,
    scheduler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/diagnostics", tags=["diagnostics"])


@router.get("/config")
async def check_config():
    """Show the configured Ludus API (URLs only, no secrets)."""
    config = get_config()
    return {
        "ludus": {
            "url": config.ludus.url or "(not configured)",
            "admin_url": config.ludus.admin_url or "(same as url)",
            "has_api_key": bool(config.ludus.api_key),
            "verify_ssl": config.ludus.verify_ssl,
        },
        "tracking": config.tracking.model_dump(),
    }


@router.get("/test/ludus")
async def test_ludus():
    """Test Ludus API connectivity."""
    config = get_config()

    if not config.ludus.url:
        return {"status": "not_configured", "message": "Ludus URL not set in config.yaml"}

    if not config.ludus.api_key:
        return {"status": "not_configured", "message": "Ludus API key not set in config.yaml"}

    try:
        async with LudusClient() as client:
            if not await client.health_check():
                return {"status": "error", "message": "Health check failed"}
            current = await client.get_range()
    except Exception:
        logger.exception("Ludus connectivity test failed")
        return {"status": "error", "message": "Connection failed. Check server logs for details."}

    return {
        "status": "ok",
        "message": f"Connected to Ludus at {config.ludus.url}",
        "user_id": current.userID if current else None,
        "range_state": current.rangeState if current else None,
    }


@router.get("/scheduler")
async def get_scheduler_status():
    """Get polling scheduler and tracker status."""
    config = get_config()
    last_poll = await redis_cache.get_json(CACHE_LAST_POLL) if redis_cache.connected else None

    return {
        "running": scheduler.running,
        "intervals": {
            "ranges": config.polling.ranges,
            "templates_status": config.polling.templates_status,
        },
        "last_poll": last_poll,
        "tracked_operations": operations.owners(),
    }


@router.post("/poll/now")
async def trigger_poll():
    """Trigger an immediate poll of every job."""
    await scheduler.poll_now()
    return {"status": "ok", "message": "Poll triggered"}


@router.get("/cache/ranges")
async def get_cached_ranges():
    """View cached range data from the last poll."""
    if not redis_cache.connected:
        return {"status": "unavailable", "message": "Redis is not connected."}

    ranges = await redis_cache.get_json(CACHE_RANGES)

    if not ranges:
        return {
            "status": "empty",
            "message": "No cached range data. Run /api/diagnostics/poll/now to trigger a poll.",
        }

    return {
        "last_poll": await redis_cache.get_json(CACHE_LAST_POLL),
        "range_count": len(ranges),
        "range_states": await redis_cache.get_json(CACHE_RANGE_STATES),
        "summary": await redis_cache.get_json(CACHE_SUMMARY),
        "ranges": ranges,
    }

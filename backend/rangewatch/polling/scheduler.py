"""
Polling Scheduler

Uses APScheduler to periodically poll the Ludus API and broadcast updates.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rangewatch.cache import redis_cache
from rangewatch.config import get_config
from rangewatch.errors import RangewatchError
from rangewatch.polling.aggregator import calculate_summary_stats
from rangewatch.polling.ludus import LudusClient
from rangewatch.polling.status import badge_variant, display_label, normalize_status
from rangewatch.websocket import ws_manager

logger = logging.getLogger(__name__)

# Redis key prefixes
CACHE_RANGES = "rangewatch:ranges"
CACHE_RANGE_STATES = "rangewatch:range_states"
CACHE_SUMMARY = "rangewatch:summary"
CACHE_TEMPLATE_BUILDS = "rangewatch:template_builds"
CACHE_LAST_POLL = "rangewatch:last_poll"


class PollingScheduler:
    """Manages polling jobs for the Ludus API."""

    def __init__(self):
        self._scheduler: AsyncIOScheduler | None = None
        self._config = get_config()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start the polling scheduler."""
        self._scheduler = AsyncIOScheduler()

        polling = self._config.polling

        # Range list and dashboard summary (slow-changing)
        self._scheduler.add_job(
            poll_ranges,
            IntervalTrigger(seconds=polling.ranges),
            id="poll_ranges",
            name="Poll ranges from Ludus",
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )

        # Template build status (fast-changing while something builds)
        self._scheduler.add_job(
            poll_templates_status,
            IntervalTrigger(seconds=polling.templates_status),
            id="poll_templates_status",
            name="Poll template build status",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            "Polling scheduler started: ranges=%ds, templates_status=%ds",
            polling.ranges,
            polling.templates_status,
        )

    async def stop(self) -> None:
        """Stop the polling scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Polling scheduler stopped")

    async def poll_now(self) -> None:
        """Trigger an immediate poll of all jobs."""
        await asyncio.gather(
            poll_ranges(),
            poll_templates_status(),
            return_exceptions=True,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Polling Jobs
# ─────────────────────────────────────────────────────────────────────────────


async def poll_ranges() -> None:
    """
    Poll every range from Ludus.

    Caches the range list and dashboard summary, detects range state
    changes, and broadcasts them to connected WebSocket clients.
    """
    try:
        async with LudusClient(admin=True) as client:
            ranges = await client.list_all_ranges()

        previous_states = await redis_cache.get_json(CACHE_RANGE_STATES) or {}

        current_states: dict[str, str] = {}
        changes: list[dict[str, Any]] = []

        for r in ranges:
            state = normalize_status(r.rangeState).value
            current_states[r.userID] = state

            prev = previous_states.get(r.userID)
            if prev and prev != state:
                changes.append({
                    "user_id": r.userID,
                    "range_number": r.rangeNumber,
                    "old_state": prev,
                    "new_state": state,
                    "label": display_label(state),
                    "badge": badge_variant(state),
                })

        await redis_cache.set(CACHE_RANGE_STATES, current_states)
        await redis_cache.set(CACHE_RANGES, [r.model_dump(mode="json") for r in ranges])
        await redis_cache.set(
            CACHE_SUMMARY, calculate_summary_stats(ranges).model_dump(mode="json")
        )
        await _record_poll("ranges", len(ranges))

        if changes:
            await broadcast_range_changes(changes)
            logger.info("Range state changes detected: %d", len(changes))

        logger.debug("Polled %d ranges from Ludus", len(ranges))

    except RangewatchError as e:
        logger.error("Failed to poll ranges: %s", e)
    except Exception:
        logger.exception("Unexpected error polling ranges")


async def poll_templates_status() -> None:
    """Poll which templates are building and broadcast starts/finishes."""
    try:
        async with LudusClient() as client:
            building = await client.get_templates_status()

        previous = set(await redis_cache.get_json(CACHE_TEMPLATE_BUILDS) or [])
        current = {t.template for t in building}

        await redis_cache.set(CACHE_TEMPLATE_BUILDS, sorted(current))
        await _record_poll("templates_status", len(current))

        started = current - previous
        finished = previous - current

        if started:
            await broadcast_template_builds("template_builds_started", sorted(started))
            logger.info("Template builds started: %s", ", ".join(sorted(started)))
        if finished:
            await broadcast_template_builds("template_builds_finished", sorted(finished))
            logger.info("Template builds finished: %s", ", ".join(sorted(finished)))

    except RangewatchError as e:
        logger.error("Failed to poll template status: %s", e)
    except Exception:
        logger.exception("Unexpected error polling template status")


async def _record_poll(job: str, count: int) -> None:
    last_poll = await redis_cache.get_json(CACHE_LAST_POLL) or {}
    last_poll[job] = {
        "at": datetime.now(timezone.utc).isoformat(),
        "count": count,
    }
    await redis_cache.set(CACHE_LAST_POLL, last_poll)


# ─────────────────────────────────────────────────────────────────────────────
# WebSocket Broadcasts
# ─────────────────────────────────────────────────────────────────────────────


async def broadcast_range_changes(changes: list[dict[str, Any]]) -> None:
    """Broadcast range state changes to WebSocket clients."""
    await ws_manager.broadcast({
        "type": "range_status_change",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "changes": changes,
    })


async def broadcast_template_builds(event_type: str, templates: list[str]) -> None:
    """Broadcast template build starts or finishes to WebSocket clients."""
    await ws_manager.broadcast({
        "type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "templates": templates,
    })


# ─────────────────────────────────────────────────────────────────────────────
# Module-level scheduler instance
# ─────────────────────────────────────────────────────────────────────────────

scheduler = PollingScheduler()

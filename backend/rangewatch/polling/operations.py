"""
Operation Registry

One OperationTracker per observed range. Trackers poll the Ludus API
and push their events to WebSocket subscribers of that range.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from rangewatch.config import get_config
from rangewatch.models.operation import PollingOptions
from rangewatch.polling.ludus import fetch_range_operation
from rangewatch.polling.tracker import FetchStatus, OperationTracker, TrackerEvent
from rangewatch.websocket import ws_manager

logger = logging.getLogger(__name__)


class OperationRegistry:
    """Owns the trackers for every range someone is currently watching."""

    def __init__(
        self,
        fetch: FetchStatus | None = None,
        options: PollingOptions | None = None,
        broadcast: bool = True,
    ):
        self._fetch = fetch
        self._options = options
        self._broadcast = broadcast
        self._trackers: dict[str, OperationTracker] = {}

    def get(self, owner_id: str) -> OperationTracker | None:
        return self._trackers.get(owner_id)

    def owners(self) -> list[str]:
        return list(self._trackers)

    def track(self, owner_id: str, reset: bool = False) -> OperationTracker:
        """
        Get or create the tracker for owner_id and make sure it is polling.

        reset=True starts a fresh handle, e.g. after triggering a deploy.
        """
        tracker = self._trackers.get(owner_id)
        if tracker is None:
            tracker = OperationTracker(
                owner_id,
                self._fetch or fetch_range_operation,
                self._options or get_config().tracking,
            )
            if self._broadcast:
                tracker.subscribe(broadcast_operation_event)
            self._trackers[owner_id] = tracker
            logger.debug("Created tracker for %s", owner_id)
        elif reset:
            tracker.reset()

        tracker.start()
        return tracker

    def untrack(self, owner_id: str) -> bool:
        """Stop and forget the tracker for owner_id."""
        tracker = self._trackers.pop(owner_id, None)
        if tracker is None:
            return False
        tracker.stop()
        return True

    def release(self, owner_id: str) -> None:
        """
        The last live observer of owner_id went away.

        The tracker keeps polling hidden when its options allow background
        polling; otherwise it is untracked.
        """
        tracker = self._trackers.get(owner_id)
        if tracker is None:
            return
        tracker.set_visible(False)
        if tracker.options.background_polling:
            logger.debug("Tracker for %s continues in the background", owner_id)
            return
        self.untrack(owner_id)

    async def stop_all(self) -> None:
        for owner_id in list(self._trackers):
            self.untrack(owner_id)
        logger.info("All operation trackers stopped")


async def broadcast_operation_event(event: TrackerEvent) -> None:
    """Push a tracker event to the range's WebSocket subscribers."""
    owner_id = event.snapshot.handle.owner_id
    await ws_manager.broadcast({
        "type": "operation_update",
        "event": event.kind,
        "owner_id": owner_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "raw_status": event.raw_status,
        "new_lines": event.new_lines,
        "snapshot": event.snapshot.model_dump(mode="json", exclude={"log_lines"}),
    }, owner_id=owner_id)


# Module-level registry instance
operations = OperationRegistry()
ws_manager.on_orphaned = operations.release

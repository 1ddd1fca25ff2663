"""
Operation Tracker

Polls a long-running backend operation (range deploy, template build,
testing update) until it reports a terminal state.

Each tracker owns one OperationHandle and one poll loop. The handle is
replaced wholesale on every applied poll so observers never see a
half-updated snapshot. Stopping or resetting bumps a generation counter;
a response that arrives for an older generation is dropped.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from rangewatch.errors import RangewatchError
from rangewatch.models.operation import (
    OperationHandle,
    OperationSnapshot,
    OperationStatus,
    PollingOptions,
    StatusReport,
)
from rangewatch.polling.status import is_recognized, next_status, normalize_status

logger = logging.getLogger(__name__)

# fetch(owner_id, log_cursor) -> StatusReport; raises on transport failure
FetchStatus = Callable[[str, Optional[int]], Awaitable[StatusReport]]

EVENT_STATUS = "status"
EVENT_LOGS = "logs"
EVENT_ERROR = "error"
EVENT_TERMINAL = "terminal"
EVENT_GAVE_UP = "gave_up"

ERROR_STATUSES = frozenset({OperationStatus.FAILURE, OperationStatus.ERROR})


@dataclass
class TrackerEvent:
    """Something observers should know about."""

    kind: str
    snapshot: OperationSnapshot
    new_lines: list[str] = field(default_factory=list)
    raw_status: str | None = None


Listener = Callable[[TrackerEvent], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationTracker:
    """Client-side polling state machine over a server-owned operation."""

    def __init__(
        self,
        owner_id: str,
        fetch: FetchStatus,
        options: PollingOptions | None = None,
    ):
        self.owner_id = owner_id
        self.options = options or PollingOptions()
        self._fetch = fetch
        self._listeners: list[Listener] = []
        self._poll_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._visible = True
        self._init_state()

    def _init_state(self) -> None:
        self._handle = OperationHandle(owner_id=self.owner_id, started_at=_utcnow())
        self._log_lines: list[str] = []
        self._delivered = 0  # lines handed out since the handle was created
        self._error: str | None = None
        self._failures = 0
        self._gave_up = False

    # ─────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────

    @property
    def handle(self) -> OperationHandle:
        return self._handle

    @property
    def log_lines(self) -> list[str]:
        return list(self._log_lines)

    @property
    def error(self) -> str | None:
        """Last poll failure. Separate from the operation's own status."""
        return self._error

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def gave_up(self) -> bool:
        return self._gave_up

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_running(self) -> bool:
        return self._handle.is_running

    @property
    def is_terminal(self) -> bool:
        return self._handle.is_terminal

    @property
    def has_persistent_error(self) -> bool:
        return self._failures >= self.options.error_threshold

    @property
    def is_error(self) -> bool:
        """Operation failed, or polling has been failing for a sustained run."""
        return self._handle.status in ERROR_STATUSES or self.has_persistent_error

    @property
    def is_stale(self) -> bool:
        last = self._handle.last_polled_at
        if last is None:
            return True
        age_ms = (_utcnow() - last).total_seconds() * 1000
        return age_ms >= self.options.stale_after_ms

    def snapshot(self) -> OperationSnapshot:
        return OperationSnapshot(
            handle=self._handle,
            is_running=self.is_running,
            is_terminal=self.is_terminal,
            is_error=self.is_error,
            error=self._error,
            consecutive_failures=self._failures,
            polling=self.polling,
            log_lines=list(self._log_lines),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the poll loop. No-op if already polling or finished."""
        if self.polling or self.is_terminal or self._gave_up:
            return

        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"tracker:{self.owner_id}"
        )
        logger.info(
            "Tracking operation for %s every %dms", self.owner_id, self.options.interval_ms
        )

    def stop(self) -> None:
        """Tear down the poll loop. In-flight results are discarded."""
        self._generation += 1
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            logger.info("Stopped tracking operation for %s", self.owner_id)

    def reset(self, restart: bool = False) -> None:
        """Drop the current handle and begin a fresh one (e.g. a new deploy)."""
        self.stop()
        self._init_state()
        if restart:
            self.start()

    def set_visible(self, visible: bool) -> None:
        """Whether an observer is looking; governs polling unless background_polling."""
        self._visible = visible

    async def observe(self) -> OperationSnapshot:
        """Mark visible and poll now if the last result is stale."""
        self._visible = True
        if self.is_stale and not self.is_terminal:
            await self.poll_once()
        return self.snapshot()

    async def poll_once(self) -> bool:
        """Poll immediately. Returns True if a report was applied."""
        return await self._poll(self._generation)

    # ─────────────────────────────────────────────────────────────
    # Poll loop
    # ─────────────────────────────────────────────────────────────

    def _next_delay(self) -> float:
        jitter = random.uniform(0, self.options.jitter_ms) if self.options.jitter_ms else 0
        return (self.options.interval_ms + jitter) / 1000

    async def _run(self, generation: int) -> None:
        try:
            while generation == self._generation:
                # observe() may have finished the operation while the loop slept
                if self.is_terminal or self._gave_up:
                    break
                if self._visible or self.options.background_polling:
                    await self._poll(generation, scheduled=True)
                    if self.is_terminal or self._gave_up:
                        break
                await asyncio.sleep(self._next_delay())
        except asyncio.CancelledError:
            logger.debug("Poll loop for %s cancelled", self.owner_id)
            raise

        if generation == self._generation:
            logger.info(
                "Operation for %s finished polling with status %s",
                self.owner_id,
                self._handle.status.value,
            )

    async def _poll(self, generation: int, scheduled: bool = False) -> bool:
        events: list[TrackerEvent] = []

        async with self._poll_lock:
            if generation != self._generation:
                return False
            if scheduled and (self.is_terminal or self._gave_up):
                return False

            handle = self._handle
            try:
                report = await self._fetch(self.owner_id, handle.log_cursor)
            except Exception as e:
                if generation != self._generation:
                    logger.debug("Discarding late poll failure for %s", self.owner_id)
                    return False
                self._record_failure(e, events)
            else:
                if generation != self._generation:
                    logger.debug("Discarding late poll result for %s", self.owner_id)
                    return False
                self._apply(handle, report, events)

        for event in events:
            await self._emit(event)

        return not any(e.kind in (EVENT_ERROR, EVENT_GAVE_UP) for e in events)

    def _record_failure(self, error: Exception, events: list[TrackerEvent]) -> None:
        if isinstance(error, RangewatchError):
            logger.debug("Poll failed for %s: %s", self.owner_id, error)
        else:
            logger.exception("Unexpected error polling operation for %s", self.owner_id)

        self._failures += 1
        self._error = str(error) or error.__class__.__name__
        events.append(self._event(EVENT_ERROR))

        retries = self.options.max_retries
        if retries is not None and self._failures > retries:
            self._gave_up = True
            logger.warning(
                "Giving up on %s after %d failed polls: %s",
                self.owner_id,
                self._failures,
                self._error,
            )
            events.append(self._event(EVENT_GAVE_UP))

    def _apply(
        self, handle: OperationHandle, report: StatusReport, events: list[TrackerEvent]
    ) -> None:
        reported = normalize_status(report.status)
        if reported is OperationStatus.UNKNOWN and not is_recognized(report.status):
            logger.warning(
                "Unrecognized status %r for %s, treating as UNKNOWN",
                report.status,
                self.owner_id,
            )

        status = next_status(handle.status, reported)
        new_lines, cursor = self._merge_logs(handle.log_cursor, report)

        self._handle = handle.model_copy(update={
            "status": status,
            "last_polled_at": _utcnow(),
            "log_cursor": cursor,
        })
        self._log_lines.extend(new_lines)
        self._failures = 0
        self._error = None

        if status != handle.status:
            logger.debug(
                "Operation %s: %s -> %s", self.owner_id, handle.status.value, status.value
            )
            events.append(self._event(EVENT_STATUS, raw_status=report.status))
        if new_lines:
            events.append(self._event(EVENT_LOGS, new_lines=new_lines))
        if status != handle.status and self._handle.is_terminal:
            logger.info("Operation for %s reached %s", self.owner_id, status.value)
            events.append(self._event(EVENT_TERMINAL, raw_status=report.status))

    def _merge_logs(
        self, cursor: int | None, report: StatusReport
    ) -> tuple[list[str], int | None]:
        """
        New lines from this report, and the cursor to resume from next time.

        A missing or backwards cursor falls back to reading from the start;
        lines already delivered are then skipped by count.
        """
        lines = list(report.log_lines or [])
        if cursor is None and self._delivered:
            lines = lines[self._delivered:]

        next_cursor = report.next_cursor
        if next_cursor is None or (cursor is not None and next_cursor < cursor):
            if cursor is not None:
                logger.debug("Log cursor for %s lost, re-reading from start", self.owner_id)
            next_cursor = None

        self._delivered += len(lines)
        return lines, next_cursor

    def _event(
        self, kind: str, new_lines: list[str] | None = None, raw_status: str | None = None
    ) -> TrackerEvent:
        return TrackerEvent(
            kind=kind,
            snapshot=self.snapshot(),
            new_lines=list(new_lines or []),
            raw_status=raw_status,
        )

    async def _emit(self, event: TrackerEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Tracker listener failed for %s", self.owner_id)

"""Test doubles and async helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import httpx

from rangewatch.models.operation import StatusReport
from rangewatch.polling.ludus import LudusClient

LUDUS_URL = "http://ludus.test"
LUDUS_ADMIN_URL = "http://ludus-admin.test"


class ScriptedFetch:
    """
    Stand-in for the status endpoint.

    Plays back the given steps in order, then repeats the last one.
    A step that is an exception is raised instead of returned.
    """

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls: list[int | None] = []

    async def __call__(self, owner_id: str, cursor: int | None) -> StatusReport:
        self.calls.append(cursor)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, BaseException):
            raise step
        return step


def report(status=None, lines=None, cursor=None) -> StatusReport:
    return StatusReport(status=status, log_lines=lines or [], next_cursor=cursor)


def make_client(handler: Callable, admin: bool = False) -> LudusClient:
    return LudusClient(
        base_url=LUDUS_ADMIN_URL if admin else LUDUS_URL,
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )


async def wait_until(condition, timeout: float = 2.0, step: float = 0.005) -> None:
    """Wait for condition() to become truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)

"""
Ludus API Client

Talks to the Ludus range management API for range state, logs,
deployments, testing mode and templates.
API docs: https://docs.ludus.cloud/docs/API/
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from rangewatch.config import get_settings
from rangewatch.errors import LudusAPIError, TransportError, extract_error_message
from rangewatch.models.operation import StatusReport
from rangewatch.models.range import LogChunk, RangeObject, TemplateStatus

logger = logging.getLogger(__name__)


class LudusClient:
    """
    Async client for the Ludus API

    Usage:
        async with LudusClient() as client:
            ranges = await client.list_ranges()

    Pass admin=True for endpoints served on the admin port.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        admin: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        default_url = settings.ludus_admin_url if admin else settings.ludus_url
        self.base_url = (base_url or default_url).rstrip('/')
        self.api_key = api_key or settings.ludus_api_key
        self.verify_ssl = settings.ludus_verify_ssl
        self.timeout = settings.ludus_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "LudusClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "X-API-Key": self.api_key,
            },
            timeout=self.timeout,
            verify=self.verify_ssl,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        user_id: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Make a request to the Ludus API and map failures onto our errors"""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        query = {k: v for k, v in (params or {}).items() if v is not None}
        if user_id:
            query["userID"] = user_id

        kwargs: dict[str, Any] = {"params": query or None, "json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.request(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Ludus API timed out: {method} {endpoint}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Ludus API unreachable: {e}") from e

        logger.debug("Ludus %s %s -> %d", method, endpoint, response.status_code)

        if response.status_code >= 400:
            message = extract_error_message(
                _safe_json(response), f"Ludus API returned {response.status_code}"
            )
            if response.status_code >= 500:
                raise TransportError(message, status_code=response.status_code)
            raise LudusAPIError(response.status_code, message)

        return _safe_json(response)

    # ─────────────────────────────────────────────────────────────
    # Range endpoints
    # ─────────────────────────────────────────────────────────────

    async def get_range(self, user_id: str | None = None) -> RangeObject | None:
        """Get the range for a user (the API key owner when user_id is None)"""
        data = await self._request("GET", "/range", user_id=user_id)
        if isinstance(data, list):
            data = data[0] if data else None
        return RangeObject(**data) if isinstance(data, dict) else None

    async def list_ranges(self) -> list[RangeObject]:
        """Get ranges accessible to the API key owner"""
        data = await self._request("GET", "/ranges/accessible")
        return [RangeObject(**r) for r in data or []]

    async def list_all_ranges(self) -> list[RangeObject]:
        """Get every range (admin)"""
        data = await self._request("GET", "/range/all")
        return [RangeObject(**r) for r in data or []]

    async def get_range_config(self, user_id: str | None = None) -> str | None:
        """Get the range config YAML"""
        data = await self._request("GET", "/range/config", user_id=user_id)
        if isinstance(data, dict):
            return data.get("result")
        return data if isinstance(data, str) else None

    async def get_range_logs(
        self,
        user_id: str | None = None,
        tail: int | None = None,
        resume_line: int | None = None,
    ) -> LogChunk:
        """
        Get deployment logs.

        Args:
            tail: Only return the last N lines
            resume_line: Only return lines after this cursor
        """
        data = await self._request(
            "GET", "/range/logs", user_id=user_id,
            params={"tail": tail, "resumeline": resume_line},
        )
        return LogChunk(**data) if isinstance(data, dict) else LogChunk()

    async def deploy_range(
        self,
        user_id: str | None = None,
        tags: str | None = None,
        force: bool | None = None,
        only_roles: list[str] | None = None,
        limit: str | None = None,
    ) -> Any:
        """Start a range deployment"""
        body = {"tags": tags, "force": force, "only_roles": only_roles, "limit": limit}
        return await self._request(
            "POST", "/range/deploy", user_id=user_id,
            json={k: v for k, v in body.items() if v is not None},
        )

    async def abort_range(self, user_id: str | None = None) -> Any:
        """Abort a running deployment"""
        return await self._request("POST", "/range/abort", user_id=user_id)

    async def destroy_range(self, user_id: str | None = None) -> Any:
        """Destroy all VMs in the range"""
        return await self._request("DELETE", "/range", user_id=user_id)

    async def power_on(self, machines: list[str], user_id: str | None = None) -> Any:
        """Power on VMs ("all" for every VM)"""
        return await self._request(
            "PUT", "/range/poweron", user_id=user_id, json={"machines": machines}
        )

    async def power_off(self, machines: list[str], user_id: str | None = None) -> Any:
        """Power off VMs ("all" for every VM)"""
        return await self._request(
            "PUT", "/range/poweroff", user_id=user_id, json={"machines": machines}
        )

    # ─────────────────────────────────────────────────────────────
    # Testing endpoints
    # ─────────────────────────────────────────────────────────────

    async def start_testing(self, user_id: str | None = None) -> Any:
        """Enter testing mode (snapshots every VM, can take minutes)"""
        return await self._request("PUT", "/testing/start", user_id=user_id, timeout=300.0)

    async def stop_testing(self, user_id: str | None = None, force: bool = False) -> Any:
        """Leave testing mode and revert snapshots"""
        return await self._request(
            "PUT", "/testing/stop", user_id=user_id, json={"force": force}, timeout=300.0
        )

    async def update_testing(self, body: dict[str, Any], user_id: str | None = None) -> Any:
        """Update a VM or group while in testing mode"""
        return await self._request("POST", "/testing/update", user_id=user_id, json=body)

    # ─────────────────────────────────────────────────────────────
    # Template endpoints
    # ─────────────────────────────────────────────────────────────

    async def list_templates(self) -> list[dict[str, Any]]:
        """Get all templates and whether they are built"""
        return await self._request("GET", "/templates") or []

    async def get_templates_status(self) -> list[TemplateStatus]:
        """Get templates currently being built"""
        data = await self._request("GET", "/templates/status")
        return [TemplateStatus(**t) for t in data or []]

    async def get_template_logs(
        self, tail: int | None = None, resume_line: int | None = None
    ) -> LogChunk:
        """Get template build logs"""
        data = await self._request(
            "GET", "/templates/logs", params={"tail": tail, "resumeline": resume_line}
        )
        return LogChunk(**data) if isinstance(data, dict) else LogChunk()

    # ─────────────────────────────────────────────────────────────
    # Health check
    # ─────────────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """Test API connectivity"""
        try:
            await self._request("GET", "/")
            return True
        except (TransportError, LudusAPIError):
            return False


def _safe_json(response: httpx.Response) -> Any:
    """Parse a JSON body, falling back to the raw text"""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


# ─────────────────────────────────────────────────────────────────
# Convenience functions for one-off calls
# ─────────────────────────────────────────────────────────────────

async def ludus_client() -> AsyncIterator[LudusClient]:
    """FastAPI dependency: a client for the user API"""
    async with LudusClient() as client:
        yield client


async def ludus_admin_client() -> AsyncIterator[LudusClient]:
    """FastAPI dependency: a client for the admin API"""
    async with LudusClient(admin=True) as client:
        yield client


async def fetch_range(user_id: str | None = None) -> RangeObject | None:
    """Fetch a single range from Ludus"""
    async with LudusClient() as client:
        return await client.get_range(user_id)


async def fetch_all_ranges() -> list[RangeObject]:
    """Fetch every range from Ludus (admin)"""
    async with LudusClient(admin=True) as client:
        return await client.list_all_ranges()


async def fetch_templates_status() -> list[TemplateStatus]:
    """Fetch templates currently building"""
    async with LudusClient() as client:
        return await client.get_templates_status()


async def fetch_range_operation(owner_id: str, cursor: int | None) -> StatusReport:
    """
    Poll a range deployment: current state plus log lines after cursor.

    Adapts the Ludus API to the operation tracker's fetch contract.
    """
    async with LudusClient() as client:
        range_data = await client.get_range(owner_id)
        logs = await client.get_range_logs(owner_id, resume_line=cursor)

    return StatusReport(
        status=range_data.rangeState if range_data else None,
        log_lines=logs.lines,
        next_cursor=logs.cursor,
    )

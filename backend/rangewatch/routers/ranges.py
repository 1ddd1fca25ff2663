"""Range API routes."""

import asyncio
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..cache import redis_cache
from ..errors import RangewatchError
from ..models.operation import OperationSnapshot
from ..models.range import LogChunk, RangeObject, SystemSummary
from ..models.topology import RangeTopology
from ..polling.aggregator import build_range_topology, calculate_summary_stats
from ..polling.ludus import LudusClient, ludus_admin_client, ludus_client
from ..polling.operations import operations
from ..polling.scheduler import CACHE_SUMMARY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ranges", tags=["ranges"])

UserID = Annotated[str | None, Query(alias="userID")]


class DeployRequest(BaseModel):
    """Request body for a range deployment."""

    tags: str | None = None
    force: bool | None = None
    only_roles: list[str] | None = None
    limit: str | None = None


class PowerRequest(BaseModel):
    """VMs to power on/off ("all" for every VM)."""

    machines: list[str] = ["all"]


async def _resolve_owner(client: LudusClient, user_id: str | None) -> str | None:
    """The range owner: the given user, or whoever owns the API key."""
    if user_id:
        return user_id
    current = await client.get_range()
    return current.userID if current and current.userID else None


@router.get("", response_model=list[RangeObject])
async def list_ranges(client: LudusClient = Depends(ludus_client)):
    """List ranges accessible to the current user."""
    return await client.list_ranges()


@router.get("/all", response_model=list[RangeObject])
async def list_all_ranges(client: LudusClient = Depends(ludus_admin_client)):
    """List every range (admin)."""
    return await client.list_all_ranges()


@router.get("/summary", response_model=SystemSummary)
async def get_summary(client: LudusClient = Depends(ludus_admin_client)):
    """Dashboard summary stats, from the last poll when available."""
    if redis_cache.connected:
        cached = await redis_cache.get_json(CACHE_SUMMARY)
        if cached:
            return SystemSummary(**cached)

    return calculate_summary_stats(await client.list_all_ranges())


@router.get("/logs", response_model=LogChunk)
async def get_range_logs(
    user_id: UserID = None,
    tail: int | None = None,
    resumeline: int | None = None,
    client: LudusClient = Depends(ludus_client),
):
    """Get deployment logs, optionally resuming after a cursor."""
    return await client.get_range_logs(user_id, tail=tail, resume_line=resumeline)


@router.post("/deploy", status_code=201)
async def deploy_range(
    body: DeployRequest,
    user_id: UserID = None,
    client: LudusClient = Depends(ludus_client),
):
    """Deploy a range and start tracking the deployment."""
    result = await client.deploy_range(
        user_id,
        tags=body.tags,
        force=body.force,
        only_roles=body.only_roles,
        limit=body.limit,
    )

    owner_id = await _resolve_owner(client, user_id)
    snapshot = None
    if owner_id:
        snapshot = operations.track(owner_id, reset=True).snapshot()
    else:
        logger.warning("Deploy started but range owner unknown; not tracking")

    return {"result": result, "operation": snapshot}


@router.post("/abort")
async def abort_range(user_id: UserID = None, client: LudusClient = Depends(ludus_client)):
    """Abort a running deployment."""
    return await client.abort_range(user_id)


@router.put("/poweron")
async def power_on(
    body: PowerRequest,
    user_id: UserID = None,
    client: LudusClient = Depends(ludus_client),
):
    """Power on VMs in a range."""
    return await client.power_on(body.machines, user_id)


@router.put("/poweroff")
async def power_off(
    body: PowerRequest,
    user_id: UserID = None,
    client: LudusClient = Depends(ludus_client),
):
    """Power off VMs in a range."""
    return await client.power_off(body.machines, user_id)


@router.get("/{user_id}", response_model=RangeObject)
async def get_range(user_id: str, client: LudusClient = Depends(ludus_client)):
    """Get details of a specific range."""
    range_data = await client.get_range(user_id)
    if not range_data:
        raise HTTPException(status_code=404, detail=f"Range for '{user_id}' not found")
    return range_data


@router.delete("/{user_id}")
async def destroy_range(user_id: str, client: LudusClient = Depends(ludus_client)):
    """Destroy all VMs in a range and track the teardown."""
    result = await client.destroy_range(user_id)
    snapshot = operations.track(user_id, reset=True).snapshot()
    return {"result": result, "operation": snapshot}


@router.get("/{user_id}/config")
async def get_range_config(user_id: str, client: LudusClient = Depends(ludus_client)):
    """Get the range config YAML."""
    return {"result": await client.get_range_config(user_id)}


@router.get("/{user_id}/topology", response_model=RangeTopology)
async def get_range_topology(user_id: str, client: LudusClient = Depends(ludus_client)):
    """
    Get the editor topology: config reconciled with deployed VMs,
    plus resource totals.

    Fails only when both the config and the range are unavailable.
    """
    config_result, range_result = await asyncio.gather(
        client.get_range_config(user_id),
        client.get_range(user_id),
        return_exceptions=True,
    )

    errors: list[Any] = [
        r for r in (config_result, range_result) if isinstance(r, BaseException)
    ]
    for error in errors:
        if not isinstance(error, RangewatchError):
            raise error
    if len(errors) == 2:
        raise errors[1]

    config = None if isinstance(config_result, BaseException) else config_result
    deployed = None if isinstance(range_result, BaseException) else range_result
    return build_range_topology(config, deployed, user_id)


@router.get("/{user_id}/operation", response_model=OperationSnapshot)
async def get_operation(user_id: str):
    """
    Observe the range's current operation.

    Starts tracking if needed and polls immediately when the last
    result is stale.
    """
    tracker = operations.get(user_id) or operations.track(user_id)
    return await tracker.observe()


@router.delete("/{user_id}/operation")
async def stop_operation(user_id: str):
    """Stop observing the range's operation."""
    if not operations.untrack(user_id):
        raise HTTPException(status_code=404, detail=f"No operation tracked for '{user_id}'")
    return {"status": "stopped", "user_id": user_id}

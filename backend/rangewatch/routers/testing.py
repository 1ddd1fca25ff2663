"""Testing mode API routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..polling.ludus import LudusClient, ludus_admin_client, ludus_client

router = APIRouter(prefix="/testing", tags=["testing"])

UserID = Annotated[str | None, Query(alias="userID")]


class StopTestingRequest(BaseModel):
    force: bool = False


class UpdateTestingRequest(BaseModel):
    """A VM or group to update while in testing mode."""

    name: str


@router.put("/start")
async def start_testing(user_id: UserID = None, client: LudusClient = Depends(ludus_client)):
    """Snapshot every VM and enter testing mode."""
    return await client.start_testing(user_id)


@router.put("/stop")
async def stop_testing(
    body: StopTestingRequest | None = None,
    user_id: UserID = None,
    client: LudusClient = Depends(ludus_client),
):
    """Revert snapshots and leave testing mode."""
    force = body.force if body else False
    return await client.stop_testing(user_id, force=force)


@router.post("/update", status_code=201)
async def update_testing(
    body: UpdateTestingRequest,
    user_id: UserID = None,
    client: LudusClient = Depends(ludus_client),
    admin: LudusClient = Depends(ludus_admin_client),
) -> Any:
    """
    Update a VM or group in testing mode.

    Updating another user's range goes through the admin API.
    """
    target = admin if user_id else client
    return await target.update_testing(body.model_dump(), user_id)

"""Template API routes."""

from typing import Any

from fastapi import APIRouter, Depends

from ..models.range import LogChunk, TemplateStatus
from ..polling.ludus import LudusClient, ludus_client

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("")
async def list_templates(client: LudusClient = Depends(ludus_client)) -> list[dict[str, Any]]:
    """List templates and whether each one is built."""
    return await client.list_templates()


@router.get("/status", response_model=list[TemplateStatus])
async def get_templates_status(client: LudusClient = Depends(ludus_client)):
    """Templates currently building."""
    return await client.get_templates_status()


@router.get("/logs", response_model=LogChunk)
async def get_template_logs(
    tail: int | None = None,
    resumeline: int | None = None,
    client: LudusClient = Depends(ludus_client),
):
    return await client.get_template_logs(tail=tail, resume_line=resumeline)

"""Topology editor API routes."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from ..models.topology import ResourceTotals
from ..polling.aggregator import aggregate_resources, parse_topology_nodes

router = APIRouter(prefix="/topology", tags=["topology"])


class TopologyRequest(BaseModel):
    """Editor nodes, either {id, type, data} or flat node objects."""

    nodes: list[Any] = []


@router.post("/resources", response_model=ResourceTotals)
async def calculate_resources(request: TopologyRequest):
    """Resource totals for the nodes currently in the editor."""
    return aggregate_resources(parse_topology_nodes(request.nodes))

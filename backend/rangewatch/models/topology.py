"""Topology models for Rangewatch."""

import math
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _non_negative_number(value: Any) -> float | None:
    """Coerce to a non-negative number; anything unusable becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


class VMDescriptor(BaseModel):
    """A virtual machine inside a network segment."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: Optional[str] = None
    label: Optional[str] = None
    vm_name: Optional[str] = Field(None, validation_alias=AliasChoices("vm_name", "vmName"))
    hostname: Optional[str] = None
    template: Optional[str] = None
    vlan: Optional[int] = None
    cpus: Optional[int] = None
    ram_gb: Optional[float] = Field(None, validation_alias=AliasChoices("ram_gb", "ramGb"))

    # Deployment state, filled in when reconciled against the live range
    is_deployed: bool = Field(False, validation_alias=AliasChoices("is_deployed", "isDeployed"))
    powered_on: bool = Field(False, validation_alias=AliasChoices("powered_on", "poweredOn"))
    ip_address: Optional[str] = Field(None, validation_alias=AliasChoices("ip_address", "ipAddress"))

    @field_validator("cpus", "vlan", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> int | None:
        number = _non_negative_number(value)
        return int(number) if number is not None else None

    @field_validator("ram_gb", mode="before")
    @classmethod
    def _lenient_float(cls, value: Any) -> float | None:
        return _non_negative_number(value)


class SegmentNode(BaseModel):
    """A VLAN: a network partition holding zero or more VMs."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    type: Literal["vlan"] = "vlan"
    id: str
    label: Optional[str] = None
    vms: list[VMDescriptor] = []


class RouterNode(BaseModel):
    """The range router. Itself one VM with its own footprint."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    type: Literal["router"] = "router"
    id: str = "router"
    label: Optional[str] = "Router"
    vm_name: Optional[str] = Field(None, validation_alias=AliasChoices("vm_name", "vmName"))
    hostname: Optional[str] = None
    template: Optional[str] = None
    cpus: Optional[int] = None
    ram_gb: Optional[float] = Field(None, validation_alias=AliasChoices("ram_gb", "ramGb"))
    is_deployed: bool = Field(False, validation_alias=AliasChoices("is_deployed", "isDeployed"))
    powered_on: bool = Field(False, validation_alias=AliasChoices("powered_on", "poweredOn"))
    ip_address: Optional[str] = Field(None, validation_alias=AliasChoices("ip_address", "ipAddress"))

    @field_validator("cpus", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> int | None:
        number = _non_negative_number(value)
        return int(number) if number is not None else None

    @field_validator("ram_gb", mode="before")
    @classmethod
    def _lenient_float(cls, value: Any) -> float | None:
        return _non_negative_number(value)


TopologyNode = Union[SegmentNode, RouterNode]


class TopologyEdge(BaseModel):
    """A network rule between two segments."""

    id: str
    source: str
    target: str
    label: Optional[str] = None
    protocol: Optional[str] = None
    ports: Optional[str] = None
    action: Optional[str] = None


class ResourceTotals(BaseModel):
    """VM/CPU/RAM totals derived from a topology snapshot."""

    vms: int = 0
    cpus: int = 0
    ram: float = 0


class TopologyMetadata(BaseModel):
    """How the range config lines up with what is deployed."""

    has_config: bool = False
    has_deployed_vms: bool = False
    config_deployment_mismatch: bool = False
    unmatched_vms: list[str] = []
    missing_vms: list[str] = []


class RangeTopology(BaseModel):
    """Complete editor view of a range."""

    user_id: str
    range_number: int = 0
    range_state: str = "UNKNOWN"
    nodes: list[TopologyNode] = []
    edges: list[TopologyEdge] = []
    resources: ResourceTotals = ResourceTotals()
    metadata: TopologyMetadata = TopologyMetadata()

"""Range models for Rangewatch."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class RangeVM(BaseModel):
    """VM data from the Ludus API"""
    model_config = ConfigDict(extra="allow")

    ID: Optional[int] = None
    proxmoxID: Optional[int] = None
    rangeNumber: Optional[int] = None
    name: Optional[str] = None
    poweredOn: bool = False
    ip: Optional[str] = None
    isRouter: bool = False


class RangeObject(BaseModel):
    """Range data from the Ludus API"""
    model_config = ConfigDict(extra="allow")

    userID: str = ""
    rangeNumber: int = 0
    lastDeployment: Optional[str] = None
    numberOfVMs: Optional[int] = None
    testingEnabled: bool = False
    VMs: Optional[list[RangeVM]] = None  # null while a range is in an error state
    allowedDomains: Optional[list[str]] = None
    allowedIPs: Optional[list[str]] = None
    rangeState: Optional[str] = None


class LogChunk(BaseModel):
    """A page of an append-only log, with the line to resume from."""

    result: Optional[str] = ""
    cursor: Optional[int] = None

    @property
    def lines(self) -> list[str]:
        return [line for line in (self.result or "").split("\n") if line.strip()]


class TemplateStatus(BaseModel):
    """A template currently being built"""
    template: str
    user: str


class SystemSummary(BaseModel):
    """Dashboard stats across ranges."""

    total_ranges: int = 0
    total_vms: int = 0
    powered_on_vms: int = 0
    testing_enabled_ranges: int = 0
    unique_allowed_ips: int = 0
    unique_allowed_domains: int = 0
    range_states: dict[str, int] = {}

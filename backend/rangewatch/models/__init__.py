# Pydantic models
from .operation import (
    OperationHandle,
    OperationSnapshot,
    OperationStatus,
    PollingOptions,
    StatusReport,
)
from .range import LogChunk, RangeObject, RangeVM, SystemSummary, TemplateStatus
from .topology import (
    RangeTopology,
    ResourceTotals,
    RouterNode,
    SegmentNode,
    TopologyEdge,
    TopologyNode,
    VMDescriptor,
)

__all__ = [
    "OperationHandle",
    "OperationSnapshot",
    "OperationStatus",
    "PollingOptions",
    "StatusReport",
    "LogChunk",
    "RangeObject",
    "RangeVM",
    "SystemSummary",
    "TemplateStatus",
    "RangeTopology",
    "ResourceTotals",
    "RouterNode",
    "SegmentNode",
    "TopologyEdge",
    "TopologyNode",
    "VMDescriptor",
]

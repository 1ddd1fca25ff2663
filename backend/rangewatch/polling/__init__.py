"""Polling, aggregation and operation tracking over the Ludus API."""

from rangewatch.polling.aggregator import (
    aggregate_resources,
    build_range_topology,
    calculate_summary_stats,
    parse_topology_nodes,
)
from rangewatch.polling.ludus import LudusClient, fetch_range_operation
from rangewatch.polling.operations import OperationRegistry, operations
from rangewatch.polling.scheduler import poll_ranges, poll_templates_status, scheduler
from rangewatch.polling.status import normalize_status
from rangewatch.polling.tracker import OperationTracker, TrackerEvent

__all__ = [
    # Aggregation
    "aggregate_resources",
    "build_range_topology",
    "calculate_summary_stats",
    "parse_topology_nodes",
    # Ludus
    "LudusClient",
    "fetch_range_operation",
    # Operations
    "OperationRegistry",
    "OperationTracker",
    "TrackerEvent",
    "normalize_status",
    "operations",
    # Scheduler
    "scheduler",
    "poll_ranges",
    "poll_templates_status",
]

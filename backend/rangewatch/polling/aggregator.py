"""
Resource Aggregator

Derives VM/CPU/RAM totals from a topology graph, dashboard stats from
range lists, and the editor topology from a range config plus the
deployed range. Range config defines WHAT should exist; Ludus reports
what does.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any

import yaml
from pydantic import ValidationError

from rangewatch.models.range import RangeObject, RangeVM, SystemSummary
from rangewatch.models.topology import (
    RangeTopology,
    ResourceTotals,
    RouterNode,
    SegmentNode,
    TopologyEdge,
    TopologyMetadata,
    TopologyNode,
    VMDescriptor,
)

logger = logging.getLogger(__name__)

# Router footprint when the config leaves it out
ROUTER_DEFAULT_CPUS = 2
ROUTER_DEFAULT_RAM_GB = 2
ROUTER_DEFAULT_TEMPLATE = "debian-11-x64-server-template"
ROUTER_DEFAULT_NAME = "{{ range_id }}-router"

# Deployed VMs that the range config does not know about
UNMATCHED_VLAN = 999

# Configured VMs with no vlan set
UNASSIGNED_SEGMENT = "unassigned"

SEGMENT_TYPES = {"vlan", "segment"}
ROUTER_TYPES = {"router"}

_RANGE_ID_VAR = re.compile(r"\{\{\s*range_id\s*\}\}")


# ─────────────────────────────────────────────────────────────────────────────
# Resource Totals
# ─────────────────────────────────────────────────────────────────────────────


def aggregate_resources(nodes: Iterable[TopologyNode]) -> ResourceTotals:
    """
    Total VMs, CPUs and RAM over a topology snapshot.

    Segment VMs default missing cpus/ram to 0. A router is always one VM
    and defaults to 2 CPUs / 2 GB when unconfigured (0 counts as unset).
    Other node kinds are ignored.
    """
    vms = 0
    cpus = 0
    ram = 0.0

    for node in nodes:
        if isinstance(node, SegmentNode):
            for vm in node.vms:
                vms += 1
                cpus += vm.cpus or 0
                ram += vm.ram_gb or 0
        elif isinstance(node, RouterNode):
            vms += 1
            cpus += node.cpus or ROUTER_DEFAULT_CPUS
            ram += node.ram_gb or ROUTER_DEFAULT_RAM_GB

    return ResourceTotals(vms=vms, cpus=cpus, ram=ram)


def _parse_vm(raw: Any) -> VMDescriptor:
    if isinstance(raw, dict):
        try:
            return VMDescriptor.model_validate(raw)
        except ValidationError as e:
            logger.debug("Malformed VM entry, counting without resources: %s", e)
    # Still a VM, just one we know nothing about
    return VMDescriptor()


def parse_topology_nodes(raw_nodes: Iterable[Any]) -> list[TopologyNode]:
    """
    Convert browser-shaped node dicts into typed topology nodes.

    Accepts both {"id", "type", "data": {...}} (flow editor) and flat
    {"id", "type", ...}. Unknown node types are dropped.
    """
    nodes: list[TopologyNode] = []

    for index, raw in enumerate(raw_nodes or []):
        if not isinstance(raw, dict):
            continue

        node_type = str(raw.get("type") or "").lower()
        data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
        node_id = raw.get("id") or f"{node_type}-{index}"

        if node_type in SEGMENT_TYPES:
            raw_vms = data.get("vms")
            vms = [_parse_vm(vm) for vm in raw_vms] if isinstance(raw_vms, list) else []
            nodes.append(SegmentNode(id=str(node_id), label=_as_label(data.get("label")), vms=vms))
        elif node_type in ROUTER_TYPES:
            fields = {k: v for k, v in data.items() if k not in ("id", "type", "label")}
            try:
                router = RouterNode.model_validate({**fields, "id": str(node_id)})
            except ValidationError as e:
                logger.debug("Malformed router node, using defaults: %s", e)
                router = RouterNode(id=str(node_id))
            nodes.append(router)
        else:
            logger.debug("Ignoring topology node %s of type %r", node_id, node_type)

    return nodes


def _as_label(value: Any) -> str | None:
    return str(value) if value is not None else None


# ─────────────────────────────────────────────────────────────────────────────
# Dashboard Summary
# ─────────────────────────────────────────────────────────────────────────────


def calculate_summary_stats(ranges: Iterable[RangeObject]) -> SystemSummary:
    """Summarize a list of ranges for the dashboard header."""
    ranges = list(ranges)

    range_states: dict[str, int] = {}
    allowed_ips: set[str] = set()
    allowed_domains: set[str] = set()
    powered_on = 0

    for r in ranges:
        state = r.rangeState or "UNKNOWN"
        range_states[state] = range_states.get(state, 0) + 1

        # VMs is null while a range is in an error state
        if r.VMs:
            powered_on += sum(1 for vm in r.VMs if vm.poweredOn)

        allowed_ips.update(r.allowedIPs or [])
        allowed_domains.update(r.allowedDomains or [])

    return SystemSummary(
        total_ranges=len(ranges),
        total_vms=sum(r.numberOfVMs or 0 for r in ranges),
        powered_on_vms=powered_on,
        testing_enabled_ranges=sum(1 for r in ranges if r.testingEnabled),
        unique_allowed_ips=len(allowed_ips),
        unique_allowed_domains=len(allowed_domains),
        range_states=range_states,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Editor Topology
# ─────────────────────────────────────────────────────────────────────────────


def parse_range_config(config: str | dict[str, Any] | None) -> dict[str, Any] | None:
    """
    Parse a range config. Ludus returns it as YAML text under "result".

    Unparseable config is logged and treated as missing.
    """
    if config is None:
        return None
    if isinstance(config, dict):
        if isinstance(config.get("result"), str):
            return parse_range_config(config["result"])
        return config

    try:
        parsed = yaml.safe_load(config)
    except yaml.YAMLError as e:
        logger.warning("Failed to parse range config YAML: %s", e)
        return None

    return parsed if isinstance(parsed, dict) else None


def resolve_range_id(name: str, user_id: str) -> str:
    """Substitute {{ range_id }} in a templated VM name."""
    return _RANGE_ID_VAR.sub(user_id, name)


def generate_vm_label(vm: dict[str, Any]) -> str:
    """Display label like "Primary Dc (dc01)" or "Debian 12 X64 Server (web)"."""
    hostname = vm.get("hostname") or vm.get("vm_name") or "vm"

    windows = vm.get("windows")
    if isinstance(windows, dict):
        domain = windows.get("domain")
        role = domain.get("role") if isinstance(domain, dict) else None
        if role:
            return f"{str(role).replace('-', ' ').title()} ({hostname})"

    template = str(vm.get("template") or "unknown")
    template = re.sub(r"-template$", "", template).replace("-", " ").title()
    return f"{template} ({hostname})"


def build_range_topology(
    config: str | dict[str, Any] | None,
    deployed: RangeObject | None,
    user_id: str,
) -> RangeTopology:
    """
    Reconcile the range config with the deployed range.

    - Configured VMs are placed in their VLAN segment and marked deployed
      when a VM of the same (resolved) name exists
    - Deployed VMs missing from the config land in VLAN 999
    - Configured VMs without a vlan land in an "unassigned" segment
    - The router comes from config, else the deployed router, else defaults
    """
    range_config = parse_range_config(config)
    deployed_vms: list[RangeVM] = (deployed.VMs or []) if deployed else []

    deployment_map: dict[str, RangeVM] = {vm.name: vm for vm in deployed_vms if vm.name}
    matched: set[str] = set()
    vms: list[VMDescriptor] = []
    missing_vms: list[str] = []
    unmatched_vms: list[str] = []
    configured_vlans: set[int] = set()

    config_vms = (range_config or {}).get("ludus")
    if not isinstance(config_vms, list):
        config_vms = []
    for index, config_vm in enumerate(config_vms):
        if not isinstance(config_vm, dict):
            continue

        vm_name = resolve_range_id(str(config_vm.get("vm_name", "")), user_id)
        deployed_vm = deployment_map.get(vm_name)
        if deployed_vm is None:
            missing_vms.append(vm_name)
        else:
            matched.add(vm_name)

        descriptor = _parse_vm({
            "id": f"vm-{config_vm.get('vlan')}-{index}",
            "label": generate_vm_label(config_vm),
            "vm_name": vm_name,
            "hostname": config_vm.get("hostname"),
            "template": config_vm.get("template"),
            "vlan": config_vm.get("vlan"),
            "cpus": config_vm.get("cpus"),
            "ram_gb": config_vm.get("ram_gb"),
            "is_deployed": deployed_vm is not None,
            "powered_on": bool(deployed_vm and deployed_vm.poweredOn),
            "ip_address": deployed_vm.ip if deployed_vm else None,
        })
        vms.append(descriptor)
        if descriptor.vlan is not None:
            configured_vlans.add(descriptor.vlan)

    router_vm: RangeVM | None = None
    for name, vm in deployment_map.items():
        if name in matched:
            continue
        if vm.isRouter:
            router_vm = vm
            continue

        unmatched_vms.append(name)
        vms.append(VMDescriptor(
            id=f"unmatched-{name}",
            label=name,
            vm_name=name,
            hostname=name,
            template="unknown",
            vlan=UNMATCHED_VLAN,
            cpus=0,
            ram_gb=0,
            is_deployed=True,
            powered_on=vm.poweredOn,
            ip_address=vm.ip,
        ))

    nodes: list[TopologyNode] = []
    vlan_ids = sorted(configured_vlans | {vm.vlan for vm in vms if vm.vlan})
    for vlan_id in vlan_ids:
        label = "Unmatched VMs" if vlan_id == UNMATCHED_VLAN else f"VLAN {vlan_id}"
        nodes.append(SegmentNode(
            id=f"vlan{vlan_id}",
            label=label,
            vms=[vm for vm in vms if vm.vlan == vlan_id],
        ))

    unassigned = [vm for vm in vms if vm.vlan is None]
    if unassigned:
        logger.warning(
            "Range %s has %d configured VM(s) without a VLAN: %s",
            user_id,
            len(unassigned),
            ", ".join(vm.vm_name or "?" for vm in unassigned),
        )
        nodes.append(SegmentNode(id=UNASSIGNED_SEGMENT, label="No VLAN", vms=unassigned))

    nodes.append(_build_router_node((range_config or {}).get("router"), router_vm))

    return RangeTopology(
        user_id=user_id,
        range_number=deployed.rangeNumber if deployed else 0,
        range_state=(deployed.rangeState if deployed else None) or "UNKNOWN",
        nodes=nodes,
        edges=_build_rule_edges(range_config),
        resources=aggregate_resources(nodes),
        metadata=TopologyMetadata(
            has_config=range_config is not None,
            has_deployed_vms=bool(deployed_vms),
            config_deployment_mismatch=bool(unmatched_vms or missing_vms),
            unmatched_vms=unmatched_vms,
            missing_vms=missing_vms,
        ),
    )


def _build_router_node(router_config: Any, router_vm: RangeVM | None) -> RouterNode:
    deployment = {
        "is_deployed": router_vm is not None,
        "powered_on": bool(router_vm and router_vm.poweredOn),
        "ip_address": router_vm.ip if router_vm else None,
    }

    if isinstance(router_config, dict):
        fields = {
            k: router_config.get(k)
            for k in ("vm_name", "hostname", "template", "cpus", "ram_gb")
        }
        return RouterNode.model_validate({**fields, **deployment})

    if router_vm is not None:
        return RouterNode(
            vm_name=router_vm.name,
            hostname=router_vm.name,
            template=ROUTER_DEFAULT_TEMPLATE,
            cpus=ROUTER_DEFAULT_CPUS,
            ram_gb=ROUTER_DEFAULT_RAM_GB,
            **deployment,
        )

    return RouterNode(
        vm_name=ROUTER_DEFAULT_NAME,
        hostname=ROUTER_DEFAULT_NAME,
        template=ROUTER_DEFAULT_TEMPLATE,
        cpus=ROUTER_DEFAULT_CPUS,
        ram_gb=ROUTER_DEFAULT_RAM_GB,
    )


def _build_rule_edges(range_config: dict[str, Any] | None) -> list[TopologyEdge]:
    network = (range_config or {}).get("network")
    rules = network.get("rules") if isinstance(network, dict) else None
    if not isinstance(rules, list):
        return []

    edges: list[TopologyEdge] = []
    for index, rule in enumerate(rules):
        if not isinstance(rule, dict):
            continue
        src, dst = rule.get("vlan_src"), rule.get("vlan_dst")
        if src is None or dst is None:
            continue

        edges.append(TopologyEdge(
            id=f"rule-{index}-vlan{src}-vlan{dst}",
            source=f"vlan{src}",
            target=f"vlan{dst}",
            label=_as_label(rule.get("name")) or f"Rule {src} → {dst}",
            protocol=_as_label(rule.get("protocol")),
            ports=_as_label(rule.get("ports")),
            action=_as_label(rule.get("action")),
        ))

    return edges

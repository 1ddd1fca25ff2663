"""Tests for resource aggregation and range topology building."""

import itertools

import pytest

from rangewatch.models.range import RangeObject
from rangewatch.models.topology import (
    ResourceTotals,
    RouterNode,
    SegmentNode,
    VMDescriptor,
)
from rangewatch.polling.aggregator import (
    UNASSIGNED_SEGMENT,
    UNMATCHED_VLAN,
    aggregate_resources,
    build_range_topology,
    calculate_summary_stats,
    generate_vm_label,
    parse_range_config,
    parse_topology_nodes,
    resolve_range_id,
)


def segment(node_id, *vms):
    return SegmentNode(id=node_id, vms=[VMDescriptor(**vm) for vm in vms])


class TestAggregateResources:
    def test_empty(self):
        assert aggregate_resources([]) == ResourceTotals(vms=0, cpus=0, ram=0)

    @pytest.mark.parametrize(
        "segments",
        [
            [(3, 2, 4.0)],
            [(1, 4, 8.0), (2, 1, 0.5)],
            [(0, 8, 16.0), (5, 2, 2.0), (2, 0, 0)],
        ],
    )
    def test_segments_sum(self, segments):
        nodes = [
            segment(f"vlan{i}", *[{"cpus": c, "ram_gb": r}] * n)
            for i, (n, c, r) in enumerate(segments)
        ]

        totals = aggregate_resources(nodes)

        assert totals.vms == sum(n for n, _, _ in segments)
        assert totals.cpus == sum(n * c for n, c, _ in segments)
        assert totals.ram == pytest.approx(sum(n * r for n, _, r in segments))

    def test_unconfigured_router_uses_router_defaults(self):
        assert aggregate_resources([RouterNode()]) == ResourceTotals(vms=1, cpus=2, ram=2)

    def test_unconfigured_vm_counts_without_resources(self):
        assert aggregate_resources([segment("vlan10", {})]) == ResourceTotals(vms=1, cpus=0, ram=0)

    def test_configured_router(self):
        totals = aggregate_resources([RouterNode(cpus=4, ram_gb=8)])
        assert totals == ResourceTotals(vms=1, cpus=4, ram=8)

    def test_router_zero_counts_as_unset(self):
        totals = aggregate_resources([RouterNode(cpus=0, ram_gb=0)])
        assert totals == ResourceTotals(vms=1, cpus=2, ram=2)

    def test_order_independent(self):
        nodes = [
            segment("vlan10", {"cpus": 2, "ram_gb": 4}, {"cpus": 1, "ram_gb": 1.5}),
            RouterNode(cpus=1),
            segment("vlan20", {"cpus": 8, "ram_gb": 32}),
            segment("vlan30"),
        ]
        expected = aggregate_resources(nodes)

        for permutation in itertools.permutations(nodes):
            assert aggregate_resources(list(permutation)) == expected

    def test_unknown_nodes_ignored(self):
        nodes = [segment("vlan10", {"cpus": 2, "ram_gb": 2}), {"type": "note"}, "junk"]
        assert aggregate_resources(nodes) == ResourceTotals(vms=1, cpus=2, ram=2)

    @pytest.mark.parametrize("bad", [-4, "lots", None, float("nan"), float("inf"), True])
    def test_malformed_values_default(self, bad):
        totals = aggregate_resources([segment("vlan10", {"cpus": bad, "ram_gb": bad})])
        assert totals == ResourceTotals(vms=1, cpus=0, ram=0)

    def test_numeric_strings_accepted(self):
        totals = aggregate_resources([segment("vlan10", {"cpus": "4", "ramGb": "2.5"})])
        assert totals == ResourceTotals(vms=1, cpus=4, ram=2.5)


class TestParseTopologyNodes:
    def test_flow_editor_nodes(self):
        raw = [
            {"id": "vlan10", "type": "vlan", "data": {
                "label": "VLAN 10",
                "vms": [{"vmName": "JD-dc01", "cpus": 4, "ramGb": 8}, {"cpus": 2}],
            }},
            {"id": "router", "type": "router", "data": {"label": "Router", "cpus": 1}},
        ]

        nodes = parse_topology_nodes(raw)

        assert isinstance(nodes[0], SegmentNode)
        assert nodes[0].label == "VLAN 10"
        assert nodes[0].vms[0].vm_name == "JD-dc01"
        assert isinstance(nodes[1], RouterNode)
        assert aggregate_resources(nodes) == ResourceTotals(vms=3, cpus=7, ram=10)

    def test_flat_nodes_and_segment_alias(self):
        raw = [
            {"id": "s1", "type": "segment", "vms": [{"cpus": 1, "ram_gb": 1}]},
            {"type": "ROUTER"},
        ]

        nodes = parse_topology_nodes(raw)

        assert [type(n) for n in nodes] == [SegmentNode, RouterNode]
        assert aggregate_resources(nodes) == ResourceTotals(vms=2, cpus=3, ram=3)

    def test_unknown_and_malformed_dropped(self):
        raw = [{"type": "note", "data": {"text": "hi"}}, None, 7, {"type": "vlan", "vms": "x"}]

        nodes = parse_topology_nodes(raw)

        assert len(nodes) == 1
        assert nodes[0].vms == []

    def test_malformed_vm_still_counts(self):
        nodes = parse_topology_nodes([{"type": "vlan", "vms": ["not-a-vm", {"cpus": 1}]}])
        assert aggregate_resources(nodes) == ResourceTotals(vms=2, cpus=1, ram=0)


class TestSummaryStats:
    def test_summary(self):
        ranges = [
            RangeObject(
                userID="JD",
                rangeNumber=2,
                numberOfVMs=3,
                testingEnabled=True,
                rangeState="SUCCESS",
                allowedIPs=["10.0.0.1", "10.0.0.2"],
                allowedDomains=["example.com"],
                VMs=[{"name": "a", "poweredOn": True}, {"name": "b", "poweredOn": False}],
            ),
            RangeObject(
                userID="AB",
                rangeNumber=3,
                numberOfVMs=1,
                rangeState="ERROR",
                allowedIPs=["10.0.0.1"],
                VMs=None,
            ),
            RangeObject(userID="CD", rangeNumber=4),
        ]

        summary = calculate_summary_stats(ranges)

        assert summary.total_ranges == 3
        assert summary.total_vms == 4
        assert summary.powered_on_vms == 1
        assert summary.testing_enabled_ranges == 1
        assert summary.unique_allowed_ips == 2
        assert summary.unique_allowed_domains == 1
        assert summary.range_states == {"SUCCESS": 1, "ERROR": 1, "UNKNOWN": 1}

    def test_empty(self):
        summary = calculate_summary_stats([])
        assert summary.total_ranges == 0
        assert summary.range_states == {}


RANGE_CONFIG = """
ludus:
  - vm_name: "{{ range_id }}-ad-dc-win2019-server-x64"
    hostname: "{{ range_id }}-DC01-2019"
    template: win2019-server-x64-template
    vlan: 10
    ip_last_octet: 11
    ram_gb: 8
    cpus: 4
    windows:
      sysprep: false
    domain:
      fqdn: ludus.domain
      role: primary-dc
  - vm_name: "{{ range_id }}-kali"
    hostname: "{{ range_id }}-kali"
    template: kali-x64-desktop-template
    vlan: 99
    ip_last_octet: 1
    ram_gb: 4
    cpus: 2
network:
  rules:
    - name: Only allow windows to kali on 443
      vlan_src: 10
      vlan_dst: 99
      protocol: tcp
      ports: 443
      action: ACCEPT
    - vlan_src: 99
      vlan_dst: 10
      protocol: all
      ports: all
      action: DROP
"""


class TestBuildRangeTopology:
    def deployed(self, *vms, state="SUCCESS"):
        return RangeObject(userID="JD", rangeNumber=2, rangeState=state, VMs=list(vms))

    def test_config_only(self):
        topology = build_range_topology(RANGE_CONFIG, None, "JD")

        segments = [n for n in topology.nodes if isinstance(n, SegmentNode)]
        assert [s.id for s in segments] == ["vlan10", "vlan99"]
        assert segments[0].vms[0].vm_name == "JD-ad-dc-win2019-server-x64"
        assert not segments[0].vms[0].is_deployed
        assert topology.range_state == "UNKNOWN"
        assert topology.metadata.missing_vms == ["JD-ad-dc-win2019-server-x64", "JD-kali"]
        # two VMs plus the default router
        assert topology.resources == ResourceTotals(vms=3, cpus=8, ram=14)

        router = topology.nodes[-1]
        assert isinstance(router, RouterNode)
        assert router.vm_name == "{{ range_id }}-router"

    def test_reconciles_deployed_vms(self):
        deployed = self.deployed(
            {"name": "JD-ad-dc-win2019-server-x64", "poweredOn": True, "ip": "10.2.10.11"},
            {"name": "JD-kali", "poweredOn": False},
            {"name": "JD-router-debian11-x64", "poweredOn": True, "isRouter": True},
            {"name": "JD-stray", "poweredOn": True, "ip": "10.2.50.5"},
        )

        topology = build_range_topology({"result": RANGE_CONFIG}, deployed, "JD")

        dc = topology.nodes[0].vms[0]
        assert dc.is_deployed and dc.powered_on
        assert dc.ip_address == "10.2.10.11"

        unmatched = next(n for n in topology.nodes if getattr(n, "id", "") == f"vlan{UNMATCHED_VLAN}")
        assert unmatched.label == "Unmatched VMs"
        assert [vm.vm_name for vm in unmatched.vms] == ["JD-stray"]

        router = topology.nodes[-1]
        assert router.vm_name == "JD-router-debian11-x64"
        assert router.is_deployed

        assert topology.metadata.unmatched_vms == ["JD-stray"]
        assert topology.metadata.missing_vms == []
        assert topology.metadata.config_deployment_mismatch
        assert topology.range_state == "SUCCESS"
        assert topology.range_number == 2
        # unmatched VMs count without resources
        assert topology.resources == ResourceTotals(vms=4, cpus=8, ram=14)

    def test_router_from_config(self):
        config = {"ludus": [], "router": {"vm_name": "{{ range_id }}-router", "cpus": 4, "ram_gb": 6}}

        topology = build_range_topology(config, None, "JD")

        assert len(topology.nodes) == 1
        assert topology.nodes[0].vm_name == "{{ range_id }}-router"
        assert topology.resources == ResourceTotals(vms=1, cpus=4, ram=6)

    def test_rule_edges(self):
        topology = build_range_topology(RANGE_CONFIG, None, "JD")

        first, second = topology.edges
        assert first.source == "vlan10" and first.target == "vlan99"
        assert first.label == "Only allow windows to kali on 443"
        assert first.ports == "443"
        assert second.label == "Rule 99 → 10"
        assert second.action == "DROP"

    def test_invalid_yaml_treated_as_missing(self):
        topology = build_range_topology("ludus: [unclosed", self.deployed(), "JD")

        assert not topology.metadata.has_config
        assert topology.edges == []
        assert topology.resources == ResourceTotals(vms=1, cpus=2, ram=2)

    @pytest.mark.parametrize("config", [
        "network: allow-all\n",
        "network:\n  rules: nope\n",
        "network:\n  rules:\n    - just a string\n",
        "ludus: not-a-list\n",
    ])
    def test_malformed_sections_ignored(self, config):
        topology = build_range_topology(config, None, "JD")

        assert topology.edges == []
        assert topology.resources == ResourceTotals(vms=1, cpus=2, ram=2)

    def test_scalar_rule_fields_stringified(self):
        config = (
            "network:\n"
            "  rules:\n"
            "    - name: 22\n"
            "      vlan_src: 10\n"
            "      vlan_dst: 20\n"
            "      protocol: 6\n"
            "      ports: 22\n"
            "      action: true\n"
        )

        (edge,) = build_range_topology(config, None, "JD").edges

        assert edge.label == "22"
        assert edge.protocol == "6"
        assert edge.ports == "22"
        assert edge.action == "True"

    def test_vm_without_vlan_kept_in_fallback_segment(self, caplog):
        config = {"ludus": [
            {"vm_name": "{{ range_id }}-kali", "hostname": "kali", "vlan": 10, "cpus": 2, "ram_gb": 4},
            {"vm_name": "{{ range_id }}-orphan", "hostname": "orphan", "cpus": 1, "ram_gb": 2},
        ]}

        topology = build_range_topology(config, None, "JD")

        fallback = next(n for n in topology.nodes if getattr(n, "id", "") == UNASSIGNED_SEGMENT)
        assert fallback.label == "No VLAN"
        assert [vm.vm_name for vm in fallback.vms] == ["JD-orphan"]
        assert topology.resources == ResourceTotals(vms=3, cpus=5, ram=8)
        assert "without a VLAN: JD-orphan" in caplog.text

    def test_duplicate_config_names_both_matched(self):
        config = {"ludus": [
            {"vm_name": "{{ range_id }}-web", "hostname": "web", "vlan": 10},
            {"vm_name": "JD-web", "hostname": "web2", "vlan": 20},
        ]}
        deployed = self.deployed({"name": "JD-web", "poweredOn": True})

        topology = build_range_topology(config, deployed, "JD")

        segments = [n for n in topology.nodes if isinstance(n, SegmentNode)]
        assert [s.id for s in segments] == ["vlan10", "vlan20"]
        assert all(s.vms[0].is_deployed for s in segments)
        assert topology.metadata.missing_vms == []
        assert topology.metadata.unmatched_vms == []
        assert not topology.metadata.config_deployment_mismatch


def test_parse_range_config_shapes():
    assert parse_range_config(None) is None
    assert parse_range_config("just a string") is None
    assert parse_range_config({"result": "ludus: []"}) == {"ludus": []}
    assert parse_range_config({"ludus": []}) == {"ludus": []}


def test_resolve_range_id():
    assert resolve_range_id("{{ range_id }}-dc01", "JD") == "JD-dc01"
    assert resolve_range_id("{{range_id}}-kali", "JD") == "JD-kali"


def test_generate_vm_label():
    assert generate_vm_label({"hostname": "dc01", "windows": {"domain": {"role": "primary-dc"}}}) \
        == "Primary Dc (dc01)"
    assert generate_vm_label({"hostname": "web", "template": "debian-12-x64-server-template"}) \
        == "Debian 12 X64 Server (web)"
    assert generate_vm_label({"hostname": "ws", "template": "win11-template", "windows": {"domain": "lab"}}) \
        == "Win11 (ws)"

"""
Summary statistics and the security score heuristic.

Everything here is a pure function of the per-category result lists:
same results and weights in, same Summary out. Nothing reads the clock,
the network or the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Tuple

from ._types import TargetCategory
from .collectors.naming import merge_zones
from .config import ScoringWeights
from .models import (
    AddressPayload,
    DirectoryPayload,
    DnsZone,
    FirewallPayload,
    HostInventoryPayload,
    HostRecord,
    NamingPayload,
    PkiPayload,
    ProbeResult,
    Summary,
)

ResultsByCategory = Mapping[TargetCategory, List[ProbeResult]]


@dataclass(frozen=True)
class PostureInputs:
    """The facts the security score depends on, and nothing else."""
    directory_controller_count: int = 0
    server_count: int = 0
    online_count: int = 0
    has_pki: bool = False
    site_count: int = 0
    policy_count: int = 0
    high_utilization_scope_count: int = 0


def compute_security_score(inputs: PostureInputs, weights: ScoringWeights) -> int:
    """
    Bounded additive heuristic in [0, 100].

    Starts at the baseline and adds one non-negative adjustment per
    satisfied condition:
    - two or more directory controllers
    - online / total hosts (proportional)
    - a PKI deployment
    - more than one site
    - more policies than the threshold
    - no address scope above the high-utilization threshold
    """
    score = weights.baseline

    if inputs.directory_controller_count >= 2:
        score += weights.controller_redundancy

    if inputs.server_count > 0:
        ratio = min(inputs.online_count, inputs.server_count) / inputs.server_count
        score += weights.online_ratio * ratio

    if inputs.has_pki:
        score += weights.pki_present

    if inputs.site_count >= 2:
        score += weights.multi_site

    if inputs.policy_count > weights.policy_threshold:
        score += weights.policy_coverage

    if inputs.high_utilization_scope_count == 0:
        score += weights.scope_headroom

    return max(0, min(100, int(round(score))))


def _ok_payloads(results: ResultsByCategory, category: TargetCategory, payload_type) -> Iterable:
    for result in results.get(category, []):
        if result.ok and isinstance(result.payload, payload_type):
            yield result.payload


def aggregate_zones(results: ResultsByCategory) -> List[DnsZone]:
    """Zones from every successful name server, one entry per zone name."""
    return merge_zones(
        payload.zones for payload in _ok_payloads(results, TargetCategory.NAME_SERVER, NamingPayload)
    )


def aggregate_hosts(results: ResultsByCategory) -> List[HostRecord]:
    """
    Hosts from every successful inventory, deduplicated by FQDN.

    A host seen by several inventories counts as online if any saw it online.
    """
    merged: Dict[str, HostRecord] = {}
    for payload in _ok_payloads(results, TargetCategory.GENERIC_HOST, HostInventoryPayload):
        for host in payload.hosts:
            existing = merged.get(host.identity)
            if existing is None:
                merged[host.identity] = host
            elif host.online and not existing.online:
                merged[host.identity] = host
    return list(merged.values())


def _directory_facts(results: ResultsByCategory) -> Tuple[int, int, int]:
    controllers = set()
    sites = set()
    policy_count = 0
    reachable_targets = set()

    for result in results.get(TargetCategory.DIRECTORY_CONTROLLER, []):
        if not result.ok or not isinstance(result.payload, DirectoryPayload):
            continue
        reachable_targets.add(result.target.address.lower())
        payload = result.payload
        controllers.update(c.host_name.lower() for c in payload.controllers if c.host_name)
        sites.update(s.lower() for s in payload.sites)
        sites.update(c.site.lower() for c in payload.controllers if c.site)
        if payload.gpo_count is not None:
            policy_count = max(policy_count, payload.gpo_count)

    # A reached directory target is a controller even if nobody listed it
    controller_count = max(len(controllers), len(reachable_targets))
    return controller_count, len(sites), policy_count


def compute_summary(results: ResultsByCategory, weights: ScoringWeights) -> Summary:
    """Derive the Summary for a snapshot from its per-category results."""
    all_results = [r for category_results in results.values() for r in category_results]

    controller_count, site_count, policy_count = _directory_facts(results)

    hosts = aggregate_hosts(results)
    online_count = sum(1 for h in hosts if h.online)

    zones = aggregate_zones(results)

    scopes = {}
    for payload in _ok_payloads(results, TargetCategory.ADDRESS_SERVER, AddressPayload):
        for scope in payload.scopes:
            scopes.setdefault((scope.server.lower(), scope.scope_id), scope)
    high_utilization = sum(
        1
        for scope in scopes.values()
        if scope.utilization_percent is not None
        and scope.utilization_percent > weights.high_utilization_percent
    )

    firewalls = list(_ok_payloads(results, TargetCategory.FIREWALL_APPLIANCE, FirewallPayload))
    has_pki = any(p.has_pki for p in _ok_payloads(results, TargetCategory.CERTIFICATE_AUTHORITY, PkiPayload))

    inputs = PostureInputs(
        directory_controller_count=controller_count,
        server_count=len(hosts),
        online_count=online_count,
        has_pki=has_pki,
        site_count=site_count,
        policy_count=policy_count,
        high_utilization_scope_count=high_utilization,
    )

    return Summary(
        target_count=len(all_results),
        failed_target_count=sum(1 for r in all_results if not r.ok),
        server_count=len(hosts),
        online_count=online_count,
        directory_controller_count=controller_count,
        site_count=site_count,
        policy_count=policy_count,
        zone_count=len(zones),
        scope_count=len(scopes),
        high_utilization_scope_count=high_utilization,
        firewall_count=len(firewalls),
        vpn_tunnel_count=sum(len(p.vpn_tunnels) for p in firewalls),
        has_pki=has_pki,
        security_score=compute_security_score(inputs, weights),
    )

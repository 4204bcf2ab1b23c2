"""
Tests for summary derivation and the security score.
"""

from infra_discovery._types import FailureReason, TargetCategory
from infra_discovery.config import ScoringWeights
from infra_discovery.models import (
    AddressPayload,
    DhcpScope,
    DirectoryPayload,
    DnsZone,
    DomainController,
    FirewallInterface,
    FirewallPayload,
    HostInventoryPayload,
    HostRecord,
    NamingPayload,
    PkiPayload,
    ProbeResult,
    VpnTunnel,
)
from infra_discovery.scoring import (
    PostureInputs,
    aggregate_hosts,
    aggregate_zones,
    compute_security_score,
    compute_summary,
)

from conftest import make_target

WEIGHTS = ScoringWeights()


def ok(category, address, payload):
    return ProbeResult.succeeded(make_target(category, address), payload)


def directory(address="dc1.contoso.local", controllers=("dc1.contoso.local", "dc2.contoso.local"), sites=("HQ",), gpo_count=8):
    return ok(
        TargetCategory.DIRECTORY_CONTROLLER,
        address,
        DirectoryPayload(
            domain_name="contoso.local",
            controllers=[DomainController(host_name=h, site="HQ") for h in controllers],
            sites=list(sites),
            gpo_count=gpo_count,
        ),
    )


def inventory(source, *hosts):
    return ok(TargetCategory.GENERIC_HOST, source, HostInventoryPayload(source=source, hosts=list(hosts)))


class TestSecurityScore:
    """Test the bounded additive heuristic."""

    def test_baseline_only(self):
        """No facts at all: baseline plus scope headroom."""
        assert compute_security_score(PostureInputs(), WEIGHTS) == 55

    def test_everything_satisfied(self):
        inputs = PostureInputs(
            directory_controller_count=2,
            server_count=10,
            online_count=10,
            has_pki=True,
            site_count=2,
            policy_count=6,
            high_utilization_scope_count=0,
        )
        assert compute_security_score(inputs, WEIGHTS) == 100

    def test_deterministic(self):
        inputs = PostureInputs(directory_controller_count=1, server_count=3, online_count=2)
        assert compute_security_score(inputs, WEIGHTS) == compute_security_score(inputs, WEIGHTS)

    def test_online_ratio_proportional(self):
        half = PostureInputs(server_count=10, online_count=5, high_utilization_scope_count=1)
        assert compute_security_score(half, WEIGHTS) == 58  # 50 + 7.5 rounds to even

    def test_adding_pki_never_lowers_score(self):
        base = PostureInputs(directory_controller_count=1, server_count=4, online_count=1)
        with_pki = PostureInputs(directory_controller_count=1, server_count=4, online_count=1, has_pki=True)
        assert compute_security_score(with_pki, WEIGHTS) >= compute_security_score(base, WEIGHTS)

    def test_more_online_hosts_never_lowers_score(self):
        scores = [
            compute_security_score(PostureInputs(server_count=4, online_count=n), WEIGHTS)
            for n in range(5)
        ]
        assert scores == sorted(scores)

    def test_policy_threshold_is_strict(self):
        at = PostureInputs(policy_count=5, high_utilization_scope_count=1)
        above = PostureInputs(policy_count=6, high_utilization_scope_count=1)
        assert compute_security_score(at, WEIGHTS) == 50
        assert compute_security_score(above, WEIGHTS) == 55

    def test_clamped_to_100(self):
        weights = ScoringWeights(baseline=90, pki_present=50)
        assert compute_security_score(PostureInputs(has_pki=True), weights) == 100

    def test_online_count_above_server_count_capped(self):
        inputs = PostureInputs(server_count=2, online_count=5, high_utilization_scope_count=1)
        assert compute_security_score(inputs, WEIGHTS) == 65


class TestAggregation:
    """Test cross-target merging."""

    def test_hosts_deduplicated_online_wins(self):
        results = {
            TargetCategory.GENERIC_HOST: [
                inventory("dc1", HostRecord(hostname="WEB01", fqdn="web01.contoso.local", online=False)),
                inventory("dc2", HostRecord(hostname="web01", fqdn="WEB01.contoso.local", online=True),
                          HostRecord(hostname="SQL01", fqdn="sql01.contoso.local")),
            ],
        }
        hosts = aggregate_hosts(results)
        assert [h.identity for h in hosts] == ["web01.contoso.local", "sql01.contoso.local"]
        assert hosts[0].online is True

    def test_failed_inventory_ignored(self):
        results = {
            TargetCategory.GENERIC_HOST: [
                ProbeResult.failed(make_target(address="dc1"), FailureReason.AUTH_REJECTED, "denied"),
            ],
        }
        assert aggregate_hosts(results) == []

    def test_zones_once_across_servers(self):
        results = {
            TargetCategory.NAME_SERVER: [
                ok(TargetCategory.NAME_SERVER, "dns1", NamingPayload(server="dns1", zones=[DnsZone(name="contoso.local", servers=["dns1"])])),
                ok(TargetCategory.NAME_SERVER, "dns2", NamingPayload(server="dns2", zones=[DnsZone(name="contoso.local", servers=["dns2"])])),
            ],
        }
        zones = aggregate_zones(results)
        assert len(zones) == 1
        assert zones[0].servers == ["dns1", "dns2"]


class TestComputeSummary:
    """Test Summary derivation from result lists."""

    def test_empty(self):
        summary = compute_summary({}, WEIGHTS)
        assert summary.target_count == 0
        assert summary.has_pki is False
        assert summary.security_score == 55

    def test_counts(self):
        results = {
            TargetCategory.DIRECTORY_CONTROLLER: [
                directory("dc1.contoso.local", sites=("HQ", "Branch")),
                directory("dc2.contoso.local", gpo_count=12),
            ],
            TargetCategory.NAME_SERVER: [
                ok(TargetCategory.NAME_SERVER, "dns1", NamingPayload(server="dns1", zones=[
                    DnsZone(name="contoso.local", servers=["dns1"]),
                    DnsZone(name="0.10.in-addr.arpa", servers=["dns1"]),
                ])),
            ],
            TargetCategory.ADDRESS_SERVER: [
                ok(TargetCategory.ADDRESS_SERVER, "dhcp1", AddressPayload(server="dhcp1", scopes=[
                    DhcpScope(scope_id="10.0.0.0", server="dhcp1", utilization_percent=95.0),
                    DhcpScope(scope_id="10.1.0.0", server="dhcp1", utilization_percent=90.0),
                    DhcpScope(scope_id="10.2.0.0", server="dhcp1"),
                ])),
            ],
            TargetCategory.GENERIC_HOST: [
                inventory("dc1",
                          HostRecord(hostname="WEB01", online=True),
                          HostRecord(hostname="SQL01", online=False)),
            ],
            TargetCategory.CERTIFICATE_AUTHORITY: [
                ok(TargetCategory.CERTIFICATE_AUTHORITY, "dc1", PkiPayload(has_pki=True)),
            ],
            TargetCategory.FIREWALL_APPLIANCE: [
                ok(TargetCategory.FIREWALL_APPLIANCE, "10.0.0.1", FirewallPayload(
                    interfaces=[FirewallInterface(name="tunnel.1")],
                    vpn_tunnels=[VpnTunnel(name="tunnel.1")],
                )),
                ProbeResult.failed(make_target(TargetCategory.FIREWALL_APPLIANCE, "10.0.0.2"), FailureReason.TIMEOUT, "slow"),
            ],
        }

        summary = compute_summary(results, WEIGHTS)

        assert summary.target_count == 8
        assert summary.failed_target_count == 1
        assert summary.directory_controller_count == 2
        assert summary.site_count == 2
        assert summary.policy_count == 12
        assert summary.zone_count == 2
        assert summary.scope_count == 3
        assert summary.high_utilization_scope_count == 1
        assert summary.server_count == 2
        assert summary.online_count == 1
        assert summary.firewall_count == 1
        assert summary.vpn_tunnel_count == 1
        assert summary.has_pki is True
        # 50 + 10 redundancy + 7.5 online + 10 pki + 5 sites + 5 policy, no headroom
        assert summary.security_score == 88

    def test_pki_independent_of_firewall(self):
        """A failed firewall does not change has_pki."""
        pki = ok(TargetCategory.CERTIFICATE_AUTHORITY, "dc1", PkiPayload(has_pki=True))
        fw_failed = ProbeResult.failed(make_target(TargetCategory.FIREWALL_APPLIANCE, "10.0.0.1"), FailureReason.UNREACHABLE, "down")

        with_fw = compute_summary({
            TargetCategory.CERTIFICATE_AUTHORITY: [pki],
            TargetCategory.FIREWALL_APPLIANCE: [fw_failed],
        }, WEIGHTS)
        without_fw = compute_summary({TargetCategory.CERTIFICATE_AUTHORITY: [pki]}, WEIGHTS)

        assert with_fw.has_pki is True
        assert with_fw.security_score == without_fw.security_score

    def test_controller_count_falls_back_to_reached_targets(self):
        results = {
            TargetCategory.DIRECTORY_CONTROLLER: [directory("dc1.contoso.local", controllers=())],
        }
        assert compute_summary(results, WEIGHTS).directory_controller_count == 1

    def test_same_summary_for_same_results(self):
        results = {TargetCategory.DIRECTORY_CONTROLLER: [directory()]}
        assert compute_summary(results, WEIGHTS) == compute_summary(results, WEIGHTS)


class TestScoreMonotonicity:
    """Satisfying one more condition, all else fixed, never lowers the score."""

    def scores(self, before, after):
        return compute_summary(before, WEIGHTS), compute_summary(after, WEIGHTS)

    def test_second_controller_target(self):
        dc1 = directory("dc1.contoso.local", controllers=("dc1.contoso.local",))
        dc2 = directory("dc2.contoso.local", controllers=("dc2.contoso.local",))

        before, after = self.scores(
            {TargetCategory.DIRECTORY_CONTROLLER: [dc1]},
            {TargetCategory.DIRECTORY_CONTROLLER: [dc1, dc2]},
        )

        assert (before.directory_controller_count, after.directory_controller_count) == (1, 2)
        assert after.security_score >= before.security_score

    def test_second_controller_reached_but_unlisted(self):
        dc1 = directory("dc1.contoso.local", controllers=("dc1.contoso.local",))
        dc2 = directory("dc2.contoso.local", controllers=())

        before, after = self.scores(
            {TargetCategory.DIRECTORY_CONTROLLER: [dc1]},
            {TargetCategory.DIRECTORY_CONTROLLER: [dc1, dc2]},
        )

        assert after.directory_controller_count == 2
        assert after.security_score >= before.security_score

    def test_second_site(self):
        before, after = self.scores(
            {TargetCategory.DIRECTORY_CONTROLLER: [directory(sites=("HQ",))]},
            {TargetCategory.DIRECTORY_CONTROLLER: [directory(sites=("HQ", "Branch"))]},
        )

        assert (before.site_count, after.site_count) == (1, 2)
        assert after.security_score >= before.security_score

    def test_scope_drops_below_utilization_threshold(self):
        def address(utilization):
            scope = DhcpScope(scope_id="10.0.0.0", server="dhcp1", utilization_percent=utilization)
            return {
                TargetCategory.DIRECTORY_CONTROLLER: [directory()],
                TargetCategory.ADDRESS_SERVER: [
                    ok(TargetCategory.ADDRESS_SERVER, "dhcp1", AddressPayload(server="dhcp1", scopes=[scope])),
                ],
            }

        before, after = self.scores(address(95.0), address(40.0))

        assert (before.high_utilization_scope_count, after.high_utilization_scope_count) == (1, 0)
        assert after.security_score >= before.security_score

"""
Tests for data models and shared enums.
"""

import pytest
from pydantic import ValidationError

from infra_discovery._types import CATEGORY_ORDER, FailureReason, ProbeStatus, TargetCategory
from infra_discovery.errors import AuthFailure, ProtocolError, TransportFailure, error_for_reason
from infra_discovery.models import (
    AggregateSnapshot,
    DnsZone,
    HostInventoryPayload,
    HostRecord,
    NamingPayload,
    PkiPayload,
    ProbeResult,
    RawPayload,
    Summary,
    Target,
)

from conftest import FIXED_NOW, make_target


class TestTarget:
    """Test Target model."""

    def test_name_falls_back_to_address(self):
        """Display name defaults to the address."""
        assert make_target(address="dc1").name == "dc1"
        assert make_target(address="dc1", display_name="Primary DC").name == "Primary DC"

    def test_empty_address_rejected(self):
        with pytest.raises(ValidationError):
            Target(category=TargetCategory.NAME_SERVER, address="")

    def test_port_range(self):
        with pytest.raises(ValidationError):
            make_target(port=70000)

    def test_frozen(self):
        target = make_target()
        with pytest.raises(ValidationError):
            target.address = "other"

    def test_category_from_string(self):
        target = Target(category="firewall_appliance", address="10.0.0.1")
        assert target.category == TargetCategory.FIREWALL_APPLIANCE


class TestProbeResult:
    """Test ProbeResult shape rules."""

    def test_succeeded(self):
        result = ProbeResult.succeeded(make_target(), RawPayload(data={"a": 1}), 0.5)
        assert result.ok
        assert result.status == ProbeStatus.OK
        assert result.payload.data == {"a": 1}
        assert result.reason is None

    def test_failed(self):
        result = ProbeResult.failed(make_target(), FailureReason.TIMEOUT, "slow")
        assert not result.ok
        assert result.reason == FailureReason.TIMEOUT
        assert result.detail == "slow"

    def test_failed_requires_reason(self):
        with pytest.raises(ValidationError):
            ProbeResult(target=make_target(), status=ProbeStatus.FAILED)

    def test_ok_rejects_reason(self):
        with pytest.raises(ValidationError):
            ProbeResult(target=make_target(), status=ProbeStatus.OK, reason=FailureReason.TIMEOUT)

    def test_payload_round_trip_keeps_type(self):
        """Payload decodes back to its typed model through the kind tag."""
        result = ProbeResult.succeeded(
            make_target(TargetCategory.CERTIFICATE_AUTHORITY),
            PkiPayload(has_pki=False),
        )
        restored = ProbeResult.model_validate_json(result.model_dump_json())
        assert isinstance(restored.payload, PkiPayload)
        assert restored.payload.has_pki is False


class TestHostRecord:
    def test_identity_prefers_fqdn(self):
        assert HostRecord(hostname="WEB01", fqdn="Web01.Contoso.local").identity == "web01.contoso.local"
        assert HostRecord(hostname="WEB01").identity == "web01"


class TestDnsZone:
    def test_record_total(self):
        zone = DnsZone(name="contoso.local", record_counts={"A": 10, "CNAME": 3})
        assert zone.record_total == 13


class TestAggregateSnapshot:
    """Test snapshot construction."""

    def test_missing_categories_present_as_empty(self):
        """Every category has a list, even when nothing ran."""
        snapshot = AggregateSnapshot(environment_id="contoso", created_at=FIXED_NOW)
        for category in CATEGORY_ORDER:
            assert snapshot.results_for(category) == []

    def test_round_trip(self):
        target = make_target(TargetCategory.NAME_SERVER, "dns1")
        snapshot = AggregateSnapshot(
            environment_id="contoso",
            created_at=FIXED_NOW,
            results={
                TargetCategory.NAME_SERVER: [
                    ProbeResult.succeeded(target, NamingPayload(server="dns1", zones=[DnsZone(name="contoso.local")])),
                ],
                TargetCategory.GENERIC_HOST: [
                    ProbeResult.failed(make_target(), FailureReason.AUTH_REJECTED, "denied"),
                ],
            },
        )
        restored = AggregateSnapshot.model_validate_json(snapshot.model_dump_json())
        assert restored == snapshot
        assert isinstance(restored.results_for(TargetCategory.NAME_SERVER)[0].payload, NamingPayload)

    def test_failed_results(self):
        failed = ProbeResult.failed(make_target(), FailureReason.UNREACHABLE, "down")
        ok = ProbeResult.succeeded(make_target(address="h2"), HostInventoryPayload(source="dc1"))
        snapshot = AggregateSnapshot(
            environment_id="contoso",
            created_at=FIXED_NOW,
            results={TargetCategory.GENERIC_HOST: [failed, ok]},
        )
        assert snapshot.failed_results() == [failed]

    def test_naive_created_at_is_utc(self):
        snapshot = AggregateSnapshot(environment_id="contoso", created_at=FIXED_NOW.replace(tzinfo=None))
        assert snapshot.created_at == FIXED_NOW
        assert snapshot.created_at.tzinfo is not None

    def test_summary_must_match_results(self):
        failed = ProbeResult.failed(make_target(), FailureReason.UNREACHABLE, "down")
        with pytest.raises(ValidationError):
            AggregateSnapshot(
                environment_id="contoso",
                created_at=FIXED_NOW,
                results={TargetCategory.GENERIC_HOST: [failed]},
                summary=Summary(target_count=3, failed_target_count=0),
            )

    def test_consistent_summary_accepted(self):
        failed = ProbeResult.failed(make_target(), FailureReason.UNREACHABLE, "down")
        snapshot = AggregateSnapshot(
            environment_id="contoso",
            created_at=FIXED_NOW,
            results={TargetCategory.GENERIC_HOST: [failed]},
            summary=Summary(target_count=1, failed_target_count=1),
        )
        assert AggregateSnapshot.model_validate_json(snapshot.model_dump_json()) == snapshot


class TestErrors:
    """Test reason to exception mapping."""

    def test_error_for_reason(self):
        assert isinstance(error_for_reason(FailureReason.AUTH_REJECTED, "x"), AuthFailure)
        assert isinstance(error_for_reason(FailureReason.PROTOCOL_ERROR, "x"), ProtocolError)

        timeout = error_for_reason(FailureReason.TIMEOUT, "x")
        assert isinstance(timeout, TransportFailure)
        assert timeout.reason == FailureReason.TIMEOUT

        unreachable = error_for_reason(FailureReason.UNREACHABLE, "x")
        assert unreachable.reason == FailureReason.UNREACHABLE

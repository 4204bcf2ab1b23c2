"""
Data models for discovery results and snapshots.

Targets, per-category payloads, ProbeResult, Summary and AggregateSnapshot
are frozen pydantic models: a discovery run builds them once and nothing
mutates them afterwards. Payloads form a tagged union keyed on ``kind`` so a
snapshot read back from disk decodes into the same typed records.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ._types import CATEGORY_ORDER, FailureReason, ProbeStatus, TargetCategory, as_utc


# ============================================================================
# Targets
# ============================================================================


class Target(BaseModel):
    """An addressable infrastructure asset, read from environment configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    category: TargetCategory
    address: str = Field(..., min_length=1, description="Hostname or IP")
    display_name: str = Field(default="", description="Friendly name for reports")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="Override protocol default port")
    credential_ref: Optional[str] = Field(default=None, description="Key into the credential store")
    watched: bool = Field(default=False, description="Include in health monitoring")

    @property
    def name(self) -> str:
        return self.display_name or self.address


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Sub-sections that could not be read; the rest of the payload is valid
    degraded_sections: list[str] = Field(default_factory=list)


# ============================================================================
# Directory service
# ============================================================================


class DomainController(BaseModel):
    model_config = ConfigDict(frozen=True)

    host_name: str
    site: Optional[str] = None
    ip_address: Optional[str] = None
    operating_system: Optional[str] = None
    is_global_catalog: bool = False
    is_read_only: bool = False
    roles: list[str] = Field(default_factory=list)


class DomainTrust(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    direction: Optional[str] = None
    trust_type: Optional[str] = None
    forest_transitive: bool = False


class DirectoryPayload(_Payload):
    kind: Literal["directory"] = "directory"
    domain_name: str
    netbios_name: Optional[str] = None
    distinguished_name: Optional[str] = None
    domain_mode: Optional[str] = None
    forest_name: Optional[str] = None
    forest_mode: Optional[str] = None
    controllers: list[DomainController] = Field(default_factory=list)
    fsmo_roles: dict[str, str] = Field(default_factory=dict)
    sites: list[str] = Field(default_factory=list)
    ou_count: Optional[int] = None
    gpo_count: Optional[int] = None
    trusts: list[DomainTrust] = Field(default_factory=list)


# ============================================================================
# Naming service
# ============================================================================


class DnsZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    zone_type: Optional[str] = None
    ad_integrated: bool = False
    reverse_lookup: bool = False
    dynamic_update: Optional[str] = None
    record_counts: dict[str, int] = Field(default_factory=dict)
    servers: list[str] = Field(default_factory=list)

    @property
    def record_total(self) -> int:
        return sum(self.record_counts.values())


class NamingPayload(_Payload):
    kind: Literal["naming"] = "naming"
    server: str
    zones: list[DnsZone] = Field(default_factory=list)
    forwarders: list[str] = Field(default_factory=list)


# ============================================================================
# Address assignment
# ============================================================================


class DhcpScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope_id: str
    server: str
    name: Optional[str] = None
    start_range: Optional[str] = None
    end_range: Optional[str] = None
    subnet_mask: Optional[str] = None
    state: Optional[str] = None
    lease_duration: Optional[str] = None
    free: Optional[int] = None
    in_use: Optional[int] = None
    reserved: Optional[int] = None
    utilization_percent: Optional[float] = None


class DhcpFailover(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    partner_server: Optional[str] = None
    mode: Optional[str] = None
    state: Optional[str] = None


class DhcpOption(BaseModel):
    """A server-level option handed to every scope (router, DNS servers, domain name...)."""

    model_config = ConfigDict(frozen=True)

    option_id: int
    name: Optional[str] = None
    values: list[str] = Field(default_factory=list)


class AddressPayload(_Payload):
    kind: Literal["address"] = "address"
    server: str
    scopes: list[DhcpScope] = Field(default_factory=list)
    failover: list[DhcpFailover] = Field(default_factory=list)
    options: list[DhcpOption] = Field(default_factory=list)


# ============================================================================
# Generic host inventory
# ============================================================================


class HostRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    hostname: str
    fqdn: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    ou_path: Optional[str] = None
    enabled: bool = True
    online: bool = False
    roles: list[str] = Field(default_factory=list)
    cpu_cores: Optional[int] = None
    memory_gb: Optional[float] = None
    disk_total_gb: Optional[float] = None
    disk_free_gb: Optional[float] = None
    last_boot: Optional[str] = None
    probe_error: Optional[str] = None

    @property
    def identity(self) -> str:
        return (self.fqdn or self.hostname).lower()


class HostInventoryPayload(_Payload):
    kind: Literal["hosts"] = "hosts"
    source: str
    hosts: list[HostRecord] = Field(default_factory=list)


# ============================================================================
# Certificate authority
# ============================================================================


class CertificateAuthorityInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    host_name: Optional[str] = None
    template_count: int = 0


class PkiPayload(_Payload):
    kind: Literal["pki"] = "pki"
    has_pki: bool = False
    authorities: list[CertificateAuthorityInfo] = Field(default_factory=list)
    template_count: Optional[int] = None


# ============================================================================
# Firewall appliance
# ============================================================================


class FirewallSystem(BaseModel):
    model_config = ConfigDict(frozen=True)

    hostname: Optional[str] = None
    model: Optional[str] = None
    serial: Optional[str] = None
    version: Optional[str] = None
    uptime: Optional[str] = None


class FirewallInterface(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: Optional[str] = None
    ip_address: Optional[str] = None
    zone: Optional[str] = None
    status: Optional[str] = None


class FirewallRoute(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination: str
    gateway: Optional[str] = None
    interface: Optional[str] = None
    metric: Optional[int] = None


class FirewallZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    interfaces: list[str] = Field(default_factory=list)


class VpnTunnel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    ip_address: Optional[str] = None
    zone: Optional[str] = None
    status: Optional[str] = None


class FirewallPayload(_Payload):
    kind: Literal["firewall"] = "firewall"
    system: Optional[FirewallSystem] = None
    interfaces: list[FirewallInterface] = Field(default_factory=list)
    routes: list[FirewallRoute] = Field(default_factory=list)
    zones: list[FirewallZone] = Field(default_factory=list)
    vpn_tunnels: list[VpnTunnel] = Field(default_factory=list)


class RawPayload(_Payload):
    """Decoded transport output before a collector shapes it."""

    kind: Literal["raw"] = "raw"
    data: Any = None


CategoryPayload = Annotated[
    Union[
        DirectoryPayload,
        NamingPayload,
        AddressPayload,
        HostInventoryPayload,
        PkiPayload,
        FirewallPayload,
        RawPayload,
    ],
    Field(discriminator="kind"),
]

PAYLOAD_KIND_BY_CATEGORY = {
    TargetCategory.DIRECTORY_CONTROLLER: "directory",
    TargetCategory.NAME_SERVER: "naming",
    TargetCategory.ADDRESS_SERVER: "address",
    TargetCategory.GENERIC_HOST: "hosts",
    TargetCategory.CERTIFICATE_AUTHORITY: "pki",
    TargetCategory.FIREWALL_APPLIANCE: "firewall",
}


# ============================================================================
# Probe results
# ============================================================================


class ProbeResult(BaseModel):
    """
    Outcome of one probe or collector invocation against one target.

    Either OK with a payload, or FAILED with a reason code and detail.
    Failures are data: nothing above the orchestrator boundary raises.
    """

    model_config = ConfigDict(frozen=True)

    target: Target
    status: ProbeStatus
    payload: Optional[CategoryPayload] = None
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None
    duration_seconds: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def check_shape(self):
        if self.status == ProbeStatus.OK and self.reason is not None:
            raise ValueError("successful probe cannot carry a failure reason")
        if self.status == ProbeStatus.FAILED and self.reason is None:
            raise ValueError("failed probe requires a reason")
        return self

    @property
    def ok(self) -> bool:
        return self.status == ProbeStatus.OK

    @classmethod
    def succeeded(cls, target: Target, payload: Any, duration_seconds: float = 0.0) -> "ProbeResult":
        return cls(
            target=target,
            status=ProbeStatus.OK,
            payload=payload,
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failed(
        cls,
        target: Target,
        reason: FailureReason,
        detail: Optional[str] = None,
        duration_seconds: float = 0.0,
    ) -> "ProbeResult":
        return cls(
            target=target,
            status=ProbeStatus.FAILED,
            reason=reason,
            detail=detail,
            duration_seconds=duration_seconds,
        )


# ============================================================================
# Aggregate snapshot
# ============================================================================


class Summary(BaseModel):
    """Statistics derived from the per-category result lists. Never set independently."""

    model_config = ConfigDict(frozen=True)

    target_count: int = 0
    failed_target_count: int = 0
    server_count: int = 0
    online_count: int = 0
    directory_controller_count: int = 0
    site_count: int = 0
    policy_count: int = 0
    zone_count: int = 0
    scope_count: int = 0
    high_utilization_scope_count: int = 0
    firewall_count: int = 0
    vpn_tunnel_count: int = 0
    has_pki: bool = False
    security_score: int = Field(default=0, ge=0, le=100)


class AggregateSnapshot(BaseModel):
    """
    One immutable discovery result for an environment at a point in time.

    Build through orchestrator.build_snapshot, which derives summary and
    zones from the results. A non-blank summary passed in directly must
    agree with the result lists on target and failure counts.
    """

    model_config = ConfigDict(frozen=True)

    environment_id: str
    created_at: datetime
    results: dict[TargetCategory, list[ProbeResult]] = Field(default_factory=dict)
    zones: list[DnsZone] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are UTC
        return as_utc(v)

    @model_validator(mode="before")
    @classmethod
    def fill_categories(cls, data: Any) -> Any:
        # Every category is present, empty rather than absent
        if isinstance(data, dict):
            results = dict(data.get("results") or {})
            for category in CATEGORY_ORDER:
                if category not in results and category.value not in results:
                    results[category] = []
            data = {**data, "results": results}
        return data

    @model_validator(mode="after")
    def summary_matches_results(self) -> "AggregateSnapshot":
        if self.summary == Summary():
            # Not derived yet
            return self
        total = sum(len(results) for results in self.results.values())
        failed = len(self.failed_results())
        if (self.summary.target_count, self.summary.failed_target_count) != (total, failed):
            raise ValueError(
                f"Summary counts {self.summary.target_count}/{self.summary.failed_target_count} "
                f"do not match results {total}/{failed}"
            )
        return self

    def results_for(self, category: TargetCategory) -> list[ProbeResult]:
        return self.results.get(category, [])

    def failed_results(self) -> list[ProbeResult]:
        return [
            result
            for category in CATEGORY_ORDER
            for result in self.results_for(category)
            if not result.ok
        ]


class SnapshotRecord(BaseModel):
    """A persisted snapshot plus its identity."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    environment_id: str
    created_at: datetime
    content_sha256: str
    signed: bool = False
    snapshot: AggregateSnapshot

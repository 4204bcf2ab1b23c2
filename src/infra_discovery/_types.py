"""
Shared enums and helpers for the discovery engine.

Import enums from this module, not from individual files, so collectors,
the orchestrator and the health monitor agree on the same values.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum


def now_utc() -> datetime:
    """Get current UTC timestamp (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise a timestamp to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TargetCategory(str, Enum):
    """Infrastructure asset categories, one collector each."""
    DIRECTORY_CONTROLLER = "directory_controller"
    NAME_SERVER = "name_server"
    ADDRESS_SERVER = "address_server"
    GENERIC_HOST = "generic_host"
    CERTIFICATE_AUTHORITY = "certificate_authority"
    FIREWALL_APPLIANCE = "firewall_appliance"


# Snapshot ordering of the per-category result lists
CATEGORY_ORDER = (
    TargetCategory.DIRECTORY_CONTROLLER,
    TargetCategory.NAME_SERVER,
    TargetCategory.ADDRESS_SERVER,
    TargetCategory.GENERIC_HOST,
    TargetCategory.CERTIFICATE_AUTHORITY,
    TargetCategory.FIREWALL_APPLIANCE,
)


class ProbeStatus(str, Enum):
    """Outcome of a probe or collector invocation."""
    OK = "ok"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Reason codes carried by a failed probe."""
    UNREACHABLE = "unreachable"
    AUTH_REJECTED = "auth_rejected"
    TIMEOUT = "timeout"
    PROTOCOL_ERROR = "protocol_error"


# Reasons that count as a transport outage for the whole-run abort rule
TRANSPORT_REASONS = frozenset({FailureReason.UNREACHABLE, FailureReason.TIMEOUT})


class HostStatus(str, Enum):
    """Liveness status tracked by the health monitor."""
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class AlertKind(str, Enum):
    """Notifications emitted on health transitions."""
    DOWN = "down"
    RECOVERY = "recovery"

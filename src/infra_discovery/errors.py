"""
Error taxonomy for the discovery engine.

Probe errors are raised inside the transport and collector layer only and
are turned into failed ProbeResults before they reach the orchestrator.
ConfigurationError is the single fatal path surfaced to the operator.
"""

from __future__ import annotations

from typing import Optional

from ._types import FailureReason


class InfraDiscoveryError(Exception):
    """Base class for all discovery engine errors."""


class ConfigurationError(InfraDiscoveryError):
    """Environment configuration is missing or invalid. Aborts the run."""


class DiscoveryAborted(InfraDiscoveryError):
    """Every probed target failed at the transport level; no snapshot written."""


class SnapshotStoreError(InfraDiscoveryError):
    """Snapshot or pointer artifact could not be written."""


class ProbeError(InfraDiscoveryError):
    """Error raised while probing one target."""

    reason: FailureReason = FailureReason.PROTOCOL_ERROR

    def __init__(self, message: str, reason: Optional[FailureReason] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message)


class TransportFailure(ProbeError):
    """Target unreachable or timed out. Retried by a future run, never within this one."""

    reason = FailureReason.UNREACHABLE


class AuthFailure(ProbeError):
    """Session could not be established with the supplied credential."""

    reason = FailureReason.AUTH_REJECTED


class ProtocolError(ProbeError):
    """Malformed or unexpected response from the target."""

    reason = FailureReason.PROTOCOL_ERROR


def error_for_reason(reason: FailureReason, message: str) -> ProbeError:
    """Rebuild the matching ProbeError for a failed probe's reason code."""
    if reason == FailureReason.AUTH_REJECTED:
        return AuthFailure(message)
    if reason in (FailureReason.UNREACHABLE, FailureReason.TIMEOUT):
        return TransportFailure(message, reason=reason)
    return ProtocolError(message)

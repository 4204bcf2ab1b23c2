"""
Infrastructure discovery and health monitoring engine.

Probes directory, name, address, host, certificate authority and firewall
targets for one environment, aggregates the results into immutable
snapshots, and watches a smaller host set for down/recovery transitions.
"""

__version__ = "0.1.0"

from ._types import (
    AlertKind,
    FailureReason,
    HostStatus,
    ProbeStatus,
    TargetCategory,
)
from .config import EnvironmentConfig, ScoringWeights, load_environment
from .errors import (
    AuthFailure,
    ConfigurationError,
    DiscoveryAborted,
    InfraDiscoveryError,
    ProbeError,
    ProtocolError,
    SnapshotStoreError,
    TransportFailure,
)
from .health_monitor import HealthAlert, HealthMonitor, HealthStateStore, HostHealthState, apply_probe
from .models import AggregateSnapshot, ProbeResult, SnapshotRecord, Summary, Target
from .orchestrator import DiscoveryOrchestrator
from .scoring import compute_security_score, compute_summary
from .snapshot_store import SnapshotStore

__all__ = [
    "AggregateSnapshot",
    "AlertKind",
    "AuthFailure",
    "ConfigurationError",
    "DiscoveryAborted",
    "DiscoveryOrchestrator",
    "EnvironmentConfig",
    "FailureReason",
    "HealthAlert",
    "HealthMonitor",
    "HealthStateStore",
    "HostHealthState",
    "HostStatus",
    "InfraDiscoveryError",
    "ProbeError",
    "ProbeResult",
    "ProbeStatus",
    "ProtocolError",
    "ScoringWeights",
    "SnapshotRecord",
    "SnapshotStore",
    "SnapshotStoreError",
    "Summary",
    "Target",
    "TargetCategory",
    "TransportFailure",
    "apply_probe",
    "compute_security_score",
    "compute_summary",
    "load_environment",
    "__version__",
]

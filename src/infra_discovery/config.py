"""
Environment configuration for the discovery engine.

Loads one environment from a YAML file into validated pydantic models.
Environment variables override a few deployment-level settings.

Credentials are NOT part of this file: targets carry a credential_ref
which the session provider resolves against a separate credentials file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ._types import TargetCategory
from .errors import ConfigurationError
from .models import Target

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("/var/lib/infra-discovery")
CONFIG_ENV_VAR = "INFRA_DISCOVERY_CONFIG"


class DiscoverySettings(BaseModel):
    """Feature toggles and fan-out limits for one discovery run."""

    model_config = ConfigDict(extra="forbid")

    skip_categories: list[TargetCategory] = Field(
        default_factory=list,
        description="Categories not probed this run (still reported as empty lists)"
    )
    max_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Maximum targets probed at once"
    )
    host_probe_concurrency: int = Field(
        default=10,
        ge=1,
        le=256,
        description="Maximum secondary host probes at once within one inventory"
    )
    probe_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for one remote query"
    )
    host_probe_port: int = Field(
        default=5985,
        ge=1,
        le=65535,
        description="Port used for inventoried host liveness (WinRM HTTP)"
    )
    host_filter: str = Field(
        default="(&(objectClass=computer)(operatingSystem=*Server*))",
        description="LDAP filter selecting inventoried hosts"
    )
    directory_base_dn: Optional[str] = Field(
        default=None,
        description="Search base for host inventory (defaults to the naming context)"
    )


class ScoringWeights(BaseModel):
    """
    Deployment-tuned weights for the security score heuristic.

    All adjustments are non-negative so improving any single condition
    never lowers the score.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    baseline: float = Field(default=50.0, ge=0, le=100)
    controller_redundancy: float = Field(default=10.0, ge=0)
    online_ratio: float = Field(default=15.0, ge=0)
    pki_present: float = Field(default=10.0, ge=0)
    multi_site: float = Field(default=5.0, ge=0)
    policy_coverage: float = Field(default=5.0, ge=0)
    policy_threshold: int = Field(default=5, ge=0)
    scope_headroom: float = Field(default=5.0, ge=0)
    high_utilization_percent: float = Field(default=90.0, gt=0, le=100)


class MonitorSettings(BaseModel):
    """Health monitor timing and hysteresis."""

    model_config = ConfigDict(extra="forbid")

    interval_seconds: int = Field(default=300, ge=10, le=86400)
    failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive failed probes before a down alert"
    )
    probe_port: int = Field(default=5985, ge=1, le=65535)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    notification_webhook_url: Optional[str] = None


class FirewallApiSettings(BaseModel):
    """Vendor REST endpoints for the firewall appliance collector."""

    model_config = ConfigDict(extra="forbid")

    keygen_path: str = "/api/v1/auth/keygen"
    api_key_header: str = "X-API-Key"
    system_info_path: str = "/api/v1/system/info"
    interfaces_path: str = "/api/v1/network/interfaces"
    routes_path: str = "/api/v1/network/routes"
    zones_path: str = "/api/v1/network/zones"
    tunnel_interface_types: list[str] = Field(
        default_factory=lambda: ["tunnel", "vpn", "ipsec"]
    )


class StorageSettings(BaseModel):
    """Where snapshots and health state live."""

    model_config = ConfigDict(extra="forbid")

    state_dir: Path = Field(default=DEFAULT_STATE_DIR)
    snapshot_dir: Optional[Path] = None
    health_state_dir: Optional[Path] = None
    credentials_file: Optional[Path] = None
    signing_key_file: Optional[Path] = None

    @model_validator(mode="after")
    def set_default_paths(self):
        """Derive unset paths from state_dir."""
        if self.snapshot_dir is None:
            self.snapshot_dir = self.state_dir / "snapshots"
        if self.health_state_dir is None:
            self.health_state_dir = self.state_dir / "health"
        if self.credentials_file is None:
            self.credentials_file = self.state_dir / "credentials.yaml"
        return self


class EnvironmentConfig(BaseModel):
    """One environment: its targets and the knobs for discovery and monitoring."""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    environment_id: str = Field(..., min_length=1, description="Unique environment identifier")
    targets: list[Target] = Field(default_factory=list)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    firewall: FirewallApiSettings = Field(default_factory=FirewallApiSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            raise ValueError("log_level must be DEBUG, INFO, WARNING, or ERROR")
        return v

    @field_validator("targets")
    @classmethod
    def validate_unique_targets(cls, v):
        seen = set()
        for target in v:
            key = (target.category, target.address.lower())
            if key in seen:
                raise ValueError(f"duplicate target {target.category.value}:{target.address}")
            seen.add(key)
        return v

    def targets_for(self, category: TargetCategory) -> list[Target]:
        return [t for t in self.targets if t.category == category]

    @property
    def watched_targets(self) -> list[Target]:
        """Targets flagged for health monitoring, one per address."""
        by_address: dict[str, Target] = {}
        for target in self.targets:
            if target.watched and target.address.lower() not in by_address:
                by_address[target.address.lower()] = target
        return list(by_address.values())


def load_environment(path: Optional[Path] = None) -> EnvironmentConfig:
    """
    Load environment configuration from YAML.

    Args:
        path: Config file path (default: $INFRA_DISCOVERY_CONFIG)

    Returns:
        EnvironmentConfig: Validated configuration

    Raises:
        ConfigurationError: If the file is missing, malformed, invalid,
            or lists no targets
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            raise ConfigurationError(f"No config path given and {CONFIG_ENV_VAR} is not set")
        path = Path(env_path)

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    # Deployment-level overrides
    if log_level := os.environ.get("INFRA_DISCOVERY_LOG_LEVEL"):
        data["log_level"] = log_level
    if state_dir := os.environ.get("INFRA_DISCOVERY_STATE_DIR"):
        data.setdefault("storage", {})["state_dir"] = state_dir

    try:
        config = EnvironmentConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    if not config.targets:
        raise ConfigurationError(f"Environment {config.environment_id} has no targets")

    logger.info(f"Loaded environment {config.environment_id} with {len(config.targets)} targets")
    return config


# Example environment.yaml:
"""
environment_id: "contoso-prod"

targets:
  - category: directory_controller
    address: "dc1.contoso.local"
    credential_ref: "domain-admin"
    watched: true
  - category: name_server
    address: "dc1.contoso.local"
    credential_ref: "domain-admin"
  - category: address_server
    address: "dhcp1.contoso.local"
    credential_ref: "domain-admin"
  - category: generic_host
    address: "dc1.contoso.local"
    display_name: "AD computer inventory"
    credential_ref: "ldap-reader"
  - category: certificate_authority
    address: "dc1.contoso.local"
    credential_ref: "domain-admin"
  - category: firewall_appliance
    address: "10.0.0.1"
    port: 443
    credential_ref: "firewall-api"
    watched: true

discovery:
  skip_categories: []
  max_concurrency: 8

monitor:
  interval_seconds: 300
  failure_threshold: 3

storage:
  state_dir: "/var/lib/infra-discovery"

log_level: "INFO"
"""

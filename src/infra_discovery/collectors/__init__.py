"""Category collectors, one per target category."""

from typing import Dict

from .._types import TargetCategory
from .addressing import AddressCollector, scope_utilization
from .base import CollectionContext, Collector
from .directory import DirectoryCollector, assign_fsmo_roles
from .firewall import FirewallCollector, derive_vpn_tunnels
from .hosts import HostInventoryCollector
from .naming import NamingCollector, merge_zones
from .pki import CertificateAuthorityCollector


def default_collectors() -> Dict[TargetCategory, Collector]:
    """One collector instance per category."""
    collectors = [
        DirectoryCollector(),
        NamingCollector(),
        AddressCollector(),
        HostInventoryCollector(),
        CertificateAuthorityCollector(),
        FirewallCollector(),
    ]
    return {collector.category: collector for collector in collectors}


__all__ = [
    "AddressCollector",
    "CertificateAuthorityCollector",
    "CollectionContext",
    "Collector",
    "DirectoryCollector",
    "FirewallCollector",
    "HostInventoryCollector",
    "NamingCollector",
    "assign_fsmo_roles",
    "default_collectors",
    "derive_vpn_tunnels",
    "merge_zones",
    "scope_utilization",
]

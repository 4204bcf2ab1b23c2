"""
Directory controller collector.

Queries domain and forest metadata, the controller list and FSMO holders
from one domain controller via PowerShell (ActiveDirectory module), plus
OU, GPO and trust sub-queries that degrade independently.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .._types import TargetCategory
from ..errors import ProtocolError
from ..models import DirectoryPayload, DomainController, DomainTrust, Target
from ..sessions import Session
from ..transport import PowerShellQuery
from .base import CollectionContext, Collector, as_int, as_list, as_str

logger = logging.getLogger(__name__)

FSMO_ROLES = (
    "SchemaMaster",
    "DomainNamingMaster",
    "PDCEmulator",
    "RIDMaster",
    "InfrastructureMaster",
)

DOMAIN_SCRIPT = '''
Import-Module ActiveDirectory -ErrorAction Stop

$domain = Get-ADDomain
$forest = Get-ADForest
$controllers = Get-ADDomainController -Filter *

$result = @{
    Domain = @{
        DNSRoot = $domain.DNSRoot
        NetBIOSName = $domain.NetBIOSName
        DistinguishedName = $domain.DistinguishedName
        DomainMode = $domain.DomainMode.ToString()
        PDCEmulator = $domain.PDCEmulator
        RIDMaster = $domain.RIDMaster
        InfrastructureMaster = $domain.InfrastructureMaster
    }
    Forest = @{
        Name = $forest.Name
        ForestMode = $forest.ForestMode.ToString()
        SchemaMaster = $forest.SchemaMaster
        DomainNamingMaster = $forest.DomainNamingMaster
        Sites = @($forest.Sites)
    }
    Controllers = @($controllers | ForEach-Object {
        @{
            HostName = $_.HostName
            Site = $_.Site
            IPv4Address = $_.IPv4Address
            OperatingSystem = $_.OperatingSystem
            IsGlobalCatalog = $_.IsGlobalCatalog
            IsReadOnly = $_.IsReadOnly
        }
    })
}

$result | ConvertTo-Json -Depth 4
'''

OU_COUNT_SCRIPT = '''
Import-Module ActiveDirectory -ErrorAction Stop
@{ Count = @(Get-ADOrganizationalUnit -Filter *).Count } | ConvertTo-Json
'''

GPO_COUNT_SCRIPT = '''
Import-Module GroupPolicy -ErrorAction Stop
@{ Count = @(Get-GPO -All).Count } | ConvertTo-Json
'''

TRUSTS_SCRIPT = '''
Import-Module ActiveDirectory -ErrorAction Stop
@(Get-ADTrust -Filter * | ForEach-Object {
    @{
        Name = $_.Name
        Direction = $_.Direction.ToString()
        TrustType = $_.TrustType.ToString()
        ForestTransitive = $_.ForestTransitive
    }
}) | ConvertTo-Json -Depth 3
'''


def _short_name(host: str) -> str:
    return host.split(".")[0].lower()


def assign_fsmo_roles(
    controllers: List[DomainController],
    fsmo_roles: Dict[str, str],
) -> List[DomainController]:
    """
    Attach the FSMO roles each controller holds.

    Holders are matched on FQDN, falling back to the short host name when
    the holder was reported unqualified.
    """
    assigned = []
    for controller in controllers:
        roles = [
            role
            for role in FSMO_ROLES
            if role in fsmo_roles
            and (
                fsmo_roles[role].lower() == controller.host_name.lower()
                or _short_name(fsmo_roles[role]) == _short_name(controller.host_name)
            )
        ]
        assigned.append(controller.model_copy(update={"roles": roles}))
    return assigned


class DirectoryCollector(Collector):
    category = TargetCategory.DIRECTORY_CONTROLLER

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> DirectoryPayload:
        data = await self._query(target, session, PowerShellQuery(DOMAIN_SCRIPT), ctx)
        if not isinstance(data, dict) or not isinstance(data.get("Domain"), dict):
            raise ProtocolError(f"Unexpected domain response from {target.address}")

        domain = data["Domain"]
        forest = data.get("Forest") or {}
        degraded: List[str] = []

        fsmo_roles = {}
        for role in FSMO_ROLES:
            holder = domain.get(role) or forest.get(role)
            if holder:
                fsmo_roles[role] = str(holder)

        controllers = [self._controller(entry) for entry in as_list(data.get("Controllers")) if isinstance(entry, dict)]
        controllers = assign_fsmo_roles(controllers, fsmo_roles)

        ou_data = await self._sub_query(target, session, PowerShellQuery(OU_COUNT_SCRIPT), ctx, "ou_count", degraded)
        gpo_data = await self._sub_query(target, session, PowerShellQuery(GPO_COUNT_SCRIPT), ctx, "gpo_count", degraded)
        trust_data = await self._sub_query(target, session, PowerShellQuery(TRUSTS_SCRIPT), ctx, "trusts", degraded)

        trusts = [
            DomainTrust(
                name=str(entry.get("Name")),
                direction=as_str(entry.get("Direction")),
                trust_type=as_str(entry.get("TrustType")),
                forest_transitive=bool(entry.get("ForestTransitive")),
            )
            for entry in as_list(trust_data)
            if isinstance(entry, dict) and entry.get("Name")
        ]

        sites = [str(s) for s in as_list(forest.get("Sites")) if s]
        if not sites:
            sites = sorted({c.site for c in controllers if c.site})

        logger.info(
            f"Directory {domain.get('DNSRoot')}: {len(controllers)} controllers, "
            f"{len(sites)} sites, {len(trusts)} trusts"
        )

        return DirectoryPayload(
            domain_name=str(domain.get("DNSRoot") or target.address),
            netbios_name=as_str(domain.get("NetBIOSName")),
            distinguished_name=as_str(domain.get("DistinguishedName")),
            domain_mode=as_str(domain.get("DomainMode")),
            forest_name=as_str(forest.get("Name")),
            forest_mode=as_str(forest.get("ForestMode")),
            controllers=controllers,
            fsmo_roles=fsmo_roles,
            sites=sites,
            ou_count=as_int(ou_data.get("Count")) if isinstance(ou_data, dict) else None,
            gpo_count=as_int(gpo_data.get("Count")) if isinstance(gpo_data, dict) else None,
            trusts=trusts,
            degraded_sections=degraded,
        )

    @staticmethod
    def _controller(entry: Dict[str, Any]) -> DomainController:
        return DomainController(
            host_name=str(entry.get("HostName") or ""),
            site=as_str(entry.get("Site")),
            ip_address=as_str(entry.get("IPv4Address")),
            operating_system=as_str(entry.get("OperatingSystem")),
            is_global_catalog=bool(entry.get("IsGlobalCatalog")),
            is_read_only=bool(entry.get("IsReadOnly")),
        )

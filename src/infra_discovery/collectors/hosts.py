"""
Generic host inventory collector.

Enumerates computer objects from the directory over LDAP, then probes each
host: TCP liveness on the WinRM port and, when the port answers, a
PowerShell query for installed roles and hardware. A host that is
inventoried but unreachable stays in the inventory with online=False.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .._types import TargetCategory
from ..errors import ProtocolError
from ..models import HostInventoryPayload, HostRecord, Target
from ..sessions import Session
from ..transport import LdapSearch, PowerShellQuery, TcpConnect
from .base import CollectionContext, Collector, as_int, as_list, as_str, first_value

logger = logging.getLogger(__name__)

HOST_ATTRIBUTES = (
    "cn",
    "dNSHostName",
    "operatingSystem",
    "operatingSystemVersion",
    "distinguishedName",
    "userAccountControl",
)

# userAccountControl ACCOUNTDISABLE
UAC_ACCOUNT_DISABLE = 0x0002

HOST_DETAIL_SCRIPT = '''
$os = Get-CimInstance Win32_OperatingSystem
$cs = Get-CimInstance Win32_ComputerSystem
$disks = @(Get-CimInstance Win32_LogicalDisk -Filter "DriveType=3")
$roles = @()
if (Get-Command Get-WindowsFeature -ErrorAction SilentlyContinue) {
    $roles = @(Get-WindowsFeature | Where-Object { $_.Installed -and $_.FeatureType -eq "Role" } | ForEach-Object { $_.Name })
}
@{
    Roles = $roles
    CpuCores = $cs.NumberOfLogicalProcessors
    MemoryGB = [math]::Round($cs.TotalPhysicalMemory / 1GB, 2)
    DiskTotalGB = [math]::Round((($disks | Measure-Object -Property Size -Sum).Sum) / 1GB, 2)
    DiskFreeGB = [math]::Round((($disks | Measure-Object -Property FreeSpace -Sum).Sum) / 1GB, 2)
    LastBoot = $os.LastBootUpTime.ToString("o")
} | ConvertTo-Json -Depth 3
'''


def ou_path_from_dn(dn: Optional[str]) -> Optional[str]:
    """CN=WEB01,OU=Servers,OU=HQ,DC=contoso,DC=local -> HQ/Servers"""
    if not dn:
        return None
    ous = [part[3:] for part in dn.split(",") if part.strip().upper().startswith("OU=")]
    if not ous:
        return None
    return "/".join(reversed(ous))


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def host_from_entry(entry: Dict[str, Any]) -> Optional[HostRecord]:
    """Build an inventory record from one LDAP computer entry."""
    hostname = as_str(first_value(entry.get("cn")))
    if not hostname:
        return None

    uac = as_int(first_value(entry.get("userAccountControl"))) or 0
    return HostRecord(
        hostname=hostname,
        fqdn=as_str(first_value(entry.get("dNSHostName"))),
        os_name=as_str(first_value(entry.get("operatingSystem"))),
        os_version=as_str(first_value(entry.get("operatingSystemVersion"))),
        ou_path=ou_path_from_dn(as_str(first_value(entry.get("distinguishedName"))) or entry.get("dn")),
        enabled=not (uac & UAC_ACCOUNT_DISABLE),
    )


class HostInventoryCollector(Collector):
    category = TargetCategory.GENERIC_HOST

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> HostInventoryPayload:
        search = LdapSearch(
            search_filter=ctx.settings.host_filter,
            attributes=HOST_ATTRIBUTES,
            base_dn=ctx.settings.directory_base_dn,
        )
        data = await self._query(target, session, search, ctx)
        if not isinstance(data, list):
            raise ProtocolError(f"Unexpected LDAP response from {target.address}")

        inventory = [host for host in (host_from_entry(e) for e in data if isinstance(e, dict)) if host]
        logger.info(f"Host inventory from {target.name}: {len(inventory)} computers")

        semaphore = asyncio.Semaphore(ctx.settings.host_probe_concurrency)

        async def probe_one(host: HostRecord) -> HostRecord:
            async with semaphore:
                return await self._probe_host(host, target, session, ctx)

        hosts = await asyncio.gather(*(probe_one(host) for host in inventory))

        online = sum(1 for h in hosts if h.online)
        logger.info(f"Host inventory from {target.name}: {online}/{len(hosts)} online")

        return HostInventoryPayload(source=target.address, hosts=list(hosts))

    async def _probe_host(
        self,
        host: HostRecord,
        source: Target,
        session: Session,
        ctx: CollectionContext,
    ) -> HostRecord:
        """Liveness then detail probe for one inventoried host. Never fails."""
        host_target = Target(
            category=TargetCategory.GENERIC_HOST,
            address=host.fqdn or host.hostname,
            display_name=host.hostname,
            credential_ref=source.credential_ref,
        )

        liveness = await ctx.transport.probe(
            host_target,
            session,
            TcpConnect(ctx.settings.host_probe_port),
            ctx.timeout,
        )
        if not liveness.ok:
            logger.debug(f"{host.hostname} unreachable: {liveness.detail}")
            return host.model_copy(update={
                "online": False,
                "probe_error": f"{liveness.reason.value}: {liveness.detail}",
            })

        detail = await ctx.transport.probe(host_target, session, PowerShellQuery(HOST_DETAIL_SCRIPT), ctx.timeout)
        if not detail.ok or not isinstance(detail.payload.data, dict):
            reason = detail.reason.value if detail.reason else "protocol_error"
            return host.model_copy(update={
                "online": True,
                "probe_error": f"{reason}: {detail.detail or 'unexpected detail response'}",
            })

        info = detail.payload.data
        return host.model_copy(update={
            "online": True,
            "roles": [str(r) for r in as_list(info.get("Roles")) if r],
            "cpu_cores": as_int(info.get("CpuCores")),
            "memory_gb": _as_float(info.get("MemoryGB")),
            "disk_total_gb": _as_float(info.get("DiskTotalGB")),
            "disk_free_gb": _as_float(info.get("DiskFreeGB")),
            "last_boot": as_str(info.get("LastBoot")),
        })

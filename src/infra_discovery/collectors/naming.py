"""
Name server collector.

Reads the zone list from one DNS server, then record counts by type and
the forwarder list as sub-queries. merge_zones() collapses zones that
several servers report into one entry per zone name.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .._types import TargetCategory
from ..errors import ProtocolError
from ..models import DnsZone, NamingPayload, Target
from ..sessions import Session
from ..transport import PowerShellQuery
from .base import CollectionContext, Collector, as_int, as_list, as_str

logger = logging.getLogger(__name__)

ZONES_SCRIPT = '''
Import-Module DnsServer -ErrorAction Stop
@(Get-DnsServerZone | Where-Object { -not $_.IsAutoCreated } | ForEach-Object {
    @{
        ZoneName = $_.ZoneName
        ZoneType = $_.ZoneType
        IsDsIntegrated = $_.IsDsIntegrated
        IsReverseLookupZone = $_.IsReverseLookupZone
        DynamicUpdate = $_.DynamicUpdate.ToString()
    }
}) | ConvertTo-Json -Depth 3
'''

RECORD_COUNTS_SCRIPT = '''
Import-Module DnsServer -ErrorAction Stop
$result = @()
foreach ($zone in Get-DnsServerZone | Where-Object { -not $_.IsAutoCreated }) {
    Get-DnsServerResourceRecord -ZoneName $zone.ZoneName -ErrorAction SilentlyContinue |
        Group-Object RecordType | ForEach-Object {
            $result += @{ ZoneName = $zone.ZoneName; RecordType = $_.Name; Count = $_.Count }
        }
}
$result | ConvertTo-Json -Depth 3
'''

FORWARDERS_SCRIPT = '''
Import-Module DnsServer -ErrorAction Stop
@((Get-DnsServerForwarder).IPAddress | ForEach-Object { $_.IPAddressToString }) | ConvertTo-Json
'''


def merge_zones(zone_lists: Iterable[List[DnsZone]]) -> List[DnsZone]:
    """
    Merge zones reported by several servers.

    Zone identity is the case-insensitive zone name. The first record seen
    for a name is kept and its server list becomes the union of all servers
    that reported it, in first-seen order.
    """
    merged: Dict[str, DnsZone] = {}
    servers: Dict[str, List[str]] = {}

    for zones in zone_lists:
        for zone in zones:
            key = zone.name.rstrip(".").lower()
            if key not in merged:
                merged[key] = zone
                servers[key] = []
            for server in zone.servers:
                if server.lower() not in (s.lower() for s in servers[key]):
                    servers[key].append(server)

    return [zone.model_copy(update={"servers": servers[key]}) for key, zone in merged.items()]


class NamingCollector(Collector):
    category = TargetCategory.NAME_SERVER

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> NamingPayload:
        data = await self._query(target, session, PowerShellQuery(ZONES_SCRIPT), ctx)
        entries = [e for e in as_list(data) if isinstance(e, dict)]
        if data is not None and not entries:
            raise ProtocolError(f"Unexpected zone response from {target.address}")

        degraded: List[str] = []
        counts_data = await self._sub_query(
            target, session, PowerShellQuery(RECORD_COUNTS_SCRIPT), ctx, "record_counts", degraded
        )
        forwarders_data = await self._sub_query(
            target, session, PowerShellQuery(FORWARDERS_SCRIPT), ctx, "forwarders", degraded
        )

        counts: Dict[str, Dict[str, int]] = {}
        for row in as_list(counts_data):
            if not isinstance(row, dict) or not row.get("ZoneName") or not row.get("RecordType"):
                continue
            zone_counts = counts.setdefault(str(row["ZoneName"]).lower(), {})
            zone_counts[str(row["RecordType"])] = as_int(row.get("Count")) or 0

        zones = [
            DnsZone(
                name=str(entry.get("ZoneName")),
                zone_type=as_str(entry.get("ZoneType")),
                ad_integrated=bool(entry.get("IsDsIntegrated")),
                reverse_lookup=bool(entry.get("IsReverseLookupZone")),
                dynamic_update=as_str(entry.get("DynamicUpdate")),
                record_counts=counts.get(str(entry.get("ZoneName")).lower(), {}),
                servers=[target.address],
            )
            for entry in entries
            if entry.get("ZoneName")
        ]

        logger.info(f"Name server {target.name}: {len(zones)} zones")

        return NamingPayload(
            server=target.address,
            zones=zones,
            forwarders=[str(f) for f in as_list(forwarders_data) if f],
            degraded_sections=degraded,
        )

"""
Address server (DHCP) collector.

Scope definitions are the primary query. Per-scope statistics, failover
relationships and server-level options are sub-queries; utilization is
computed here rather than trusted from the server.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .._types import TargetCategory
from ..errors import ProtocolError
from ..models import AddressPayload, DhcpFailover, DhcpOption, DhcpScope, Target
from ..sessions import Session
from ..transport import PowerShellQuery
from .base import CollectionContext, Collector, as_int, as_list, as_str

logger = logging.getLogger(__name__)

SCOPES_SCRIPT = '''
Import-Module DhcpServer -ErrorAction Stop
@(Get-DhcpServerv4Scope | ForEach-Object {
    @{
        ScopeId = $_.ScopeId.IPAddressToString
        Name = $_.Name
        StartRange = $_.StartRange.IPAddressToString
        EndRange = $_.EndRange.IPAddressToString
        SubnetMask = $_.SubnetMask.IPAddressToString
        State = $_.State
        LeaseDuration = $_.LeaseDuration.ToString()
    }
}) | ConvertTo-Json -Depth 3
'''

STATISTICS_SCRIPT = '''
Import-Module DhcpServer -ErrorAction Stop
@(Get-DhcpServerv4ScopeStatistics | ForEach-Object {
    @{
        ScopeId = $_.ScopeId.IPAddressToString
        Free = $_.Free
        InUse = $_.InUse
        Reserved = $_.Reserved
    }
}) | ConvertTo-Json -Depth 3
'''

FAILOVER_SCRIPT = '''
Import-Module DhcpServer -ErrorAction Stop
@(Get-DhcpServerv4Failover -ErrorAction Stop | ForEach-Object {
    @{
        Name = $_.Name
        PartnerServer = $_.PartnerServer
        Mode = $_.Mode.ToString()
        State = $_.State.ToString()
    }
}) | ConvertTo-Json -Depth 3
'''

OPTIONS_SCRIPT = '''
Import-Module DhcpServer -ErrorAction Stop
@(Get-DhcpServerv4OptionValue -ErrorAction Stop | ForEach-Object {
    @{
        OptionId = $_.OptionId
        Name = $_.Name
        Value = @($_.Value)
    }
}) | ConvertTo-Json -Depth 3
'''


def scope_utilization(free: Optional[int], in_use: Optional[int]) -> Optional[float]:
    """Percent of the pool in use: in_use / (free + in_use) * 100, 0 for an empty pool."""
    if free is None or in_use is None:
        return None
    total = free + in_use
    if total <= 0:
        return 0.0
    return round(in_use / total * 100, 2)


class AddressCollector(Collector):
    category = TargetCategory.ADDRESS_SERVER

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> AddressPayload:
        data = await self._query(target, session, PowerShellQuery(SCOPES_SCRIPT), ctx)
        entries = [e for e in as_list(data) if isinstance(e, dict)]
        if data is not None and not entries:
            raise ProtocolError(f"Unexpected scope response from {target.address}")

        degraded: List[str] = []
        stats_data = await self._sub_query(
            target, session, PowerShellQuery(STATISTICS_SCRIPT), ctx, "statistics", degraded
        )
        failover_data = await self._sub_query(
            target, session, PowerShellQuery(FAILOVER_SCRIPT), ctx, "failover", degraded
        )
        options_data = await self._sub_query(
            target, session, PowerShellQuery(OPTIONS_SCRIPT), ctx, "options", degraded
        )

        stats: Dict[str, dict] = {
            str(row["ScopeId"]): row
            for row in as_list(stats_data)
            if isinstance(row, dict) and row.get("ScopeId")
        }

        scopes = []
        for entry in entries:
            scope_id = as_str(entry.get("ScopeId"))
            if not scope_id:
                continue
            row = stats.get(scope_id, {})
            free = as_int(row.get("Free"))
            in_use = as_int(row.get("InUse"))
            scopes.append(DhcpScope(
                scope_id=scope_id,
                server=target.address,
                name=as_str(entry.get("Name")),
                start_range=as_str(entry.get("StartRange")),
                end_range=as_str(entry.get("EndRange")),
                subnet_mask=as_str(entry.get("SubnetMask")),
                state=as_str(entry.get("State")),
                lease_duration=as_str(entry.get("LeaseDuration")),
                free=free,
                in_use=in_use,
                reserved=as_int(row.get("Reserved")),
                utilization_percent=scope_utilization(free, in_use),
            ))

        failover = [
            DhcpFailover(
                name=str(entry["Name"]),
                partner_server=as_str(entry.get("PartnerServer")),
                mode=as_str(entry.get("Mode")),
                state=as_str(entry.get("State")),
            )
            for entry in as_list(failover_data)
            if isinstance(entry, dict) and entry.get("Name")
        ]

        options = []
        for entry in as_list(options_data):
            if not isinstance(entry, dict):
                continue
            option_id = as_int(entry.get("OptionId"))
            if option_id is None:
                continue
            options.append(DhcpOption(
                option_id=option_id,
                name=as_str(entry.get("Name")),
                values=[str(v) for v in as_list(entry.get("Value")) if v is not None],
            ))

        logger.info(
            f"Address server {target.name}: {len(scopes)} scopes, "
            f"{len(failover)} failover relationships, {len(options)} server options"
        )

        return AddressPayload(
            server=target.address,
            scopes=scopes,
            failover=failover,
            options=options,
            degraded_sections=degraded,
        )

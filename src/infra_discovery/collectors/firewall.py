"""
Firewall appliance collector.

Talks to the vendor REST API: a key exchange first, then system info,
interfaces, routes and zones read in parallel. The vendor has no VPN
listing, so tunnels are derived from the interface list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from .._types import TargetCategory
from ..errors import AuthFailure
from ..models import (
    FirewallInterface,
    FirewallPayload,
    FirewallRoute,
    FirewallSystem,
    FirewallZone,
    Target,
    VpnTunnel,
)
from ..sessions import Session
from ..transport import HttpRequest
from .base import CollectionContext, Collector, as_int, as_list, as_str

logger = logging.getLogger(__name__)

TUNNEL_NAME_PREFIX = "tunnel."


def unwrap(data: Any) -> Any:
    """Strip the vendor response envelope: {"result": ...} or {"data": ...}."""
    while isinstance(data, dict) and len(data) <= 2:
        for key in ("result", "data", "entry"):
            if key in data:
                data = data[key]
                break
        else:
            return data
    return data


def derive_vpn_tunnels(
    interfaces: Iterable[FirewallInterface],
    tunnel_types: Iterable[str] = ("tunnel", "vpn", "ipsec"),
) -> List[VpnTunnel]:
    """Interfaces whose type is a tunnel type, or whose name is tunnel.N."""
    types = {t.lower() for t in tunnel_types}
    return [
        VpnTunnel(
            name=interface.name,
            ip_address=interface.ip_address,
            zone=interface.zone,
            status=interface.status,
        )
        for interface in interfaces
        if (interface.type or "").lower() in types
        or interface.name.lower().startswith(TUNNEL_NAME_PREFIX)
    ]


def _interface(entry: Dict[str, Any]) -> Optional[FirewallInterface]:
    name = as_str(entry.get("name"))
    if not name:
        return None
    return FirewallInterface(
        name=name,
        type=as_str(entry.get("type")),
        ip_address=as_str(entry.get("ip") or entry.get("ip_address")),
        zone=as_str(entry.get("zone")),
        status=as_str(entry.get("status") or entry.get("state")),
    )


def _route(entry: Dict[str, Any]) -> Optional[FirewallRoute]:
    destination = as_str(entry.get("destination") or entry.get("dst"))
    if not destination:
        return None
    return FirewallRoute(
        destination=destination,
        gateway=as_str(entry.get("gateway") or entry.get("nexthop")),
        interface=as_str(entry.get("interface")),
        metric=as_int(entry.get("metric")),
    )


def _zone(entry: Dict[str, Any]) -> Optional[FirewallZone]:
    name = as_str(entry.get("name"))
    if not name:
        return None
    return FirewallZone(
        name=name,
        interfaces=[str(i) for i in as_list(entry.get("interfaces")) if i],
    )


class FirewallCollector(Collector):
    category = TargetCategory.FIREWALL_APPLIANCE

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> FirewallPayload:
        api = ctx.firewall
        api_key = await self._exchange_key(target, session, ctx)
        headers = {api.api_key_header: api_key}

        degraded: List[str] = []
        system_data, interface_data, route_data, zone_data = await asyncio.gather(
            self._sub_query(target, session, HttpRequest("GET", api.system_info_path, headers=headers), ctx, "system", degraded),
            self._sub_query(target, session, HttpRequest("GET", api.interfaces_path, headers=headers), ctx, "interfaces", degraded),
            self._sub_query(target, session, HttpRequest("GET", api.routes_path, headers=headers), ctx, "routes", degraded),
            self._sub_query(target, session, HttpRequest("GET", api.zones_path, headers=headers), ctx, "zones", degraded),
        )

        system = None
        system_info = unwrap(system_data)
        if isinstance(system_info, dict):
            system = FirewallSystem(
                hostname=as_str(system_info.get("hostname")),
                model=as_str(system_info.get("model")),
                serial=as_str(system_info.get("serial")),
                version=as_str(system_info.get("version") or system_info.get("sw-version")),
                uptime=as_str(system_info.get("uptime")),
            )

        interfaces = [i for i in (_interface(e) for e in as_list(unwrap(interface_data)) if isinstance(e, dict)) if i]
        routes = [r for r in (_route(e) for e in as_list(unwrap(route_data)) if isinstance(e, dict)) if r]
        zones = [z for z in (_zone(e) for e in as_list(unwrap(zone_data)) if isinstance(e, dict)) if z]
        tunnels = derive_vpn_tunnels(interfaces, api.tunnel_interface_types)

        logger.info(
            f"Firewall {target.name}: {len(interfaces)} interfaces, {len(routes)} routes, "
            f"{len(zones)} zones, {len(tunnels)} VPN tunnels"
        )

        return FirewallPayload(
            system=system,
            interfaces=interfaces,
            routes=routes,
            zones=zones,
            vpn_tunnels=tunnels,
            # gather completes sub-queries in any order
            degraded_sections=sorted(degraded),
        )

    async def _exchange_key(self, target: Target, session: Session, ctx: CollectionContext) -> str:
        """POST credentials to the key endpoint. Failure fails the whole target."""
        request = HttpRequest(
            "POST",
            ctx.firewall.keygen_path,
            json_body={"username": session.principal, "password": session.secret},
        )
        data = unwrap(await self._query(target, session, request, ctx))
        key = None
        if isinstance(data, dict):
            key = data.get("key") or data.get("api_key") or data.get("token")
        elif isinstance(data, str):
            key = data

        if not key:
            raise AuthFailure(f"Key exchange with {target.address} returned no API key")
        return str(key)

"""
Base class for category collectors.

A collector turns a target plus session into one ProbeResult. It issues one
primary query whose failure fails the whole target, and any number of
sub-queries whose failure only degrades that section of the payload.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from .._types import TargetCategory
from ..config import DiscoverySettings, FirewallApiSettings
from ..errors import ProbeError, ProtocolError, error_for_reason
from ..models import ProbeResult, Target
from ..sessions import Session
from ..transport import Operation, RemoteProbeTransport

logger = logging.getLogger(__name__)


@dataclass
class CollectionContext:
    """Per-run state handed to every collector. Discarded when the run ends."""
    transport: RemoteProbeTransport
    environment_id: str
    started_at: datetime
    timeout: float = 60.0
    settings: DiscoverySettings = field(default_factory=DiscoverySettings)
    firewall: FirewallApiSettings = field(default_factory=FirewallApiSettings)


def as_list(data: Any) -> List[Any]:
    """ConvertTo-Json emits a bare object for one item and nothing for none."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


def as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def first_value(value: Any) -> Any:
    """ldap3 returns multi-valued attributes as lists."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class Collector(ABC):
    """Shape one target category into its payload."""

    category: TargetCategory

    async def collect(self, target: Target, session: Session, ctx: CollectionContext) -> ProbeResult:
        """
        Collect one target.

        Returns:
            ProbeResult: OK with the category payload, or FAILED when the
            primary query could not be completed
        """
        start = time.monotonic()
        try:
            payload = await self._collect(target, session, ctx)
        except ProbeError as e:
            logger.warning(f"{self.category.value} collection failed for {target.name}: {e}")
            return ProbeResult.failed(target, e.reason, str(e), time.monotonic() - start)

        if payload.degraded_sections:
            logger.warning(
                f"{self.category.value} collection for {target.name} degraded: "
                f"{', '.join(payload.degraded_sections)}"
            )
        return ProbeResult.succeeded(target, payload, time.monotonic() - start)

    @abstractmethod
    async def _collect(self, target: Target, session: Session, ctx: CollectionContext):
        """Return the category payload or raise ProbeError."""

    async def _query(
        self,
        target: Target,
        session: Session,
        operation: Operation,
        ctx: CollectionContext,
    ) -> Any:
        """Primary query. Any failure fails the whole target."""
        result = await ctx.transport.probe(target, session, operation, ctx.timeout)
        if not result.ok:
            raise error_for_reason(result.reason, result.detail or f"{type(operation).__name__} failed")
        if result.payload is None:
            raise ProtocolError(f"Empty response from {target.address}")
        return result.payload.data

    async def _sub_query(
        self,
        target: Target,
        session: Session,
        operation: Operation,
        ctx: CollectionContext,
        section: str,
        degraded: List[str],
    ) -> Optional[Any]:
        """Secondary query. Failure marks section degraded and returns None."""
        result = await ctx.transport.probe(target, session, operation, ctx.timeout)
        if result.ok and result.payload is not None:
            return result.payload.data

        reason = result.reason.value if result.reason else "empty"
        logger.warning(f"{section} unavailable on {target.name}: {reason} {result.detail or ''}")
        degraded.append(section)
        return None

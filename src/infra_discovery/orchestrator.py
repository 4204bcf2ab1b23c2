"""
Discovery orchestrator.

Fans out one collector call per configured target under a bounded
semaphore, turns every failure into a failed ProbeResult, and builds the
AggregateSnapshot in memory before anything is persisted.

Only two things stop a run: configuration problems (ConfigurationError,
raised before any probing) and a total transport outage where every
probed target was unreachable or timed out (DiscoveryAborted).
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from ._types import CATEGORY_ORDER, TRANSPORT_REASONS, FailureReason, TargetCategory, now_utc
from .collectors import CollectionContext, Collector, default_collectors
from .config import EnvironmentConfig
from .errors import ConfigurationError, DiscoveryAborted, ProbeError
from .models import AggregateSnapshot, ProbeResult, SnapshotRecord, Target
from .scoring import aggregate_zones, compute_summary
from .sessions import SessionProvider
from .snapshot_store import SnapshotStore
from .transport import RemoteProbeTransport

logger = logging.getLogger(__name__)


def build_snapshot(
    config: EnvironmentConfig,
    results: Dict[TargetCategory, List[ProbeResult]],
    created_at: datetime,
) -> AggregateSnapshot:
    """Assemble the snapshot. Summary and zones are derived, never passed in."""
    ordered = {category: list(results.get(category, [])) for category in CATEGORY_ORDER}
    return AggregateSnapshot(
        environment_id=config.environment_id,
        created_at=created_at,
        results=ordered,
        zones=aggregate_zones(ordered),
        summary=compute_summary(ordered, config.scoring),
    )


class DiscoveryOrchestrator:
    """Run discovery for one environment and persist the snapshot."""

    def __init__(
        self,
        config: EnvironmentConfig,
        transport: RemoteProbeTransport,
        session_provider: SessionProvider,
        store: Optional[SnapshotStore] = None,
        collectors: Optional[Dict[TargetCategory, Collector]] = None,
    ):
        self.config = config
        self.transport = transport
        self.session_provider = session_provider
        self.store = store
        self.collectors = collectors if collectors is not None else default_collectors()

    def _planned_targets(self) -> List[Target]:
        if not self.config.targets:
            raise ConfigurationError(f"Environment {self.config.environment_id} has no targets")

        skipped = set(self.config.discovery.skip_categories)
        planned = []
        for category in CATEGORY_ORDER:
            if category in skipped:
                logger.info(f"Skipping {category.value} discovery (disabled)")
                continue
            planned.extend(self.config.targets_for(category))
        return planned

    async def _collect_one(
        self,
        target: Target,
        ctx: CollectionContext,
        semaphore: asyncio.Semaphore,
    ) -> ProbeResult:
        """Per-target isolation boundary. Always returns a result."""
        async with semaphore:
            start = time.monotonic()
            collector = self.collectors.get(target.category)
            if collector is None:
                return ProbeResult.failed(
                    target,
                    FailureReason.PROTOCOL_ERROR,
                    f"No collector for {target.category.value}",
                )

            try:
                session = await self.session_provider.open(target)
                return await collector.collect(target, session, ctx)
            except ProbeError as e:
                logger.warning(f"{target.category.value} {target.name} failed: {e}")
                return ProbeResult.failed(target, e.reason, str(e), time.monotonic() - start)
            except Exception as e:
                logger.exception(f"Unexpected error collecting {target.category.value} {target.name}")
                return ProbeResult.failed(
                    target,
                    FailureReason.PROTOCOL_ERROR,
                    f"{type(e).__name__}: {e}",
                    time.monotonic() - start,
                )

    async def discover(self) -> AggregateSnapshot:
        """
        Probe every planned target and build the snapshot without persisting it.

        Raises:
            ConfigurationError: If the environment lists no targets or the
                credentials source is unusable
            DiscoveryAborted: If every probed target failed at the transport level
        """
        planned = self._planned_targets()
        self.session_provider.validate()
        started_at = now_utc()
        ctx = CollectionContext(
            transport=self.transport,
            environment_id=self.config.environment_id,
            started_at=started_at,
            timeout=self.config.discovery.probe_timeout_seconds,
            settings=self.config.discovery,
            firewall=self.config.firewall,
        )

        logger.info(
            f"Starting discovery for {self.config.environment_id}: {len(planned)} targets, "
            f"concurrency {self.config.discovery.max_concurrency}"
        )

        semaphore = asyncio.Semaphore(self.config.discovery.max_concurrency)
        outcomes = await asyncio.gather(*(self._collect_one(t, ctx, semaphore) for t in planned))

        # gather keeps input order, so each category stays in config order
        results: Dict[TargetCategory, List[ProbeResult]] = {c: [] for c in CATEGORY_ORDER}
        for result in outcomes:
            results[result.target.category].append(result)

        if outcomes and all(not r.ok and r.reason in TRANSPORT_REASONS for r in outcomes):
            raise DiscoveryAborted(
                f"All {len(outcomes)} targets in {self.config.environment_id} unreachable; "
                f"no snapshot written"
            )

        snapshot = build_snapshot(self.config, results, now_utc())
        summary = snapshot.summary
        logger.info(
            f"Discovery for {self.config.environment_id} finished in "
            f"{(snapshot.created_at - started_at).total_seconds():.1f}s: "
            f"{summary.target_count - summary.failed_target_count}/{summary.target_count} targets ok, "
            f"score {summary.security_score}"
        )
        return snapshot

    async def run(self, triggered_by: str = "manual") -> SnapshotRecord:
        """
        Discover and persist one snapshot.

        Nothing is written if the run is cancelled or aborted before the
        snapshot is complete.
        """
        if self.store is None:
            raise ConfigurationError("No snapshot store configured")

        logger.info(f"Discovery run for {self.config.environment_id} triggered by {triggered_by}")
        snapshot = await self.discover()
        return self.store.write(snapshot)

"""
Health monitor for watched hosts.

Each tick probes every watched target with a TCP connect, runs the result
through a per-host state machine with failure-count hysteresis, persists
the state, and only then sends the alerts that transitions produced.

State machine (per host):
    success: failures reset, status ONLINE. If the host was OFFLINE with a
             down alert sent and no recovery alert yet, emit RECOVERY.
    failure: failures += 1, status OFFLINE. Once failures reach the
             threshold and no down alert was sent this episode, emit DOWN
             and arm recovery detection.

Alerts depend on the transition, not the steady state, so repeated ticks
in the same state never re-alert.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ._types import AlertKind, HostStatus, now_utc
from .config import EnvironmentConfig
from .models import ProbeResult, Target
from .sessions import ANONYMOUS
from .snapshot_store import atomic_write
from .transport import RemoteProbeTransport, TcpConnect

logger = logging.getLogger(__name__)


class HostHealthState(BaseModel):
    """Persisted hysteresis state for one watched host."""

    model_config = ConfigDict(frozen=True)

    host: str
    display_name: str = ""
    consecutive_failures: int = Field(default=0, ge=0)
    last_status: HostStatus = HostStatus.UNKNOWN
    last_status_changed_at: Optional[datetime] = None
    last_probe_at: Optional[datetime] = None
    last_error: Optional[str] = None
    down_alert_sent: bool = False
    recovery_alert_sent: bool = False


class HealthAlert(BaseModel):
    """Down or recovery notification for one host."""

    model_config = ConfigDict(frozen=True)

    kind: AlertKind
    environment_id: str = ""
    host: str
    display_name: str = ""
    consecutive_failures: int = 0
    status_changed_at: Optional[datetime] = None
    occurred_at: datetime
    detail: Optional[str] = None


def apply_probe(
    state: HostHealthState,
    success: bool,
    now: datetime,
    threshold: int,
    detail: Optional[str] = None,
) -> Tuple[HostHealthState, Optional[HealthAlert]]:
    """
    Apply one probe outcome to a host's state.

    Pure: returns the new state and the alert the transition emits, if any.
    """
    previous = state.last_status

    if success:
        alert = None
        recovery_sent = state.recovery_alert_sent
        if previous == HostStatus.OFFLINE and state.down_alert_sent and not state.recovery_alert_sent:
            alert = HealthAlert(
                kind=AlertKind.RECOVERY,
                host=state.host,
                display_name=state.display_name,
                consecutive_failures=state.consecutive_failures,
                status_changed_at=state.last_status_changed_at,
                occurred_at=now,
            )
            recovery_sent = True

        new_state = state.model_copy(update={
            "consecutive_failures": 0,
            "last_status": HostStatus.ONLINE,
            "last_status_changed_at": now if previous != HostStatus.ONLINE else state.last_status_changed_at,
            "last_probe_at": now,
            "last_error": None,
            "down_alert_sent": False,
            "recovery_alert_sent": recovery_sent,
        })
        return new_state, alert

    failures = state.consecutive_failures + 1
    changed_at = now if previous != HostStatus.OFFLINE else state.last_status_changed_at
    update = {
        "consecutive_failures": failures,
        "last_status": HostStatus.OFFLINE,
        "last_status_changed_at": changed_at,
        "last_probe_at": now,
        "last_error": detail,
    }

    alert = None
    if failures >= threshold and not state.down_alert_sent:
        alert = HealthAlert(
            kind=AlertKind.DOWN,
            host=state.host,
            display_name=state.display_name,
            consecutive_failures=failures,
            status_changed_at=changed_at,
            occurred_at=now,
            detail=detail,
        )
        update["down_alert_sent"] = True
        update["recovery_alert_sent"] = False

    return state.model_copy(update=update), alert


# ============================================================================
# Persistence
# ============================================================================


class _HealthStateFile(BaseModel):
    environment_id: str
    updated_at: Optional[datetime] = None
    hosts: Dict[str, HostHealthState] = Field(default_factory=dict)


class HealthStateStore:
    """One JSON file per environment: <state_dir>/<environment_id>-health.json"""

    def __init__(self, state_dir: Path, environment_id: str):
        self.environment_id = environment_id
        self.path = Path(state_dir) / f"{environment_id}-health.json"

    def load(self) -> Dict[str, HostHealthState]:
        """Load host states. A missing or corrupt file yields an empty map."""
        if not self.path.exists():
            return {}
        try:
            data = _HealthStateFile.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Corrupt health state {self.path}, starting fresh: {e}")
            return {}
        return dict(data.hosts)

    def save(self, states: Dict[str, HostHealthState]) -> None:
        data = _HealthStateFile(
            environment_id=self.environment_id,
            updated_at=now_utc(),
            hosts=states,
        )
        atomic_write(self.path, data.model_dump_json(indent=2).encode("utf-8"))

    def forget(self, host: str) -> bool:
        """Operator removal of a host's state. Returns True if it existed."""
        states = self.load()
        if states.pop(host.lower(), None) is None:
            return False
        self.save(states)
        logger.info(f"Forgot health state for {host}")
        return True


# ============================================================================
# Notification sinks
# ============================================================================


class NotificationSink(Protocol):
    async def send(self, alert: HealthAlert) -> None:
        ...


class LoggingNotificationSink:
    """Write alerts to the log."""

    async def send(self, alert: HealthAlert) -> None:
        name = alert.display_name or alert.host
        if alert.kind == AlertKind.DOWN:
            logger.error(
                f"DOWN: {name} ({alert.host}) failed {alert.consecutive_failures} consecutive probes"
                f"{': ' + alert.detail if alert.detail else ''}"
            )
        else:
            logger.warning(f"RECOVERED: {name} ({alert.host}) is reachable again")


class WebhookNotificationSink:
    """POST alerts as JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def send(self, alert: HealthAlert) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                headers={"Content-Type": "application/json"},
                json=alert.model_dump(mode="json"),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                resp.raise_for_status()
        logger.debug(f"Webhook accepted {alert.kind.value} alert for {alert.host}")


# ============================================================================
# Monitor
# ============================================================================


class HealthMonitor:
    """Periodic liveness checks with debounced down/recovery alerts."""

    def __init__(
        self,
        config: EnvironmentConfig,
        transport: RemoteProbeTransport,
        state_store: HealthStateStore,
        sinks: Optional[Sequence[NotificationSink]] = None,
    ):
        self.config = config
        self.transport = transport
        self.state_store = state_store
        self.sinks = list(sinks) if sinks is not None else [LoggingNotificationSink()]
        self._states: Optional[Dict[str, HostHealthState]] = None
        self._persisted: Dict[str, HostHealthState] = {}

    @property
    def states(self) -> Dict[str, HostHealthState]:
        if self._states is None:
            self._persisted = self.state_store.load()
            self._states = dict(self._persisted)
        return self._states

    def _sync_from_store(self) -> Dict[str, HostHealthState]:
        """Pick up edits made to the state file since our last save (forget-host)."""
        if self._states is None:
            return self.states
        on_disk = self.state_store.load()
        if on_disk != self._persisted:
            logger.info(f"Health state {self.state_store.path} changed on disk, reloading")
            self._states = dict(on_disk)
            self._persisted = on_disk
        return self._states

    async def _probe(self, target: Target) -> ProbeResult:
        port = target.port or self.config.monitor.probe_port
        return await self.transport.probe(
            target,
            ANONYMOUS,
            TcpConnect(port),
            self.config.monitor.probe_timeout_seconds,
        )

    async def tick(self) -> List[HealthAlert]:
        """
        Probe every watched host once.

        Returns:
            Alerts emitted by this tick (already dispatched to the sinks)
        """
        targets = self.config.watched_targets
        if not targets:
            logger.debug("No watched targets")
            return []

        outcomes = await asyncio.gather(*(self._probe(t) for t in targets), return_exceptions=True)
        now = now_utc()
        threshold = self.config.monitor.failure_threshold
        states = self._sync_from_store()
        alerts: List[HealthAlert] = []

        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                success, detail = False, f"{type(outcome).__name__}: {outcome}"
            else:
                success = outcome.ok
                detail = None if outcome.ok else f"{outcome.reason.value}: {outcome.detail}"

            key = target.address.lower()
            state = states.get(key) or HostHealthState(host=target.address, display_name=target.name)
            new_state, alert = apply_probe(state, success, now, threshold, detail)
            states[key] = new_state
            if alert is not None:
                alerts.append(alert.model_copy(update={"environment_id": self.config.environment_id}))

        try:
            self.state_store.save(states)
            self._persisted = dict(states)
        except OSError as e:
            logger.error(f"Failed to persist health state {self.state_store.path}: {e}")

        online = sum(1 for t in targets if states[t.address.lower()].last_status == HostStatus.ONLINE)
        logger.info(f"Health tick for {self.config.environment_id}: {online}/{len(targets)} online, {len(alerts)} alerts")

        for alert in alerts:
            await self._dispatch(alert)
        return alerts

    async def _dispatch(self, alert: HealthAlert) -> None:
        for sink in self.sinks:
            try:
                await sink.send(alert)
            except Exception as e:
                logger.error(f"Notification sink {type(sink).__name__} failed for {alert.host}: {e}")

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Tick every interval_seconds until stop_event is set."""
        interval = self.config.monitor.interval_seconds
        logger.info(f"Health monitor started for {self.config.environment_id} (interval {interval}s)")

        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Health tick failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.info("Health monitor stopped")

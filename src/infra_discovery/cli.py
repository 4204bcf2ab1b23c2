"""
Command line entry point.

    infra-discovery discover --config environment.yaml
    infra-discovery monitor --config environment.yaml [--once]
    infra-discovery show-latest --config environment.yaml
    infra-discovery forget-host --config environment.yaml HOST

Exit status: 0 success, 1 run failure, 2 configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .config import EnvironmentConfig, load_environment
from .errors import ConfigurationError, DiscoveryAborted, SnapshotStoreError
from .health_monitor import (
    HealthMonitor,
    HealthStateStore,
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)
from .orchestrator import DiscoveryOrchestrator
from .sessions import YamlCredentialSessionProvider
from .signing import SnapshotSigner
from .snapshot_store import SnapshotStore
from .transport import RemoteProbeTransport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_store(config: EnvironmentConfig) -> SnapshotStore:
    signer = None
    if config.storage.signing_key_file:
        try:
            signer = SnapshotSigner(config.storage.signing_key_file)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
    return SnapshotStore(config.storage.snapshot_dir, signer=signer)


def build_orchestrator(config: EnvironmentConfig) -> DiscoveryOrchestrator:
    return DiscoveryOrchestrator(
        config=config,
        transport=RemoteProbeTransport(),
        session_provider=YamlCredentialSessionProvider(config.storage.credentials_file),
        store=build_store(config),
    )


def build_monitor(config: EnvironmentConfig) -> HealthMonitor:
    sinks: List[NotificationSink] = [LoggingNotificationSink()]
    if config.monitor.notification_webhook_url:
        sinks.append(WebhookNotificationSink(config.monitor.notification_webhook_url))
    return HealthMonitor(
        config=config,
        transport=RemoteProbeTransport(),
        state_store=HealthStateStore(config.storage.health_state_dir, config.environment_id),
        sinks=sinks,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_discover(config: EnvironmentConfig, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(config)
    try:
        record = asyncio.run(orchestrator.run(triggered_by="cli"))
    except DiscoveryAborted as e:
        logger.error(str(e))
        return EXIT_FAILURE
    except SnapshotStoreError as e:
        logger.error(f"Snapshot not stored: {e}")
        return EXIT_FAILURE

    _print_json({
        "snapshot_id": record.snapshot_id,
        "environment_id": record.environment_id,
        "signed": record.signed,
        "summary": record.snapshot.summary.model_dump(mode="json"),
        "failed_targets": [
            {"category": r.target.category.value, "address": r.target.address, "reason": r.reason.value, "detail": r.detail}
            for r in record.snapshot.failed_results()
        ],
    })
    return EXIT_OK


def cmd_monitor(config: EnvironmentConfig, args: argparse.Namespace) -> int:
    monitor = build_monitor(config)

    if args.once:
        alerts = asyncio.run(monitor.tick())
        _print_json([alert.model_dump(mode="json") for alert in alerts])
        return EXIT_OK

    async def run() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.info("Received shutdown signal")
            stop_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

        await monitor.run_forever(stop_event)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return EXIT_OK


def cmd_show_latest(config: EnvironmentConfig, args: argparse.Namespace) -> int:
    store = SnapshotStore(config.storage.snapshot_dir)
    record = store.latest_record(config.environment_id)
    if record is None:
        logger.error(f"No snapshot stored for {config.environment_id}")
        return EXIT_FAILURE

    if args.full:
        _print_json(record.model_dump(mode="json"))
    else:
        _print_json({
            "snapshot_id": record.snapshot_id,
            "created_at": record.created_at.isoformat(),
            "signed": record.signed,
            "summary": record.snapshot.summary.model_dump(mode="json"),
        })
    return EXIT_OK


def cmd_forget_host(config: EnvironmentConfig, args: argparse.Namespace) -> int:
    store = HealthStateStore(config.storage.health_state_dir, config.environment_id)
    if not store.forget(args.host):
        logger.error(f"No health state for {args.host}")
        return EXIT_FAILURE
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infra-discovery",
        description="Infrastructure discovery and health monitoring",
    )
    parser.add_argument("--config", type=Path, help="Environment config (default: $INFRA_DISCOVERY_CONFIG)")
    parser.add_argument("--log-level", type=str, help="Override configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="Run discovery and store a snapshot")
    discover.set_defaults(func=cmd_discover)

    monitor = subparsers.add_parser("monitor", help="Run the health monitor")
    monitor.add_argument("--once", action="store_true", help="Run a single tick and exit")
    monitor.set_defaults(func=cmd_monitor)

    show = subparsers.add_parser("show-latest", help="Print the latest snapshot summary")
    show.add_argument("--full", action="store_true", help="Print the whole snapshot")
    show.set_defaults(func=cmd_show_latest)

    forget = subparsers.add_parser("forget-host", help="Remove a host's stored health state")
    forget.add_argument("host", help="Host address as configured")
    forget.set_defaults(func=cmd_forget_host)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for infra-discovery."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_environment(args.config)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    log_level = (args.log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return args.func(config, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())

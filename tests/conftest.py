"""
Shared fixtures: a scripted transport and target/config factories.
"""

from datetime import datetime, timezone
from typing import Any, Callable, List, Tuple

import pytest

from infra_discovery._types import FailureReason, TargetCategory
from infra_discovery.collectors import CollectionContext
from infra_discovery.config import DiscoverySettings, EnvironmentConfig, FirewallApiSettings
from infra_discovery.models import ProbeResult, RawPayload, Target
from infra_discovery.sessions import Session, StaticSessionProvider
from infra_discovery.transport import HttpRequest, LdapSearch, PowerShellQuery, TcpConnect

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeTransport:
    """
    Route operations to canned responses.

    A response is either data (returned as an OK RawPayload), a
    FailureReason (returned as a failed probe) or a callable taking
    (target, operation) and returning one of those.
    """

    def __init__(self):
        self.routes: List[Tuple[Callable, Any]] = []
        self.calls: List[Tuple[Target, Any]] = []

    def on(self, predicate: Callable, response: Any) -> "FakeTransport":
        self.routes.append((predicate, response))
        return self

    async def probe(self, target, session, operation, timeout):
        self.calls.append((target, operation))
        for predicate, response in self.routes:
            if predicate(target, operation):
                if callable(response):
                    response = response(target, operation)
                if isinstance(response, FailureReason):
                    return ProbeResult.failed(target, response, f"scripted {response.value}")
                return ProbeResult.succeeded(target, RawPayload(data=response))
        return ProbeResult.failed(target, FailureReason.UNREACHABLE, "no scripted route")


def ps(text: str, address: str = None) -> Callable:
    """Match a PowerShell query whose script contains text."""
    def predicate(target, operation):
        if address is not None and target.address != address:
            return False
        return isinstance(operation, PowerShellQuery) and text in operation.script
    return predicate


def ldap(text: str) -> Callable:
    def predicate(target, operation):
        return isinstance(operation, LdapSearch) and text in operation.search_filter
    return predicate


def http(path: str) -> Callable:
    def predicate(target, operation):
        return isinstance(operation, HttpRequest) and operation.path == path
    return predicate


def tcp(address: str = None) -> Callable:
    def predicate(target, operation):
        if address is not None and target.address != address:
            return False
        return isinstance(operation, TcpConnect)
    return predicate


def make_target(category=TargetCategory.GENERIC_HOST, address="host1.contoso.local", **kwargs) -> Target:
    return Target(category=category, address=address, credential_ref=kwargs.pop("credential_ref", "admin"), **kwargs)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def session():
    return Session(principal="CONTOSO\\svc-discovery", secret="hunter2")


@pytest.fixture
def session_provider(session):
    return StaticSessionProvider({"admin": session}, default=session)


@pytest.fixture
def ctx(transport):
    return CollectionContext(
        transport=transport,
        environment_id="contoso",
        started_at=FIXED_NOW,
        timeout=5.0,
        settings=DiscoverySettings(),
        firewall=FirewallApiSettings(),
    )


@pytest.fixture
def env_config(tmp_path):
    return EnvironmentConfig(
        environment_id="contoso",
        targets=[
            make_target(TargetCategory.DIRECTORY_CONTROLLER, "dc1.contoso.local", watched=True),
            make_target(TargetCategory.FIREWALL_APPLIANCE, "10.0.0.1", port=443, watched=True),
        ],
        storage={"state_dir": str(tmp_path)},
    )

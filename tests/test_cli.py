"""
Tests for the command line entry point.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from infra_discovery import cli
from infra_discovery._types import FailureReason
from infra_discovery.errors import DiscoveryAborted
from infra_discovery.health_monitor import HealthStateStore, HostHealthState
from infra_discovery.snapshot_store import SnapshotStore

from conftest import FakeTransport, ldap, tcp


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "environment.yaml"
    path.write_text(yaml.safe_dump({
        "environment_id": "contoso",
        "targets": [
            {"category": "certificate_authority", "address": "dc1.contoso.local", "watched": True},
        ],
        "storage": {"state_dir": str(tmp_path / "state")},
    }))
    return path


@pytest.fixture
def fake_transport():
    transport = FakeTransport()
    transport.on(ldap("pKIEnrollmentService"), [])
    transport.on(tcp(), FailureReason.UNREACHABLE)
    with patch("infra_discovery.cli.RemoteProbeTransport", return_value=transport):
        yield transport


class TestMain:
    """Test commands and exit codes."""

    def test_missing_config(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "absent.yaml"), "show-latest"]) == cli.EXIT_CONFIG_ERROR

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "environment.yaml"
        path.write_text(yaml.safe_dump({"environment_id": "contoso", "targets": []}))
        assert cli.main(["--config", str(path), "discover"]) == cli.EXIT_CONFIG_ERROR

    def test_command_required(self, config_file):
        with pytest.raises(SystemExit):
            cli.main(["--config", str(config_file)])

    def test_show_latest_empty(self, config_file):
        assert cli.main(["--config", str(config_file), "show-latest"]) == cli.EXIT_FAILURE

    def test_discover_then_show_latest(self, config_file, fake_transport, capsys):
        assert cli.main(["--config", str(config_file), "discover"]) == cli.EXIT_OK
        discovered = json.loads(capsys.readouterr().out)
        assert discovered["environment_id"] == "contoso"
        assert discovered["summary"]["has_pki"] is False
        assert discovered["failed_targets"] == []

        assert cli.main(["--config", str(config_file), "show-latest"]) == cli.EXIT_OK
        latest = json.loads(capsys.readouterr().out)
        assert latest["snapshot_id"] == discovered["snapshot_id"]

    def test_show_latest_full(self, config_file, fake_transport, capsys):
        cli.main(["--config", str(config_file), "discover"])
        capsys.readouterr()

        assert cli.main(["--config", str(config_file), "show-latest", "--full"]) == cli.EXIT_OK
        full = json.loads(capsys.readouterr().out)
        assert full["snapshot"]["environment_id"] == "contoso"
        assert "certificate_authority" in full["snapshot"]["results"]

    def test_discover_aborted(self, config_file):
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=DiscoveryAborted("all targets unreachable"))
        with patch("infra_discovery.cli.build_orchestrator", return_value=orchestrator):
            assert cli.main(["--config", str(config_file), "discover"]) == cli.EXIT_FAILURE

    def test_bad_signing_key_is_config_error(self, config_file, tmp_path):
        data = yaml.safe_load(config_file.read_text())
        key = tmp_path / "signing.key"
        key.write_bytes(b"not a key")
        data["storage"]["signing_key_file"] = str(key)
        config_file.write_text(yaml.safe_dump(data))

        assert cli.main(["--config", str(config_file), "discover"]) == cli.EXIT_CONFIG_ERROR

    def test_monitor_once(self, config_file, fake_transport, capsys):
        assert cli.main(["--config", str(config_file), "monitor", "--once"]) == cli.EXIT_OK
        assert json.loads(capsys.readouterr().out) == []

        store = HealthStateStore(config_file.parent / "state" / "health", "contoso")
        assert store.load()["dc1.contoso.local"].consecutive_failures == 1

    def test_forget_host(self, config_file):
        store = HealthStateStore(config_file.parent / "state" / "health", "contoso")
        store.save({"dc1.contoso.local": HostHealthState(host="dc1.contoso.local")})

        assert cli.main(["--config", str(config_file), "forget-host", "dc1.contoso.local"]) == cli.EXIT_OK
        assert cli.main(["--config", str(config_file), "forget-host", "dc1.contoso.local"]) == cli.EXIT_FAILURE

    def test_discover_writes_through_store(self, config_file, fake_transport, capsys):
        cli.main(["--config", str(config_file), "discover"])
        discovered = json.loads(capsys.readouterr().out)

        store = SnapshotStore(config_file.parent / "state" / "snapshots")
        assert store.list_snapshots("contoso") == [discovered["snapshot_id"]]

    def test_malformed_credentials_is_config_error(self, config_file, fake_transport):
        credentials = config_file.parent / "state" / "credentials.yaml"
        credentials.parent.mkdir(parents=True, exist_ok=True)
        credentials.write_text("- not a mapping\n")

        assert cli.main(["--config", str(config_file), "discover"]) == cli.EXIT_CONFIG_ERROR
        assert fake_transport.calls == []

"""
Tests for session providers.
"""

import pytest
import yaml

from infra_discovery._types import TargetCategory
from infra_discovery.errors import AuthFailure, ConfigurationError
from infra_discovery.sessions import ANONYMOUS, Session, StaticSessionProvider, YamlCredentialSessionProvider

from conftest import make_target


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "credentials.yaml"
    path.write_text(yaml.safe_dump({
        "domain-admin": {"domain": "CONTOSO", "username": "svc-discovery", "password": "s3cret"},
        "upn-user": {"domain": "CONTOSO", "username": "reader@contoso.local", "password": "pw"},
        "firewall-api": {"username": "api", "password": "pw", "use_ssl": True, "verify_ssl": False},
        "env-password": {"username": "svc", "password_env": "TEST_DISCOVERY_PASSWORD"},
        "no-password": {"username": "svc"},
    }))
    path.chmod(0o600)
    return path


class TestSession:
    def test_secret_hidden_from_repr(self):
        session = Session(principal="CONTOSO\\svc", secret="hunter2")
        assert "hunter2" not in repr(session)
        assert "CONTOSO" in repr(session)

    def test_anonymous(self):
        assert not ANONYMOUS.has_credential


class TestYamlCredentialSessionProvider:
    """Test credential_ref resolution."""

    @pytest.mark.asyncio
    async def test_domain_principal(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        session = await provider.open(make_target(credential_ref="domain-admin"))
        assert session.principal == "CONTOSO\\svc-discovery"
        assert session.secret == "s3cret"
        assert session.transport == "ntlm"

    @pytest.mark.asyncio
    async def test_upn_kept_as_is(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        session = await provider.open(make_target(credential_ref="upn-user"))
        assert session.principal == "reader@contoso.local"

    @pytest.mark.asyncio
    async def test_ssl_flags(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        session = await provider.open(make_target(TargetCategory.FIREWALL_APPLIANCE, "10.0.0.1", credential_ref="firewall-api"))
        assert session.use_ssl is True
        assert session.verify_ssl is False

    @pytest.mark.asyncio
    async def test_password_from_environment(self, credentials_file, monkeypatch):
        monkeypatch.setenv("TEST_DISCOVERY_PASSWORD", "from-env")
        provider = YamlCredentialSessionProvider(credentials_file)
        session = await provider.open(make_target(credential_ref="env-password"))
        assert session.secret == "from-env"

    @pytest.mark.asyncio
    async def test_unknown_ref(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        with pytest.raises(AuthFailure):
            await provider.open(make_target(credential_ref="nope"))

    @pytest.mark.asyncio
    async def test_missing_password(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        with pytest.raises(AuthFailure):
            await provider.open(make_target(credential_ref="no-password"))

    @pytest.mark.asyncio
    async def test_no_ref_is_anonymous(self, credentials_file):
        provider = YamlCredentialSessionProvider(credentials_file)
        assert await provider.open(make_target(credential_ref=None)) is ANONYMOUS

    @pytest.mark.asyncio
    async def test_missing_file_means_no_credentials(self, tmp_path):
        provider = YamlCredentialSessionProvider(tmp_path / "absent.yaml")
        with pytest.raises(AuthFailure):
            await provider.open(make_target(credential_ref="domain-admin"))

    @pytest.mark.asyncio
    async def test_malformed_file(self, tmp_path):
        path = tmp_path / "credentials.yaml"
        path.write_text("key: [unclosed")
        provider = YamlCredentialSessionProvider(path)
        with pytest.raises(ConfigurationError):
            await provider.open(make_target(credential_ref="domain-admin"))

    def test_validate_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "credentials.yaml"
        path.write_text("- domain-admin\n")
        with pytest.raises(ConfigurationError):
            YamlCredentialSessionProvider(path).validate()

    def test_validate_accepts_missing_file(self, tmp_path):
        YamlCredentialSessionProvider(tmp_path / "absent.yaml").validate()


class TestStaticSessionProvider:
    @pytest.mark.asyncio
    async def test_lookup_and_default(self):
        admin = Session(principal="a", secret="b")
        provider = StaticSessionProvider({"admin": admin})
        assert await provider.open(make_target(credential_ref="admin")) is admin
        with pytest.raises(AuthFailure):
            await provider.open(make_target(credential_ref="other"))

"""
Authenticated session provider.

The engine never reads or stores credentials itself. A SessionProvider
turns a target's credential_ref into an opaque Session the transport can
use. The default provider reads a separate YAML credentials file kept out
of the environment config (chmod 600).
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml

from .errors import AuthFailure, ConfigurationError
from .models import Target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Opaque authenticated session handle for one target."""
    principal: str = ""
    secret: str = field(default="", repr=False)
    transport: str = "ntlm"  # ntlm, kerberos, basic (WinRM); ignored by HTTP/LDAP
    use_ssl: bool = False
    verify_ssl: bool = True
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_credential(self) -> bool:
        return bool(self.principal or self.secret)


ANONYMOUS = Session()


class SessionProvider(Protocol):
    def validate(self) -> None:
        """Raise ConfigurationError if no session could ever be served."""
        ...

    async def open(self, target: Target) -> Session:
        """Return a session for target or raise AuthFailure."""
        ...


class StaticSessionProvider:
    """Hand out one fixed session per credential_ref. Used in tests and one-off runs."""

    def __init__(self, sessions: Dict[str, Session], default: Optional[Session] = None):
        self._sessions = dict(sessions)
        self._default = default

    def validate(self) -> None:
        pass

    async def open(self, target: Target) -> Session:
        if target.credential_ref and target.credential_ref in self._sessions:
            return self._sessions[target.credential_ref]
        if self._default is not None:
            return self._default
        raise AuthFailure(f"No credential available for {target.name}")


class YamlCredentialSessionProvider:
    """
    Resolve credential_ref against a YAML credentials file.

    File format:
        domain-admin:
          domain: CONTOSO
          username: svc-discovery
          password: "..."
          transport: ntlm
        firewall-api:
          username: api-reader
          password: "..."
          use_ssl: true
          verify_ssl: false
    """

    def __init__(self, credentials_file: Path):
        self.credentials_file = Path(credentials_file)
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._entries is not None:
            return self._entries

        if not self.credentials_file.exists():
            logger.warning(f"Credentials file not found: {self.credentials_file}")
            self._entries = {}
            return self._entries

        mode = self.credentials_file.stat().st_mode
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            logger.warning(
                f"Credentials file {self.credentials_file} is readable by group/others; "
                f"chmod 600 recommended"
            )

        try:
            with open(self.credentials_file) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed credentials file {self.credentials_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Credentials file {self.credentials_file} must contain a mapping")

        self._entries = {str(k): v for k, v in data.items() if isinstance(v, dict)}
        logger.debug(f"Loaded {len(self._entries)} credential entries")
        return self._entries

    def validate(self) -> None:
        self._load()

    async def open(self, target: Target) -> Session:
        if not target.credential_ref:
            return ANONYMOUS

        entry = self._load().get(target.credential_ref)
        if entry is None:
            raise AuthFailure(f"Unknown credential_ref '{target.credential_ref}' for {target.name}")

        username = entry.get("username", "")
        domain = entry.get("domain")
        # DOMAIN\user for NTLM
        principal = f"{domain}\\{username}" if domain and "\\" not in username and "@" not in username else username

        password = entry.get("password")
        if password is None and entry.get("password_env"):
            password = os.environ.get(entry["password_env"])
        if not password:
            raise AuthFailure(f"Credential '{target.credential_ref}' has no password")

        return Session(
            principal=principal,
            secret=password,
            transport=entry.get("transport", "ntlm"),
            use_ssl=bool(entry.get("use_ssl", False)),
            verify_ssl=bool(entry.get("verify_ssl", True)),
            extra={k: v for k, v in entry.items() if k not in {"username", "password", "domain"}},
        )

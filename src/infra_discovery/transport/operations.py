"""
Probe operations.

An operation is a pure description of one read-only query. The transport
decides how to execute it based on its type; collectors only build them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class PowerShellQuery:
    """Run a PowerShell script over WinRM and return its stdout."""
    script: str
    parse_json: bool = True


@dataclass(frozen=True)
class LdapSearch:
    """
    Subtree search against the target's directory service.

    base_dn wins when set. Otherwise the search base is relative_dn joined
    to the server's default or configuration naming context.
    """
    search_filter: str
    attributes: Tuple[str, ...] = ()
    base_dn: Optional[str] = None
    relative_dn: Optional[str] = None
    naming_context: str = "default"  # default, configuration
    page_size: int = 500


@dataclass(frozen=True)
class HttpRequest:
    """One JSON request against the target's REST API."""
    method: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TcpConnect:
    """Open and close a TCP connection. Payload is the connect latency in ms."""
    port: int


Operation = Union[PowerShellQuery, LdapSearch, HttpRequest, TcpConnect]

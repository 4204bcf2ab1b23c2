"""Remote probe transport and the operations it executes."""

from .operations import HttpRequest, LdapSearch, Operation, PowerShellQuery, TcpConnect
from .remote import RemoteProbeTransport, normalize_ldap_value

__all__ = [
    "HttpRequest",
    "LdapSearch",
    "Operation",
    "PowerShellQuery",
    "RemoteProbeTransport",
    "TcpConnect",
    "normalize_ldap_value",
]

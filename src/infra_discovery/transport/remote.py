"""
Remote probe transport.

Executes one operation against one target with a supplied session and
always returns a ProbeResult. Timeouts, network errors, auth rejection
and malformed responses come back as failed results with a reason code;
nothing is raised to the caller.

Protocols:
- PowerShellQuery: pywinrm Session.run_ps in a worker thread
- LdapSearch: ldap3 paged subtree search in a worker thread
- HttpRequest: aiohttp, one ClientSession per call
- TcpConnect: asyncio.open_connection

A fresh connection is built for every call and closed afterwards.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List

import aiohttp
import requests
import winrm
from ldap3 import ALL, ALL_ATTRIBUTES, ANONYMOUS, NTLM, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPCommunicationError,
    LDAPException,
    LDAPInvalidCredentialsResult,
)
from winrm.exceptions import InvalidCredentialsError, WinRMOperationTimeoutError, WinRMTransportError

from .._types import FailureReason
from ..errors import AuthFailure, ProbeError, ProtocolError, TransportFailure
from ..models import ProbeResult, RawPayload, Target
from ..sessions import Session
from .operations import HttpRequest, LdapSearch, Operation, PowerShellQuery, TcpConnect

logger = logging.getLogger(__name__)

WINRM_HTTP_PORT = 5985
WINRM_HTTPS_PORT = 5986
LDAP_PORT = 389
LDAPS_PORT = 636
HTTP_PORT = 80
HTTPS_PORT = 443


def normalize_ldap_value(value: Any) -> Any:
    """Make an ldap3 attribute value JSON-safe."""
    if isinstance(value, (list, tuple)):
        return [normalize_ldap_value(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value.hex()
    return value


class RemoteProbeTransport:
    """Execute probe operations against targets. Holds no per-target state."""

    async def probe(
        self,
        target: Target,
        session: Session,
        operation: Operation,
        timeout: float,
    ) -> ProbeResult:
        """
        Run one operation against target.

        Args:
            target: Target to query
            session: Authenticated session for the target
            operation: What to fetch
            timeout: Upper bound in seconds for the whole call

        Returns:
            ProbeResult with a RawPayload on success, or a failed result
        """
        start = time.monotonic()

        try:
            data = await asyncio.wait_for(
                self._dispatch(target, session, operation, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return ProbeResult.failed(
                target,
                FailureReason.TIMEOUT,
                f"{type(operation).__name__} timed out after {timeout}s",
                time.monotonic() - start,
            )
        except ProbeError as e:
            return ProbeResult.failed(target, e.reason, str(e), time.monotonic() - start)
        except (aiohttp.ClientConnectionError, OSError) as e:
            return ProbeResult.failed(
                target,
                FailureReason.UNREACHABLE,
                f"{target.address}: {e}",
                time.monotonic() - start,
            )
        except Exception as e:
            logger.debug(f"Unexpected transport error for {target.address}: {e!r}")
            return ProbeResult.failed(
                target,
                FailureReason.PROTOCOL_ERROR,
                f"{type(e).__name__}: {e}",
                time.monotonic() - start,
            )

        return ProbeResult.succeeded(target, RawPayload(data=data), time.monotonic() - start)

    async def _dispatch(self, target: Target, session: Session, operation: Operation, timeout: float) -> Any:
        if isinstance(operation, TcpConnect):
            return await self._tcp_connect(target, operation)
        if isinstance(operation, HttpRequest):
            return await self._http_request(target, session, operation, timeout)

        # pywinrm and ldap3 are synchronous
        loop = asyncio.get_running_loop()
        if isinstance(operation, PowerShellQuery):
            return await loop.run_in_executor(None, self._run_ps_sync, target, session, operation, timeout)
        if isinstance(operation, LdapSearch):
            return await loop.run_in_executor(None, self._ldap_search_sync, target, session, operation, timeout)

        raise ProtocolError(f"Unsupported operation: {type(operation).__name__}")

    # ------------------------------------------------------------------
    # TCP
    # ------------------------------------------------------------------

    async def _tcp_connect(self, target: Target, operation: TcpConnect) -> float:
        start = time.monotonic()
        reader, writer = await asyncio.open_connection(target.address, operation.port)
        latency_ms = (time.monotonic() - start) * 1000
        writer.close()
        await writer.wait_closed()
        logger.debug(f"Connectivity OK: {target.address}:{operation.port} ({latency_ms:.1f}ms)")
        return round(latency_ms, 2)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _http_request(
        self,
        target: Target,
        session: Session,
        operation: HttpRequest,
        timeout: float,
    ) -> Any:
        scheme = "https" if session.use_ssl else "http"
        port = target.port or (HTTPS_PORT if session.use_ssl else HTTP_PORT)
        url = f"{scheme}://{target.address}:{port}{operation.path}"

        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as http:
            async with http.request(
                operation.method,
                url,
                params=operation.params or None,
                json=operation.json_body,
                headers=operation.headers or None,
                ssl=session.verify_ssl,
            ) as response:
                if response.status in (401, 403):
                    raise AuthFailure(f"HTTP {response.status} from {url}")
                if response.status >= 400:
                    text = await response.text()
                    raise ProtocolError(f"HTTP {response.status} from {url}: {text[:200]}")
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ProtocolError(f"Invalid JSON from {url}: {e}") from e

    # ------------------------------------------------------------------
    # WinRM
    # ------------------------------------------------------------------

    def _run_ps_sync(self, target: Target, session: Session, operation: PowerShellQuery, timeout: float) -> Any:
        """Synchronous PowerShell execution (runs in thread pool)."""
        protocol = "https" if session.use_ssl else "http"
        port = target.port or (WINRM_HTTPS_PORT if session.use_ssl else WINRM_HTTP_PORT)
        endpoint = f"{protocol}://{target.address}:{port}/wsman"

        # pywinrm requires read timeout > operation timeout
        operation_timeout = max(1, int(timeout))
        ws = winrm.Session(
            endpoint,
            auth=(session.principal, session.secret),
            transport=session.transport,
            server_cert_validation="validate" if session.verify_ssl else "ignore",
            operation_timeout_sec=operation_timeout,
            read_timeout_sec=operation_timeout + 10,
        )

        try:
            result = ws.run_ps(operation.script)
        except InvalidCredentialsError as e:
            raise AuthFailure(f"WinRM credentials rejected by {target.address}: {e}") from e
        except WinRMOperationTimeoutError as e:
            raise TransportFailure(f"WinRM operation timed out on {target.address}", reason=FailureReason.TIMEOUT) from e
        except requests.exceptions.Timeout as e:
            raise TransportFailure(f"WinRM request to {target.address} timed out: {e}", reason=FailureReason.TIMEOUT) from e
        except WinRMTransportError as e:
            if getattr(e, "code", None) in (401, 403):
                raise AuthFailure(f"WinRM HTTP {e.code} from {target.address}") from e
            raise ProtocolError(f"WinRM transport error from {target.address}: {e}") from e

        std_out = result.std_out.decode("utf-8", errors="replace") if result.std_out else ""
        std_err = result.std_err.decode("utf-8", errors="replace") if result.std_err else ""

        if result.status_code != 0:
            raise ProtocolError(f"PowerShell exited {result.status_code} on {target.address}: {std_err[:200]}")

        if not operation.parse_json:
            return std_out
        if not std_out.strip():
            return None

        try:
            return json.loads(std_out)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Unparseable JSON from {target.address}: {e}") from e

    # ------------------------------------------------------------------
    # LDAP
    # ------------------------------------------------------------------

    def _ldap_search_sync(
        self,
        target: Target,
        session: Session,
        operation: LdapSearch,
        timeout: float,
    ) -> List[Dict[str, Any]]:
        """Synchronous paged LDAP search (runs in thread pool)."""
        port = target.port or (LDAPS_PORT if session.use_ssl else LDAP_PORT)
        server = Server(
            target.address,
            port=port,
            use_ssl=session.use_ssl,
            get_info=ALL,
            connect_timeout=max(1, int(timeout)),
        )

        if not session.principal:
            authentication = ANONYMOUS
        elif "\\" in session.principal:
            authentication = NTLM
        else:
            authentication = SIMPLE

        try:
            conn = Connection(
                server,
                user=session.principal or None,
                password=session.secret or None,
                authentication=authentication,
                auto_bind=True,
                raise_exceptions=True,
                receive_timeout=max(1, int(timeout)),
            )
        except (LDAPBindError, LDAPInvalidCredentialsResult) as e:
            raise AuthFailure(f"LDAP bind rejected by {target.address}: {e}") from e
        except LDAPCommunicationError as e:
            raise TransportFailure(f"LDAP connection to {target.address}:{port} failed: {e}") from e

        try:
            search_base = self._search_base(server, operation)
            entries = conn.extend.standard.paged_search(
                search_base=search_base,
                search_filter=operation.search_filter,
                search_scope=SUBTREE,
                attributes=list(operation.attributes) or ALL_ATTRIBUTES,
                paged_size=operation.page_size,
                generator=False,
            )

            rows = []
            for entry in entries:
                if entry.get("type") != "searchResEntry":
                    continue
                row = {"dn": entry.get("dn")}
                for key, value in (entry.get("attributes") or {}).items():
                    row[key] = normalize_ldap_value(value)
                rows.append(row)

            logger.debug(f"LDAP {operation.search_filter} on {target.address}: {len(rows)} entries")
            return rows

        except LDAPCommunicationError as e:
            raise TransportFailure(f"LDAP connection to {target.address} lost: {e}") from e
        except LDAPException as e:
            raise ProtocolError(f"LDAP search failed on {target.address}: {e}") from e
        finally:
            conn.unbind()

    @staticmethod
    def _search_base(server: Server, operation: LdapSearch) -> str:
        if operation.base_dn:
            return operation.base_dn

        attribute = (
            "configurationNamingContext"
            if operation.naming_context == "configuration"
            else "defaultNamingContext"
        )
        values = server.info.other.get(attribute) if server.info else None
        if not values:
            raise ProtocolError(f"{attribute} not advertised by {server.host}")

        context = values[0] if isinstance(values, (list, tuple)) else values
        if operation.relative_dn:
            return f"{operation.relative_dn},{context}"
        return context

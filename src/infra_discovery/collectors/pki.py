"""
Certificate authority collector.

Looks for enterprise CA enrollment services in the directory configuration
partition. Finding none is a valid result (has_pki=False), not a failure.
"""

from __future__ import annotations

import logging
from typing import List

from .._types import TargetCategory
from ..errors import ProtocolError
from ..models import CertificateAuthorityInfo, PkiPayload, Target
from ..sessions import Session
from ..transport import LdapSearch
from .base import CollectionContext, Collector, as_list, as_str, first_value

logger = logging.getLogger(__name__)

PUBLIC_KEY_SERVICES = "CN=Public Key Services,CN=Services"

ENROLLMENT_SEARCH = LdapSearch(
    search_filter="(objectClass=pKIEnrollmentService)",
    attributes=("cn", "dNSHostName", "certificateTemplates"),
    relative_dn=PUBLIC_KEY_SERVICES,
    naming_context="configuration",
)

TEMPLATE_SEARCH = LdapSearch(
    search_filter="(objectClass=pKICertificateTemplate)",
    attributes=("cn",),
    relative_dn=f"CN=Certificate Templates,{PUBLIC_KEY_SERVICES}",
    naming_context="configuration",
)


class CertificateAuthorityCollector(Collector):
    category = TargetCategory.CERTIFICATE_AUTHORITY

    async def _collect(self, target: Target, session: Session, ctx: CollectionContext) -> PkiPayload:
        data = await self._query(target, session, ENROLLMENT_SEARCH, ctx)
        if not isinstance(data, list):
            raise ProtocolError(f"Unexpected LDAP response from {target.address}")

        authorities = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            name = as_str(first_value(entry.get("cn")))
            if not name:
                continue
            authorities.append(CertificateAuthorityInfo(
                name=name,
                host_name=as_str(first_value(entry.get("dNSHostName"))),
                template_count=len(as_list(entry.get("certificateTemplates"))),
            ))

        if not authorities:
            logger.info(f"No enterprise CA found via {target.name}")
            return PkiPayload(has_pki=False)

        degraded: List[str] = []
        templates = await self._sub_query(target, session, TEMPLATE_SEARCH, ctx, "templates", degraded)

        logger.info(f"PKI via {target.name}: {len(authorities)} certificate authorities")

        return PkiPayload(
            has_pki=True,
            authorities=authorities,
            template_count=len(templates) if isinstance(templates, list) else None,
            degraded_sections=degraded,
        )

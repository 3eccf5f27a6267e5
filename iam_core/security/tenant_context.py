"""Tenant context resolution and tenant-boundary enforcement. No FastAPI."""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from iam_core.domain.exceptions import TenantAccessDeniedError
from iam_core.domain.models.identity import Principal, RoleTier

logger = logging.getLogger(__name__)

ALL_TENANTS = "all"


@dataclass(frozen=True)
class TenantSources:
    """Pre-extracted tenant id candidates, in precedence order."""

    path_param: Optional[str] = None
    header: Optional[str] = None
    query_param: Optional[str] = None
    principal_claim: Optional[str] = None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_tenant_context(sources: TenantSources) -> Optional[str]:
    """Path param > header > query param > principal claim. First non-empty wins."""
    for candidate in (
        sources.path_param,
        sources.header,
        sources.query_param,
        sources.principal_claim,
    ):
        cleaned = _clean(candidate)
        if cleaned:
            return cleaned
    return None


@dataclass(frozen=True)
class TenantCheck:
    allowed: bool
    reason: str


class TenantGuard:
    """
    Platform tier crosses tenants freely. Advisors reach only tenants with an active
    assignment. Everyone else stays inside their home tenant. Below platform tier, a
    tenant context that names a different tenant than the resource is refused.
    """

    def __init__(self, assignment_repository) -> None:
        self._assignments = assignment_repository

    async def check_tenant_access(
        self,
        principal: Principal,
        tenant_context: Optional[str],
        resource_tenant_id: Optional[str],
    ) -> TenantCheck:
        if principal.tier == RoleTier.PLATFORM_ADMIN:
            return TenantCheck(True, "platform_tier")

        context = _clean(tenant_context)
        resource = _clean(resource_tenant_id)
        if context and resource and context != resource:
            return TenantCheck(False, "stale_tenant_context")

        target = resource or context
        if target is None:
            return TenantCheck(False, "tenant_required")

        if principal.tier == RoleTier.ADVISOR:
            assignment = await self._assignments.find_active(principal.principal_id, target)
            if assignment is None:
                return TenantCheck(False, "advisor_not_assigned")
            return TenantCheck(True, "advisor_assigned")

        if principal.tenant_id is None or principal.tenant_id != target:
            return TenantCheck(False, "tenant_mismatch")
        return TenantCheck(True, "home_tenant")

    async def validate_access(
        self,
        principal: Principal,
        tenant_context: Optional[str],
        resource_tenant_id: Optional[str],
    ) -> None:
        """Raise TenantAccessDeniedError on any mismatch."""
        check = await self.check_tenant_access(principal, tenant_context, resource_tenant_id)
        if not check.allowed:
            logger.info(
                "tenant_access_denied",
                extra={
                    "principal_id": principal.principal_id,
                    "resource_tenant_id": resource_tenant_id,
                    "reason": check.reason,
                },
            )
            raise TenantAccessDeniedError("Resource not found")

    async def accessible_tenants(self, principal: Principal) -> Union[str, list]:
        """ALL_TENANTS for platform tier, otherwise the explicit list of reachable tenant ids."""
        if principal.tier == RoleTier.PLATFORM_ADMIN:
            return ALL_TENANTS
        if principal.tier == RoleTier.ADVISOR:
            assignments = await self._assignments.list_for_advisor(
                principal.principal_id, active_only=True
            )
            return sorted({a.tenant_id for a in assignments})
        return [principal.tenant_id] if principal.tenant_id else []

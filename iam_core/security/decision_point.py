"""Access decision point: the single gate in front of every protected operation."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from iam_core.domain.exceptions import PermissionDeniedError, TenantAccessDeniedError
from iam_core.domain.models.identity import Permission, Principal
from iam_core.security.resolver import PermissionResolver
from iam_core.security.tenant_context import TenantGuard

logger = logging.getLogger(__name__)


class MatchMode(str, Enum):
    ALL = "all"
    ANY = "any"


class DecisionReason(str, Enum):
    ALLOWED = "ALLOWED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TENANT_ACCESS_DENIED = "TENANT_ACCESS_DENIED"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DecisionReason
    missing: FrozenSet[Permission] = frozenset()
    detail: Optional[str] = None


def satisfies(
    granted: FrozenSet[Permission],
    required: FrozenSet[Permission],
    mode: MatchMode,
) -> bool:
    """ALL with nothing required passes; ANY with nothing required fails."""
    if mode == MatchMode.ALL:
        return required <= granted
    return bool(required & granted)


def _permission_denied(missing: FrozenSet[Permission]) -> PermissionDeniedError:
    return PermissionDeniedError(
        "Permission denied: " + ", ".join(sorted(p.value for p in missing))
    )


class AccessDecisionPoint:
    """Compose permission resolution and the tenant guard into allow/deny."""

    def __init__(self, resolver: PermissionResolver, tenant_guard: TenantGuard) -> None:
        self._resolver = resolver
        self._guard = tenant_guard

    async def decide(
        self,
        principal: Principal,
        required_permissions: Iterable[Permission],
        mode: MatchMode = MatchMode.ALL,
        tenant_context: Optional[str] = None,
        resource_tenant_id: Optional[str] = None,
    ) -> AccessDecision:
        required = frozenset(required_permissions)
        granted = await self._resolver.resolve(principal)

        if not satisfies(granted, required, mode):
            missing = required - granted if mode == MatchMode.ALL else required
            decision = AccessDecision(False, DecisionReason.PERMISSION_DENIED, missing=missing)
            logger.info(
                "access_denied",
                extra={
                    "principal_id": principal.principal_id,
                    "reason": decision.reason.value,
                    "missing": sorted(p.value for p in missing),
                    "mode": mode.value,
                },
            )
            return decision

        check = await self._guard.check_tenant_access(
            principal, tenant_context, resource_tenant_id
        )
        if not check.allowed:
            logger.info(
                "access_denied",
                extra={
                    "principal_id": principal.principal_id,
                    "reason": DecisionReason.TENANT_ACCESS_DENIED.value,
                    "detail": check.reason,
                    "resource_tenant_id": resource_tenant_id,
                },
            )
            return AccessDecision(
                False, DecisionReason.TENANT_ACCESS_DENIED, detail=check.reason
            )

        logger.debug(
            "access_allowed",
            extra={"principal_id": principal.principal_id, "detail": check.reason},
        )
        return AccessDecision(True, DecisionReason.ALLOWED, detail=check.reason)

    async def require(
        self,
        principal: Principal,
        required_permissions: Iterable[Permission],
        mode: MatchMode = MatchMode.ALL,
        tenant_context: Optional[str] = None,
        resource_tenant_id: Optional[str] = None,
    ) -> AccessDecision:
        """Same as decide(), but a denial raises the matching typed error."""
        decision = await self.decide(
            principal, required_permissions, mode, tenant_context, resource_tenant_id
        )
        if decision.reason == DecisionReason.PERMISSION_DENIED:
            raise _permission_denied(decision.missing)
        if decision.reason == DecisionReason.TENANT_ACCESS_DENIED:
            # Same wording as a missing resource; existence is never confirmed.
            raise TenantAccessDeniedError("Resource not found")
        return decision

    async def require_permissions(
        self,
        principal: Principal,
        required_permissions: Iterable[Permission],
        mode: MatchMode = MatchMode.ALL,
    ) -> None:
        """
        Permission half of require(), with no tenant check. Run it before looking up a
        tenant-owned resource so that a missing id and another tenant's id fail the same way.
        """
        required = frozenset(required_permissions)
        granted = await self._resolver.resolve(principal)
        if not satisfies(granted, required, mode):
            raise _permission_denied(
                required - granted if mode == MatchMode.ALL else required
            )

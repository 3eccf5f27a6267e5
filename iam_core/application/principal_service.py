"""Principal role/group assignment and lock state. No FastAPI."""

import logging
from dataclasses import replace
from typing import FrozenSet, Iterable, Optional

from iam_core.application.repositories import (
    GroupRepository,
    PrincipalRepository,
    RoleRepository,
)
from iam_core.domain.exceptions import IamValidationError, NotFoundError, PermissionDeniedError
from iam_core.domain.models.identity import Permission, Principal, PrincipalStatus, RoleTier
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.decision_point import AccessDecisionPoint
from iam_core.security.resolver import PermissionResolver

logger = logging.getLogger(__name__)

MANAGER_ASSIGNABLE_TIERS = frozenset({RoleTier.CUSTOMER, RoleTier.TENANT_MANAGER})
TENANTLESS_TIERS = frozenset({RoleTier.PLATFORM_ADMIN, RoleTier.ADVISOR})


def _state(principal: Principal) -> dict:
    return {
        "tier": principal.tier.value,
        "tenant_id": principal.tenant_id,
        "roles": sorted(principal.role_ids),
        "groups": sorted(principal.group_ids),
        "status": principal.status.value,
        "lock_reason": principal.lock_reason,
    }


class PrincipalService:
    """
    Every mutation replaces the stored principal and records before/after.
    Revoking what was just assigned restores the original effective permissions.
    """

    def __init__(
        self,
        repository: PrincipalRepository,
        role_repository: RoleRepository,
        group_repository: GroupRepository,
        access: AccessDecisionPoint,
        resolver: PermissionResolver,
        audit: AuditRecorder,
    ) -> None:
        self._repo = repository
        self._roles = role_repository
        self._groups = group_repository
        self._access = access
        self._resolver = resolver
        self._audit = audit

    async def _get(self, principal_id: str) -> Principal:
        principal = await self._repo.get(principal_id)
        if principal is None:
            raise NotFoundError(f"Principal not found: {principal_id}")
        return principal

    async def _load(
        self, actor: Principal, principal_id: str, permissions: Iterable[Permission]
    ) -> Principal:
        await self._access.require_permissions(actor, permissions)
        principal = await self._get(principal_id)
        await self._access.require(actor, permissions, resource_tenant_id=principal.tenant_id)
        return principal

    async def _validate_roles(self, role_ids: Iterable[str], tenant_id: Optional[str]) -> None:
        for role_id in role_ids:
            role = await self._roles.get(role_id)
            if role is None:
                raise IamValidationError(f"Unknown role: {role_id}")
            if not role.is_active:
                raise IamValidationError(f"Role is inactive: {role_id}")
            if not role.in_scope_for(tenant_id):
                raise IamValidationError(f"Role {role_id} is not available in this tenant")

    async def _commit(
        self,
        actor: Principal,
        action: AuditAction,
        before: Principal,
        after: Principal,
        summary: Optional[str] = None,
    ) -> Principal:
        await self._repo.save(after)
        await self._audit.record(
            actor=actor,
            action=action,
            target_type="principal",
            target_id=after.principal_id,
            target_name=after.email or None,
            before=_state(before),
            after=_state(after),
            summary=summary,
            tenant_id=after.tenant_id or before.tenant_id,
        )
        return after

    async def get_principal(self, actor: Principal, principal_id: str) -> Principal:
        return await self._load(actor, principal_id, [Permission.USER_READ])

    async def effective_permissions(
        self, actor: Principal, principal_id: str
    ) -> FrozenSet[Permission]:
        principal = await self.get_principal(actor, principal_id)
        return await self._resolver.resolve(principal)

    async def assign_role(self, actor: Principal, principal_id: str, role_id: str) -> Principal:
        principal = await self._load(actor, principal_id, [Permission.ROLE_ASSIGN])
        await self._validate_roles([role_id], principal.tenant_id)
        if role_id in principal.role_ids:
            return principal
        updated = principal.with_roles(principal.role_ids | {role_id})
        return await self._commit(actor, AuditAction.PRINCIPAL_ROLE_ASSIGNED, principal, updated)

    async def revoke_role(self, actor: Principal, principal_id: str, role_id: str) -> Principal:
        principal = await self._load(actor, principal_id, [Permission.ROLE_ASSIGN])
        if role_id not in principal.role_ids:
            return principal
        updated = principal.with_roles(principal.role_ids - {role_id})
        return await self._commit(actor, AuditAction.PRINCIPAL_ROLE_REVOKED, principal, updated)

    async def check_replace_roles(
        self, actor: Principal, principal_id: str, role_ids: Iterable[str]
    ) -> Principal:
        """Every check replace_roles() makes, without writing."""
        principal = await self._load(actor, principal_id, [Permission.ROLE_ASSIGN])
        await self._validate_roles(role_ids, principal.tenant_id)
        return principal

    async def check_clear_access(self, actor: Principal, principal_id: str) -> Principal:
        return await self._load(
            actor, principal_id, [Permission.ROLE_ASSIGN, Permission.GROUP_MANAGE_MEMBERS]
        )

    async def replace_roles(
        self,
        actor: Principal,
        principal_id: str,
        role_ids: Iterable[str],
        summary: Optional[str] = None,
    ) -> Principal:
        role_ids = frozenset(role_ids)
        principal = await self.check_replace_roles(actor, principal_id, role_ids)
        updated = principal.with_roles(role_ids)
        return await self._commit(
            actor, AuditAction.PRINCIPAL_ROLES_REPLACED, principal, updated, summary
        )

    async def clear_access(
        self, actor: Principal, principal_id: str, summary: Optional[str] = None
    ) -> Principal:
        """Remove every direct role and every group membership."""
        principal = await self.check_clear_access(actor, principal_id)
        for group in await self._groups.get_many(principal.group_ids):
            await self._groups.save(replace(group, member_ids=group.member_ids - {principal_id}))
        updated = replace(principal, role_ids=frozenset(), group_ids=frozenset())
        return await self._commit(
            actor, AuditAction.PRINCIPAL_ROLES_REPLACED, principal, updated, summary
        )

    async def lock(self, actor: Principal, principal_id: str, reason: str) -> Principal:
        principal = await self._load(actor, principal_id, [Permission.USER_WRITE])
        if principal.status == PrincipalStatus.LOCKED:
            return principal
        updated = replace(principal, status=PrincipalStatus.LOCKED, lock_reason=reason)
        logger.info("principal_locked", extra={"principal_id": principal_id})
        return await self._commit(actor, AuditAction.PRINCIPAL_LOCKED, principal, updated, reason)

    async def unlock(self, actor: Principal, principal_id: str) -> Principal:
        principal = await self._load(actor, principal_id, [Permission.USER_WRITE])
        if principal.status != PrincipalStatus.LOCKED:
            return principal
        updated = replace(principal, status=PrincipalStatus.ACTIVE, lock_reason=None)
        return await self._commit(actor, AuditAction.PRINCIPAL_UNLOCKED, principal, updated)

    async def _is_last_platform_admin(self, principal: Principal) -> bool:
        admins = await self._repo.list_by_tier(RoleTier.PLATFORM_ADMIN)
        return not any(
            a.principal_id != principal.principal_id and a.status == PrincipalStatus.ACTIVE
            for a in admins
        )

    async def change_tier(self, actor: Principal, principal_id: str, tier: RoleTier) -> Principal:
        """
        Move a principal to another tier. Platform admins may assign any tier; tenant
        managers only CUSTOMER or TENANT_MANAGER. Platform and advisor tiers carry no
        home tenant, so promoting into them drops it; the tenant-bound tiers need one.
        """
        tier = RoleTier(tier)
        principal = await self._load(actor, principal_id, [Permission.USER_WRITE])
        if actor.tier == RoleTier.TENANT_MANAGER:
            if tier not in MANAGER_ASSIGNABLE_TIERS:
                raise PermissionDeniedError(f"Tenant managers cannot assign tier {tier.value}")
        elif actor.tier != RoleTier.PLATFORM_ADMIN:
            raise PermissionDeniedError("Only platform admins and tenant managers can change tiers")
        if principal.tier == tier:
            return principal
        if principal.tier == RoleTier.PLATFORM_ADMIN and await self._is_last_platform_admin(principal):
            raise PermissionDeniedError("Cannot demote the last active platform admin")

        if tier in TENANTLESS_TIERS:
            updated = replace(principal, tier=tier, tenant_id=None)
        elif principal.tenant_id is None:
            raise IamValidationError(f"Tier {tier.value} requires a home tenant")
        else:
            updated = replace(principal, tier=tier)
        logger.info(
            "principal_tier_changed",
            extra={"principal_id": principal_id, "from": principal.tier.value, "to": tier.value},
        )
        return await self._commit(actor, AuditAction.PRINCIPAL_TIER_CHANGED, principal, updated)

"""Role administration. System roles are seeded once and protected. No FastAPI."""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional

from iam_core.application.repositories import RoleRepository
from iam_core.domain.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from iam_core.domain.models.identity import Permission, Principal, Role, SystemRole
from iam_core.domain.schemas.payloads import RoleCreateRequest, RoleUpdateRequest
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.catalog import SYSTEM_ROLE_NAMES, SYSTEM_ROLE_PERMISSIONS
from iam_core.security.decision_point import AccessDecisionPoint

logger = logging.getLogger(__name__)


def system_role_id(system_role: SystemRole) -> str:
    return f"system-{system_role.value}"


class RoleService:
    """
    Custom roles are soft-deactivated, never deleted.
    System roles: deactivation is a CONFLICT; edits by non-platform actors are PERMISSION_DENIED.
    """

    def __init__(
        self,
        repository: RoleRepository,
        access: AccessDecisionPoint,
        audit: AuditRecorder,
    ) -> None:
        self._repo = repository
        self._access = access
        self._audit = audit

    async def _get(self, role_id: str) -> Role:
        role = await self._repo.get(role_id)
        if role is None:
            raise NotFoundError(f"Role not found: {role_id}")
        return role

    async def _ensure_unique_name(
        self, name: str, tenant_id: Optional[str], exclude_id: Optional[str] = None
    ) -> None:
        existing = await self._repo.find_by_name(name, tenant_id)
        if existing is not None and existing.role_id != exclude_id:
            raise ConflictError(f"A role named '{name}' already exists in this scope")

    async def seed_system_roles(self) -> List[Role]:
        """Create any missing system role. Safe to call on every start."""
        created = []
        for system_role, permissions in SYSTEM_ROLE_PERMISSIONS.items():
            role_id = system_role_id(system_role)
            if await self._repo.get(role_id) is not None:
                continue
            now = datetime.now(timezone.utc)
            role = Role(
                role_id=role_id,
                name=SYSTEM_ROLE_NAMES[system_role],
                permissions=permissions,
                is_system=True,
                system_role=system_role,
                created_at=now,
                updated_at=now,
            )
            await self._repo.save(role)
            created.append(role)
        if created:
            await self._audit.record(
                actor=None,
                action=AuditAction.SYSTEM_ROLES_SEEDED,
                target_type="role",
                target_id="system",
                summary=f"Seeded {len(created)} system role(s)",
                after={"roles": [r.role_id for r in created]},
            )
            logger.info("system_roles_seeded", extra={"count": len(created)})
        return created

    async def create_role(self, actor: Principal, request: RoleCreateRequest) -> Role:
        await self._access.require(
            actor, [Permission.ROLE_WRITE], resource_tenant_id=request.tenant_id
        )
        await self._ensure_unique_name(request.name, request.tenant_id)
        now = datetime.now(timezone.utc)
        role = Role(
            role_id=uuid.uuid4().hex,
            name=request.name,
            permissions=frozenset(request.permissions),
            tenant_id=request.tenant_id,
            description=request.description,
            created_at=now,
            updated_at=now,
        )
        await self._repo.save(role)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ROLE_CREATED,
            target_type="role",
            target_id=role.role_id,
            target_name=role.name,
            after=role.audit_state(),
            tenant_id=role.tenant_id,
        )
        logger.info(
            "role_created",
            extra={"role_id": role.role_id, "tenant_id": role.tenant_id},
        )
        return role

    async def update_role(
        self, actor: Principal, role_id: str, request: RoleUpdateRequest
    ) -> Role:
        await self._access.require_permissions(actor, [Permission.ROLE_WRITE])
        role = await self._get(role_id)
        if role.is_system:
            if not actor.is_platform:
                raise PermissionDeniedError("System roles can only be modified by platform administrators")
            if request.is_active is False:
                raise ConflictError("System roles cannot be deactivated")
        await self._access.require(
            actor, [Permission.ROLE_WRITE], resource_tenant_id=role.tenant_id
        )
        if request.is_active is False and role.is_active:
            return await self.deactivate_role(actor, role_id)

        changes = {}
        if request.name is not None and request.name.strip() != role.name:
            name = request.name.strip()
            await self._ensure_unique_name(name, role.tenant_id, exclude_id=role.role_id)
            changes["name"] = name
        if request.description is not None:
            changes["description"] = request.description
        if request.permissions is not None:
            changes["permissions"] = frozenset(request.permissions)
        if request.is_active is True:
            changes["is_active"] = True
        if not changes:
            return role

        updated = replace(role, updated_at=datetime.now(timezone.utc), **changes)
        await self._repo.save(updated)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ROLE_UPDATED,
            target_type="role",
            target_id=role.role_id,
            target_name=updated.name,
            before=role.audit_state(),
            after=updated.audit_state(),
            tenant_id=role.tenant_id,
        )
        return updated

    async def deactivate_role(self, actor: Principal, role_id: str) -> Role:
        await self._access.require_permissions(actor, [Permission.ROLE_DELETE])
        role = await self._get(role_id)
        if role.is_system:
            raise ConflictError("System roles cannot be deactivated")
        await self._access.require(
            actor, [Permission.ROLE_DELETE], resource_tenant_id=role.tenant_id
        )
        if not role.is_active:
            return role
        updated = replace(role, is_active=False, updated_at=datetime.now(timezone.utc))
        await self._repo.save(updated)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ROLE_DEACTIVATED,
            target_type="role",
            target_id=role.role_id,
            target_name=role.name,
            before=role.audit_state(),
            after=updated.audit_state(),
            tenant_id=role.tenant_id,
        )
        logger.info("role_deactivated", extra={"role_id": role.role_id})
        return updated

    async def get_role(self, actor: Principal, role_id: str) -> Role:
        await self._access.require_permissions(actor, [Permission.ROLE_READ])
        role = await self._get(role_id)
        # Global roles are readable from inside any tenant.
        await self._access.require(
            actor,
            [Permission.ROLE_READ],
            tenant_context=actor.tenant_id,
            resource_tenant_id=role.tenant_id,
        )
        return role

    async def list_roles(self, actor: Principal, tenant_id: Optional[str]) -> List[Role]:
        await self._access.require(
            actor, [Permission.ROLE_READ], tenant_context=tenant_id, resource_tenant_id=tenant_id
        )
        return await self._repo.list_visible(tenant_id)

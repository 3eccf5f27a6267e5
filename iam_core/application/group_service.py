"""Group administration. Members and roles change one at a time, never wholesale. No FastAPI."""

import logging
import uuid
from dataclasses import replace
from typing import Iterable, List, Optional

from iam_core.application.repositories import (
    GroupRepository,
    PrincipalRepository,
    RoleRepository,
)
from iam_core.domain.exceptions import ConflictError, IamValidationError, NotFoundError
from iam_core.domain.models.identity import Group, Permission, Principal
from iam_core.domain.schemas.payloads import GroupCreateRequest
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.decision_point import AccessDecisionPoint

logger = logging.getLogger(__name__)


class GroupService:
    def __init__(
        self,
        repository: GroupRepository,
        principal_repository: PrincipalRepository,
        role_repository: RoleRepository,
        access: AccessDecisionPoint,
        audit: AuditRecorder,
    ) -> None:
        self._repo = repository
        self._principals = principal_repository
        self._roles = role_repository
        self._access = access
        self._audit = audit

    async def _get(self, group_id: str) -> Group:
        group = await self._repo.get(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return group

    async def _load(
        self, actor: Principal, group_id: str, permissions: Iterable[Permission]
    ) -> Group:
        await self._access.require_permissions(actor, permissions)
        group = await self._get(group_id)
        await self._access.require(actor, permissions, resource_tenant_id=group.tenant_id)
        return group

    async def _check_role_in_scope(self, role_id: str, tenant_id: Optional[str]) -> None:
        role = await self._roles.get(role_id)
        if role is None:
            raise IamValidationError(f"Unknown role: {role_id}")
        if not role.is_active:
            raise IamValidationError(f"Role is inactive: {role_id}")
        if not role.in_scope_for(tenant_id):
            raise IamValidationError(f"Role {role_id} is not available in this scope")

    async def _record(self, actor, action, before: Group, after: Group) -> None:
        await self._audit.record(
            actor=actor,
            action=action,
            target_type="group",
            target_id=after.group_id,
            target_name=after.name,
            before=before.audit_state() if before is not None else None,
            after=after.audit_state(),
            tenant_id=after.tenant_id,
        )

    async def create_group(self, actor: Principal, request: GroupCreateRequest) -> Group:
        await self._access.require(
            actor, [Permission.GROUP_WRITE], resource_tenant_id=request.tenant_id
        )
        name = request.name.strip()
        if await self._repo.find_by_name(name, request.tenant_id) is not None:
            raise ConflictError(f"A group named '{name}' already exists in this scope")
        for role_id in request.role_ids:
            await self._check_role_in_scope(role_id, request.tenant_id)
        group = Group(
            group_id=uuid.uuid4().hex,
            name=name,
            tenant_id=request.tenant_id,
            role_ids=frozenset(request.role_ids),
            description=request.description,
            created_by=actor.principal_id,
        )
        await self._repo.save(group)
        await self._record(actor, AuditAction.GROUP_CREATED, None, group)
        logger.info("group_created", extra={"group_id": group.group_id, "tenant_id": group.tenant_id})
        return group

    async def add_member(self, actor: Principal, group_id: str, principal_id: str) -> Group:
        group = await self._load(actor, group_id, [Permission.GROUP_MANAGE_MEMBERS])
        if not group.is_active:
            raise ConflictError(f"Group is inactive: {group_id}")
        member = await self._principals.get(principal_id)
        if member is None:
            raise NotFoundError(f"Principal not found: {principal_id}")
        if group.tenant_id is not None and member.tenant_id != group.tenant_id:
            raise IamValidationError("Principal does not belong to the group's tenant")
        if principal_id in group.member_ids:
            return group

        updated = replace(group, member_ids=group.member_ids | {principal_id})
        await self._repo.save(updated)
        await self._principals.save(member.with_groups(member.group_ids | {group_id}))
        await self._record(actor, AuditAction.GROUP_MEMBER_ADDED, group, updated)
        return updated

    async def remove_member(self, actor: Principal, group_id: str, principal_id: str) -> Group:
        group = await self._load(actor, group_id, [Permission.GROUP_MANAGE_MEMBERS])
        if principal_id not in group.member_ids:
            return group
        updated = replace(group, member_ids=group.member_ids - {principal_id})
        await self._repo.save(updated)
        member = await self._principals.get(principal_id)
        if member is not None:
            await self._principals.save(member.with_groups(member.group_ids - {group_id}))
        await self._record(actor, AuditAction.GROUP_MEMBER_REMOVED, group, updated)
        return updated

    async def add_role(self, actor: Principal, group_id: str, role_id: str) -> Group:
        group = await self._load(actor, group_id, [Permission.GROUP_WRITE])
        await self._check_role_in_scope(role_id, group.tenant_id)
        if role_id in group.role_ids:
            return group
        updated = replace(group, role_ids=group.role_ids | {role_id})
        await self._repo.save(updated)
        await self._record(actor, AuditAction.GROUP_ROLE_ADDED, group, updated)
        return updated

    async def remove_role(self, actor: Principal, group_id: str, role_id: str) -> Group:
        group = await self._load(actor, group_id, [Permission.GROUP_WRITE])
        if role_id not in group.role_ids:
            return group
        updated = replace(group, role_ids=group.role_ids - {role_id})
        await self._repo.save(updated)
        await self._record(actor, AuditAction.GROUP_ROLE_REMOVED, group, updated)
        return updated

    async def deactivate_group(self, actor: Principal, group_id: str) -> Group:
        group = await self._load(actor, group_id, [Permission.GROUP_DELETE])
        if not group.is_active:
            return group
        updated = replace(group, is_active=False)
        await self._repo.save(updated)
        await self._record(actor, AuditAction.GROUP_DEACTIVATED, group, updated)
        logger.info("group_deactivated", extra={"group_id": group_id})
        return updated

    async def get_group(self, actor: Principal, group_id: str) -> Group:
        await self._access.require_permissions(actor, [Permission.GROUP_READ])
        group = await self._get(group_id)
        await self._access.require(
            actor,
            [Permission.GROUP_READ],
            tenant_context=actor.tenant_id,
            resource_tenant_id=group.tenant_id,
        )
        return group

    async def list_groups(self, actor: Principal, tenant_id: Optional[str]) -> List[Group]:
        await self._access.require(
            actor, [Permission.GROUP_READ], tenant_context=tenant_id, resource_tenant_id=tenant_id
        )
        return await self._repo.list_visible(tenant_id)

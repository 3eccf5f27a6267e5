"""Application tests: custom roles, system role protection, name uniqueness."""

import pytest

from iam_core.application.role_service import system_role_id
from iam_core.domain.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TenantAccessDeniedError,
)
from iam_core.domain.models.identity import Permission, SystemRole
from iam_core.domain.schemas.payloads import RoleCreateRequest, RoleUpdateRequest
from iam_core.governance.audit_models import AuditAction
from iam_core.governance.audit_repository import AuditQuery


def _request(name="Reviewer", tenant_id="tenant-a", permissions=(Permission.ACCESS_REVIEW_READ,)):
    return RoleCreateRequest(name=name, tenant_id=tenant_id, permissions=list(permissions))


async def test_seed_is_idempotent(services):
    assert await services.roles.seed_system_roles() == []
    role = await services.role_repository.get(system_role_id(SystemRole.AUDITOR))
    assert role.is_system
    assert Permission.AUDIT_EXPORT in role.permissions
    page = await services.audit_repository.query(AuditQuery(action=AuditAction.SYSTEM_ROLES_SEEDED))
    assert page.total == 1
    assert page.entries[0].actor_id == "system"


async def test_tenant_admin_creates_tenant_role(services, tenant_admin):
    role = await services.roles.create_role(tenant_admin, _request())
    assert role.tenant_id == "tenant-a"
    assert not role.is_system
    page = await services.audit_repository.query(AuditQuery(target_id=role.role_id))
    assert [e.action for e in page.entries] == [AuditAction.ROLE_CREATED]
    assert page.entries[0].after["permissions"] == ["iam:access_review:read"]


async def test_duplicate_name_in_same_scope_conflicts(services, tenant_admin):
    await services.roles.create_role(tenant_admin, _request(name="Reviewer"))
    with pytest.raises(ConflictError):
        await services.roles.create_role(tenant_admin, _request(name="  reviewer "))


async def test_same_name_in_other_scope_is_allowed(services, tenant_admin, platform_admin):
    await services.roles.create_role(tenant_admin, _request(name="Reviewer"))
    role = await services.roles.create_role(platform_admin, _request(name="Reviewer", tenant_id=None))
    assert role.is_global


async def test_tenant_admin_cannot_create_global_role(services, tenant_admin):
    with pytest.raises(TenantAccessDeniedError):
        await services.roles.create_role(tenant_admin, _request(tenant_id=None))


async def test_manager_without_role_write_is_denied(services, manager_a):
    with pytest.raises(PermissionDeniedError):
        await services.roles.create_role(manager_a, _request())


async def test_system_role_edit_requires_platform_tier(services, tenant_admin):
    with pytest.raises(PermissionDeniedError):
        await services.roles.update_role(
            tenant_admin,
            system_role_id(SystemRole.AUDITOR),
            RoleUpdateRequest(description="changed"),
        )


async def test_system_role_cannot_be_deactivated(services, platform_admin):
    role_id = system_role_id(SystemRole.GLOBAL_ADMIN)
    with pytest.raises(ConflictError):
        await services.roles.deactivate_role(platform_admin, role_id)
    with pytest.raises(ConflictError):
        await services.roles.update_role(platform_admin, role_id, RoleUpdateRequest(is_active=False))


async def test_platform_admin_can_edit_system_role_description(services, platform_admin):
    role_id = system_role_id(SystemRole.AUDITOR)
    updated = await services.roles.update_role(
        platform_admin, role_id, RoleUpdateRequest(description="Read-only oversight")
    )
    assert updated.description == "Read-only oversight"
    assert updated.is_system


async def test_update_records_only_changed_fields(services, tenant_admin):
    role = await services.roles.create_role(tenant_admin, _request())
    await services.roles.update_role(
        tenant_admin,
        role.role_id,
        RoleUpdateRequest(permissions=[Permission.ACCESS_REVIEW_READ, Permission.AUDIT_READ]),
    )
    page = await services.audit_repository.query(
        AuditQuery(target_id=role.role_id, action=AuditAction.ROLE_UPDATED)
    )
    entry = page.entries[0]
    assert set(entry.before) == {"permissions"}
    assert entry.after["permissions"] == ["iam:access_review:read", "iam:audit:read"]


async def test_deactivation_is_soft_and_idempotent(services, tenant_admin):
    role = await services.roles.create_role(tenant_admin, _request())
    deactivated = await services.roles.deactivate_role(tenant_admin, role.role_id)
    again = await services.roles.deactivate_role(tenant_admin, role.role_id)
    assert not deactivated.is_active
    assert again == deactivated
    assert await services.role_repository.get(role.role_id) is not None


async def test_update_with_is_active_false_deactivates(services, tenant_admin):
    role = await services.roles.create_role(tenant_admin, _request())
    updated = await services.roles.update_role(
        tenant_admin, role.role_id, RoleUpdateRequest(is_active=False)
    )
    assert not updated.is_active


async def test_tenant_user_reads_global_roles(services, manager_a):
    role = await services.roles.get_role(manager_a, system_role_id(SystemRole.AUDITOR))
    assert role.name == "Auditor"
    visible = await services.roles.list_roles(manager_a, "tenant-a")
    assert {r.role_id for r in visible} >= {system_role_id(s) for s in SystemRole}


async def test_foreign_tenant_role_is_hidden(services, tenant_admin, manager_b):
    role = await services.roles.create_role(tenant_admin, _request())
    with pytest.raises(TenantAccessDeniedError):
        await services.roles.get_role(manager_b, role.role_id)


async def test_unknown_role_is_not_found(services, platform_admin):
    with pytest.raises(NotFoundError):
        await services.roles.get_role(platform_admin, "nope")

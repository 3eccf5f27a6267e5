"""Security tests: effective permissions are the union of tier, direct roles and group roles."""

from dataclasses import replace

import pytest

from iam_core.domain.exceptions import IamValidationError
from iam_core.domain.models.identity import (
    Group,
    Permission,
    Principal,
    PrincipalStatus,
    Role,
    RoleTier,
)
from iam_core.infrastructure.memory import InMemoryGroupRepository, InMemoryRoleRepository
from iam_core.security.catalog import (
    ALL_PERMISSIONS,
    SYSTEM_ROLE_PERMISSIONS,
    TIER_DEFAULT_PERMISSIONS,
    catalog_entries,
    parse_permissions,
)
from iam_core.security.resolver import PermissionResolver, resolve_permissions

P = Permission


@pytest.fixture
def auditor_role():
    return Role("role-auditor", "Auditor", frozenset({P.AUDIT_READ, P.AUDIT_EXPORT}), tenant_id="tenant-a")


@pytest.fixture
def writer_role():
    return Role("role-writer", "Writer", frozenset({P.ROLE_WRITE}), tenant_id="tenant-a")


@pytest.fixture
def group(writer_role):
    return Group("grp-1", "Writers", tenant_id="tenant-a", role_ids=frozenset({writer_role.role_id}))


def _principal(**kwargs):
    return Principal("user-1", RoleTier.CUSTOMER, tenant_id="tenant-a", **kwargs)


def test_tier_defaults_only_when_nothing_assigned():
    assert resolve_permissions(_principal(), {}, {}) == TIER_DEFAULT_PERMISSIONS[RoleTier.CUSTOMER]


def test_union_of_tier_direct_and_group_roles(auditor_role, writer_role, group):
    principal = _principal(
        role_ids=frozenset({auditor_role.role_id}), group_ids=frozenset({group.group_id})
    )
    roles = {r.role_id: r for r in (auditor_role, writer_role)}
    granted = resolve_permissions(principal, roles, {group.group_id: group})
    assert granted == {P.ACCESS_REQUEST_CREATE, P.AUDIT_READ, P.AUDIT_EXPORT, P.ROLE_WRITE}


def test_locked_principal_resolves_to_empty_set(auditor_role):
    principal = _principal(
        role_ids=frozenset({auditor_role.role_id}), status=PrincipalStatus.LOCKED
    )
    assert resolve_permissions(principal, {auditor_role.role_id: auditor_role}, {}) == frozenset()


def test_deactivated_principal_resolves_to_empty_set():
    principal = _principal(status=PrincipalStatus.DEACTIVATED)
    assert resolve_permissions(principal, {}, {}) == frozenset()


def test_inactive_role_contributes_nothing(auditor_role):
    inactive = replace(auditor_role, is_active=False)
    principal = _principal(role_ids=frozenset({inactive.role_id}))
    assert P.AUDIT_EXPORT not in resolve_permissions(principal, {inactive.role_id: inactive}, {})


def test_inactive_group_contributes_nothing(writer_role, group):
    inactive = replace(group, is_active=False)
    principal = _principal(group_ids=frozenset({inactive.group_id}))
    granted = resolve_permissions(
        principal, {writer_role.role_id: writer_role}, {inactive.group_id: inactive}
    )
    assert P.ROLE_WRITE not in granted


def test_role_from_other_tenant_is_ignored():
    foreign = Role("role-x", "Foreign", frozenset({P.USER_DELETE}), tenant_id="tenant-b")
    principal = _principal(role_ids=frozenset({foreign.role_id}))
    assert P.USER_DELETE not in resolve_permissions(principal, {foreign.role_id: foreign}, {})


def test_global_role_applies_in_any_tenant():
    global_role = Role("role-g", "Global reader", frozenset({P.USER_READ}))
    principal = _principal(role_ids=frozenset({global_role.role_id}))
    assert P.USER_READ in resolve_permissions(principal, {global_role.role_id: global_role}, {})


def test_unknown_ids_contribute_nothing():
    principal = _principal(role_ids=frozenset({"missing"}), group_ids=frozenset({"missing"}))
    assert resolve_permissions(principal, {}, {}) == TIER_DEFAULT_PERMISSIONS[RoleTier.CUSTOMER]


def test_platform_tier_holds_every_permission():
    principal = Principal("root", RoleTier.PLATFORM_ADMIN)
    assert resolve_permissions(principal, {}, {}) == ALL_PERMISSIONS


def test_assign_then_revoke_restores_original_set(auditor_role):
    roles = {auditor_role.role_id: auditor_role}
    original = _principal()
    before = resolve_permissions(original, roles, {})
    assigned = original.with_roles(original.role_ids | {auditor_role.role_id})
    revoked = assigned.with_roles(assigned.role_ids - {auditor_role.role_id})
    assert resolve_permissions(assigned, roles, {}) > before
    assert resolve_permissions(revoked, roles, {}) == before


async def test_resolver_loads_roles_reachable_through_groups(writer_role, group):
    resolver = PermissionResolver(InMemoryRoleRepository([writer_role]), InMemoryGroupRepository([group]))
    principal = _principal(group_ids=frozenset({group.group_id}))
    assert P.ROLE_WRITE in await resolver.resolve(principal)


def test_parse_permissions_accepts_catalog_keys():
    assert parse_permissions(["iam:user:read", "iam:audit:export"]) == {P.USER_READ, P.AUDIT_EXPORT}


def test_parse_permissions_rejects_unknown_keys():
    with pytest.raises(IamValidationError) as exc_info:
        parse_permissions(["iam:user:read", "iam:nope", "billing:all"])
    assert "billing:all" in exc_info.value.message
    assert "iam:nope" in exc_info.value.message


def test_catalog_lists_every_permission_with_label():
    entries = catalog_entries()
    assert len(entries) == len(Permission)
    assert entries[0] == {"key": "iam:user:read", "label": "View users", "category": "user"}


def test_system_role_bundles_stay_inside_catalog():
    for permissions in SYSTEM_ROLE_PERMISSIONS.values():
        assert permissions <= ALL_PERMISSIONS


@pytest.mark.parametrize(
    "role_ids, group_ids",
    [
        (["role-auditor", "role-writer"], []),
        (["role-writer", "role-auditor", "role-writer"], []),
        (["role-auditor"], ["grp-1"]),
        (["role-writer", "role-auditor"], ["grp-1", "grp-1"]),
        ([], ["grp-1", "grp-mixed"]),
        (["role-writer"], ["grp-mixed", "grp-1", "grp-mixed"]),
    ],
)
async def test_grant_order_and_overlap_do_not_change_result(
    auditor_role, writer_role, group, role_ids, group_ids
):
    mixed = Group(
        "grp-mixed",
        "Audit writers",
        tenant_id="tenant-a",
        role_ids=frozenset([writer_role.role_id, auditor_role.role_id, writer_role.role_id]),
    )
    roles = {r.role_id: r for r in (writer_role, auditor_role)}
    groups = {g.group_id: g for g in (mixed, group)}
    principal = _principal(role_ids=frozenset(role_ids), group_ids=frozenset(group_ids))
    expected = (
        TIER_DEFAULT_PERMISSIONS[RoleTier.CUSTOMER] | auditor_role.permissions | writer_role.permissions
    )

    assert resolve_permissions(principal, roles, groups) == expected
    resolver = PermissionResolver(
        InMemoryRoleRepository(reversed(list(roles.values()))),
        InMemoryGroupRepository(groups.values()),
    )
    assert await resolver.resolve(principal) == expected

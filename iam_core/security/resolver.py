"""Effective permission resolution: tier bundle, direct roles, group roles."""

from typing import FrozenSet, Mapping, Optional

from iam_core.domain.models.identity import Group, Permission, Principal, Role
from iam_core.security.catalog import tier_defaults


def _role_permissions(role: Optional[Role], tenant_id: Optional[str]) -> FrozenSet[Permission]:
    if role is None or not role.is_active or not role.in_scope_for(tenant_id):
        return frozenset()
    return role.permissions


def resolve_permissions(
    principal: Principal,
    roles: Mapping[str, Role],
    groups: Mapping[str, Group],
) -> FrozenSet[Permission]:
    """
    Pure union of the tier bundle, every active in-scope direct role and every
    active in-scope role of every active in-scope group the principal belongs to.
    Locked principals resolve to the empty set. Unknown ids contribute nothing.
    """
    if principal.is_locked:
        return frozenset()

    tenant_id = principal.tenant_id
    permissions = set(tier_defaults(principal.tier))

    for role_id in principal.role_ids:
        permissions |= _role_permissions(roles.get(role_id), tenant_id)

    for group_id in principal.group_ids:
        group = groups.get(group_id)
        if group is None or not group.is_active or not group.in_scope_for(tenant_id):
            continue
        for role_id in group.role_ids:
            permissions |= _role_permissions(roles.get(role_id), tenant_id)

    return frozenset(permissions)


class PermissionResolver:
    """Load a principal's roles and groups from storage, then resolve."""

    def __init__(self, role_repository, group_repository) -> None:
        self._roles = role_repository
        self._groups = group_repository

    async def resolve(self, principal: Principal) -> FrozenSet[Permission]:
        if principal.is_locked:
            return frozenset()
        groups = await self._groups.get_many(principal.group_ids)
        role_ids = set(principal.role_ids)
        for group in groups:
            role_ids |= group.role_ids
        roles = await self._roles.get_many(role_ids)
        return resolve_permissions(
            principal,
            {role.role_id: role for role in roles},
            {group.group_id: group for group in groups},
        )

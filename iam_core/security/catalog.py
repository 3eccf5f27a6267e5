"""Permission catalog: labels, tier bundles, system role bundles. Static data only."""

from typing import Dict, FrozenSet, Iterable, List

from iam_core.domain.exceptions import IamValidationError
from iam_core.domain.models.identity import Permission, RoleTier, SystemRole

P = Permission

PERMISSION_LABELS: Dict[Permission, str] = {
    P.USER_READ: "View users",
    P.USER_WRITE: "Create and edit users",
    P.USER_DELETE: "Deactivate users",
    P.USER_RESET_PASSWORD: "Reset user passwords",
    P.ROLE_READ: "View roles",
    P.ROLE_WRITE: "Create and edit roles",
    P.ROLE_DELETE: "Deactivate roles",
    P.ROLE_ASSIGN: "Assign roles",
    P.GROUP_READ: "View groups",
    P.GROUP_WRITE: "Create and edit groups",
    P.GROUP_DELETE: "Deactivate groups",
    P.GROUP_MANAGE_MEMBERS: "Manage group members",
    P.ACCESS_REQUEST_CREATE: "Request access",
    P.ACCESS_REQUEST_READ: "View access requests",
    P.ACCESS_REQUEST_WRITE: "Edit access requests",
    P.ACCESS_REQUEST_APPROVE: "Approve access requests",
    P.ACCESS_REVIEW_READ: "View access reviews",
    P.ACCESS_REVIEW_WRITE: "Run access reviews",
    P.ACCESS_REVIEW_DECIDE: "Decide access review items",
    P.AUDIT_READ: "View audit log",
    P.AUDIT_EXPORT: "Export audit log",
    P.API_KEY_READ: "View API keys",
    P.API_KEY_WRITE: "Create API keys",
    P.API_KEY_REVOKE: "Revoke API keys",
    P.ADVISOR_ASSIGNMENT_WRITE: "Manage advisor assignments",
    P.CROSS_TENANT: "Act across tenants",
}

PERMISSION_CATEGORIES: Dict[Permission, str] = {
    permission: permission.value.split(":")[1] for permission in Permission
}

ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

_TENANT_ADMIN_PERMISSIONS: FrozenSet[Permission] = ALL_PERMISSIONS - {
    P.CROSS_TENANT,
    P.ADVISOR_ASSIGNMENT_WRITE,
}

_READ_ONLY_PERMISSIONS: FrozenSet[Permission] = frozenset(
    {
        P.USER_READ,
        P.ROLE_READ,
        P.GROUP_READ,
        P.ACCESS_REQUEST_READ,
        P.ACCESS_REVIEW_READ,
        P.AUDIT_READ,
    }
)

TIER_DEFAULT_PERMISSIONS: Dict[RoleTier, FrozenSet[Permission]] = {
    RoleTier.PLATFORM_ADMIN: ALL_PERMISSIONS,
    RoleTier.TENANT_MANAGER: frozenset(
        {
            P.USER_READ,
            P.USER_WRITE,
            P.ROLE_READ,
            P.ROLE_ASSIGN,
            P.GROUP_READ,
            P.GROUP_WRITE,
            P.GROUP_MANAGE_MEMBERS,
            P.ACCESS_REQUEST_CREATE,
            P.ACCESS_REQUEST_READ,
            P.ACCESS_REQUEST_APPROVE,
            P.ACCESS_REVIEW_READ,
            P.ACCESS_REVIEW_WRITE,
            P.ACCESS_REVIEW_DECIDE,
            P.AUDIT_READ,
        }
    ),
    RoleTier.ADVISOR: frozenset(
        {
            P.USER_READ,
            P.ROLE_READ,
            P.GROUP_READ,
            P.ACCESS_REQUEST_CREATE,
            P.ACCESS_REVIEW_READ,
            P.AUDIT_READ,
        }
    ),
    RoleTier.CUSTOMER: frozenset({P.ACCESS_REQUEST_CREATE}),
}

SYSTEM_ROLE_PERMISSIONS: Dict[SystemRole, FrozenSet[Permission]] = {
    SystemRole.GLOBAL_ADMIN: ALL_PERMISSIONS,
    SystemRole.TENANT_ADMIN: _TENANT_ADMIN_PERMISSIONS,
    SystemRole.ADVISOR_ADMIN: _READ_ONLY_PERMISSIONS | {P.ACCESS_REVIEW_DECIDE},
    SystemRole.AUDITOR: _READ_ONLY_PERMISSIONS | {P.AUDIT_EXPORT},
}

SYSTEM_ROLE_NAMES: Dict[SystemRole, str] = {
    SystemRole.GLOBAL_ADMIN: "Global Admin",
    SystemRole.TENANT_ADMIN: "Tenant Admin",
    SystemRole.ADVISOR_ADMIN: "Advisor Admin",
    SystemRole.AUDITOR: "Auditor",
}


def tier_defaults(tier: RoleTier) -> FrozenSet[Permission]:
    return TIER_DEFAULT_PERMISSIONS[tier]


def catalog_entries() -> List[dict]:
    """UI-facing listing, in declaration order."""
    return [
        {
            "key": permission.value,
            "label": PERMISSION_LABELS[permission],
            "category": PERMISSION_CATEGORIES[permission],
        }
        for permission in Permission
    ]


def parse_permissions(keys: Iterable[str]) -> FrozenSet[Permission]:
    """Convert raw keys to catalog members. Unknown keys raise IamValidationError."""
    parsed = set()
    invalid = []
    for key in keys:
        try:
            parsed.add(Permission(key))
        except ValueError:
            invalid.append(str(key))
    if invalid:
        raise IamValidationError(f"Invalid permissions: {', '.join(sorted(invalid))}")
    return frozenset(parsed)

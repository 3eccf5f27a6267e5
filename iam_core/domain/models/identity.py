"""Identity entities: principals, roles, groups and the closed value sets they use."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional


class Permission(str, Enum):
    """Every permission key the platform knows. Keys outside this set cannot be granted."""

    USER_READ = "iam:user:read"
    USER_WRITE = "iam:user:write"
    USER_DELETE = "iam:user:delete"
    USER_RESET_PASSWORD = "iam:user:reset_password"
    ROLE_READ = "iam:role:read"
    ROLE_WRITE = "iam:role:write"
    ROLE_DELETE = "iam:role:delete"
    ROLE_ASSIGN = "iam:role:assign"
    GROUP_READ = "iam:group:read"
    GROUP_WRITE = "iam:group:write"
    GROUP_DELETE = "iam:group:delete"
    GROUP_MANAGE_MEMBERS = "iam:group:manage_members"
    ACCESS_REQUEST_CREATE = "iam:access_request:create"
    ACCESS_REQUEST_READ = "iam:access_request:read"
    ACCESS_REQUEST_WRITE = "iam:access_request:write"
    ACCESS_REQUEST_APPROVE = "iam:access_request:approve"
    ACCESS_REVIEW_READ = "iam:access_review:read"
    ACCESS_REVIEW_WRITE = "iam:access_review:write"
    ACCESS_REVIEW_DECIDE = "iam:access_review:decide"
    AUDIT_READ = "iam:audit:read"
    AUDIT_EXPORT = "iam:audit:export"
    API_KEY_READ = "iam:api_key:read"
    API_KEY_WRITE = "iam:api_key:write"
    API_KEY_REVOKE = "iam:api_key:revoke"
    ADVISOR_ASSIGNMENT_WRITE = "iam:advisor_assignment:write"
    CROSS_TENANT = "iam:cross_tenant"


class RoleTier(str, Enum):
    """Coarse role tier carrying a default permission bundle."""

    PLATFORM_ADMIN = "platform_admin"
    TENANT_MANAGER = "tenant_manager"
    ADVISOR = "advisor"
    CUSTOMER = "customer"


class SystemRole(str, Enum):
    """Seeded, immutable roles."""

    GLOBAL_ADMIN = "global_admin"
    TENANT_ADMIN = "tenant_admin"
    ADVISOR_ADMIN = "advisor_admin"
    AUDITOR = "auditor"


class PrincipalStatus(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"
    DEACTIVATED = "deactivated"


class PrincipalType(str, Enum):
    USER = "user"
    SERVICE_ACCOUNT = "service_account"
    SYSTEM = "system"


@dataclass(frozen=True)
class Principal:
    """
    A user or service identity. Platform-tier principals have no home tenant.
    Assignments are replaced wholesale via dataclasses.replace; never mutated in place.
    """

    principal_id: str
    tier: RoleTier
    tenant_id: Optional[str] = None
    role_ids: FrozenSet[str] = frozenset()
    group_ids: FrozenSet[str] = frozenset()
    status: PrincipalStatus = PrincipalStatus.ACTIVE
    email: str = ""
    display_name: str = ""
    principal_type: PrincipalType = PrincipalType.USER
    lock_reason: Optional[str] = None

    @property
    def is_platform(self) -> bool:
        return self.tier == RoleTier.PLATFORM_ADMIN

    @property
    def is_locked(self) -> bool:
        """Locked and deactivated principals carry no permissions."""
        return self.status != PrincipalStatus.ACTIVE

    def with_roles(self, role_ids) -> "Principal":
        return replace(self, role_ids=frozenset(role_ids))

    def with_groups(self, group_ids) -> "Principal":
        return replace(self, group_ids=frozenset(group_ids))


@dataclass(frozen=True)
class Role:
    """Named set of permission keys. tenant_id None means global scope."""

    role_id: str
    name: str
    permissions: FrozenSet[Permission]
    tenant_id: Optional[str] = None
    is_system: bool = False
    system_role: Optional[SystemRole] = None
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    def in_scope_for(self, tenant_id: Optional[str]) -> bool:
        """Global roles apply everywhere; tenant roles only inside their tenant."""
        return self.tenant_id is None or self.tenant_id == tenant_id

    def audit_state(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "permissions": sorted(p.value for p in self.permissions),
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class Group:
    """Named collection of members and roles. tenant_id None means platform group."""

    group_id: str
    name: str
    tenant_id: Optional[str] = None
    member_ids: FrozenSet[str] = field(default_factory=frozenset)
    role_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_active: bool = True
    description: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def is_platform_group(self) -> bool:
        return self.tenant_id is None

    def in_scope_for(self, tenant_id: Optional[str]) -> bool:
        return self.tenant_id is None or self.tenant_id == tenant_id

    def audit_state(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "members": sorted(self.member_ids),
            "roles": sorted(self.role_ids),
            "is_active": self.is_active,
        }

"""Security: permission catalog, resolution, tenant isolation, decision point. No FastAPI."""

from iam_core.security.decision_point import (
    AccessDecision,
    AccessDecisionPoint,
    DecisionReason,
    MatchMode,
)
from iam_core.security.resolver import PermissionResolver, resolve_permissions
from iam_core.security.tenant_context import (
    TenantGuard,
    TenantSources,
    resolve_tenant_context,
)

__all__ = [
    "AccessDecision",
    "AccessDecisionPoint",
    "DecisionReason",
    "MatchMode",
    "PermissionResolver",
    "resolve_permissions",
    "TenantGuard",
    "TenantSources",
    "resolve_tenant_context",
]

"""Security tests: the decision point checks permissions, then the tenant boundary."""

from dataclasses import replace

import pytest

from iam_core.domain.exceptions import ErrorCode, PermissionDeniedError, TenantAccessDeniedError
from iam_core.domain.models.identity import Permission, Principal, PrincipalStatus, RoleTier
from iam_core.security.decision_point import DecisionReason, MatchMode, satisfies

P = Permission


def test_all_mode_with_nothing_required_passes():
    assert satisfies(frozenset(), frozenset(), MatchMode.ALL)


def test_any_mode_with_nothing_required_fails():
    assert not satisfies(frozenset({P.USER_READ}), frozenset(), MatchMode.ANY)


def test_any_mode_needs_one_overlap():
    granted = frozenset({P.USER_READ})
    assert satisfies(granted, frozenset({P.USER_READ, P.USER_WRITE}), MatchMode.ANY)
    assert not satisfies(granted, frozenset({P.USER_READ, P.USER_WRITE}), MatchMode.ALL)


async def test_manager_reads_audit_in_home_tenant(services, manager_a):
    decision = await services.access.decide(manager_a, [P.AUDIT_READ], resource_tenant_id="tenant-a")
    assert decision.allowed
    assert decision.reason == DecisionReason.ALLOWED


async def test_manager_denied_in_foreign_tenant(services, manager_a):
    decision = await services.access.decide(manager_a, [P.AUDIT_READ], resource_tenant_id="tenant-b")
    assert not decision.allowed
    assert decision.reason == DecisionReason.TENANT_ACCESS_DENIED


async def test_permission_checked_before_tenant(services, customer_a):
    decision = await services.access.decide(customer_a, [P.AUDIT_READ], resource_tenant_id="tenant-b")
    assert decision.reason == DecisionReason.PERMISSION_DENIED
    assert decision.missing == {P.AUDIT_READ}


async def test_advisor_scenario(services, platform_admin, advisor):
    """Advisor without assignment is refused, gains access when assigned, loses it when unassigned."""
    required = [P.ACCESS_REVIEW_READ]
    assert not (await services.access.decide(advisor, required, resource_tenant_id="tenant-a")).allowed

    assignment = await services.advisors.assign(platform_admin, advisor.principal_id, "tenant-a")
    assert (await services.access.decide(advisor, required, resource_tenant_id="tenant-a")).allowed
    assert not (await services.access.decide(advisor, required, resource_tenant_id="tenant-b")).allowed

    await services.advisors.deactivate(platform_admin, assignment.assignment_id)
    assert not (await services.access.decide(advisor, required, resource_tenant_id="tenant-a")).allowed


async def test_require_raises_permission_denied_naming_missing_keys(services, customer_a):
    with pytest.raises(PermissionDeniedError) as exc_info:
        await services.access.require(
            customer_a, [P.USER_DELETE, P.ROLE_WRITE], resource_tenant_id="tenant-a"
        )
    assert "iam:user:delete" in exc_info.value.message
    assert "iam:role:write" in exc_info.value.message


async def test_require_tenant_denial_reads_like_not_found(services, manager_a):
    with pytest.raises(TenantAccessDeniedError) as exc_info:
        await services.access.require(manager_a, [P.USER_READ], resource_tenant_id="tenant-b")
    assert exc_info.value.external_code == ErrorCode.NOT_FOUND
    assert exc_info.value.message == "Resource not found"


async def test_locked_principal_is_denied_everything(services, manager_a):
    locked = replace(manager_a, status=PrincipalStatus.LOCKED)
    decision = await services.access.decide(locked, [P.USER_READ], resource_tenant_id="tenant-a")
    assert decision.reason == DecisionReason.PERMISSION_DENIED


async def test_platform_admin_allowed_without_tenant(services):
    root = Principal("root", RoleTier.PLATFORM_ADMIN)
    assert (await services.access.decide(root, [P.CROSS_TENANT])).allowed


async def test_stale_tenant_context_is_denied(services, manager_a):
    decision = await services.access.decide(
        manager_a, [], tenant_context="tenant-b", resource_tenant_id="tenant-a"
    )
    assert not decision.allowed
    assert decision.reason == DecisionReason.TENANT_ACCESS_DENIED
    assert decision.detail == "stale_tenant_context"


async def test_require_permissions_skips_tenant_check(services, manager_a, customer_a):
    await services.access.require_permissions(manager_a, [P.AUDIT_READ])
    with pytest.raises(PermissionDeniedError) as exc_info:
        await services.access.require_permissions(customer_a, [P.AUDIT_READ])
    assert exc_info.value.message == "Permission denied: iam:audit:read"

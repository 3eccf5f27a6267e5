"""Shared fixtures: principals across tiers and an in-memory service container."""

import pytest

from iam_core.application.role_service import system_role_id
from iam_core.bootstrap import build_services
from iam_core.config.settings import IamSettings
from iam_core.domain.models.identity import Principal, RoleTier, SystemRole
from iam_core.infrastructure.memory import InMemoryPrincipalRepository

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


@pytest.fixture
def settings():
    return IamSettings(environment="test", campaign_write_retries=5, audit_page_limit=20)


@pytest.fixture
def platform_admin():
    return Principal("admin-1", RoleTier.PLATFORM_ADMIN, email="admin@platform.test")


@pytest.fixture
def tenant_admin():
    return Principal(
        "tadmin-a",
        RoleTier.TENANT_MANAGER,
        tenant_id=TENANT_A,
        role_ids=frozenset({system_role_id(SystemRole.TENANT_ADMIN)}),
        email="tadmin@a.test",
    )


@pytest.fixture
def manager_a():
    return Principal("mgr-a", RoleTier.TENANT_MANAGER, tenant_id=TENANT_A, email="mgr@a.test")


@pytest.fixture
def manager_b():
    return Principal("mgr-b", RoleTier.TENANT_MANAGER, tenant_id=TENANT_B, email="mgr@b.test")


@pytest.fixture
def customer_a():
    return Principal("cust-a", RoleTier.CUSTOMER, tenant_id=TENANT_A, email="cust@a.test")


@pytest.fixture
def advisor():
    return Principal("adv-1", RoleTier.ADVISOR, email="adv@advisors.test")


@pytest.fixture
def principal_repository(platform_admin, tenant_admin, manager_a, manager_b, customer_a, advisor):
    return InMemoryPrincipalRepository(
        [platform_admin, tenant_admin, manager_a, manager_b, customer_a, advisor]
    )


@pytest.fixture
async def services(settings, principal_repository):
    container = build_services(settings, principal_repository=principal_repository)
    await container.roles.seed_system_roles()
    return container

"""Infrastructure tests: SQL stores against SQLite via aiosqlite."""

from datetime import datetime, timedelta, timezone

import pytest

from iam_core.bootstrap import build_sql_services
from iam_core.config.settings import IamSettings
from iam_core.domain.exceptions import ConflictError, NotFoundError
from iam_core.domain.models.assignment import AdvisorAssignment
from iam_core.domain.models.campaign import (
    AccessReviewCampaign,
    CampaignItem,
    CampaignStatus,
    CampaignSubject,
    PrivilegeLevel,
    recompute,
)
from iam_core.governance.audit_models import ActorType, AuditAction, IamAuditLogEntry
from iam_core.governance.audit_repository import AuditQuery
from iam_core.infrastructure.database.repositories import (
    DbAssignmentRepository,
    DbAuditRepository,
    DbCampaignRepository,
)
from iam_core.infrastructure.database.session import (
    create_engine,
    create_session_factory,
    init_models,
)

NOW = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory(tmp_path):
    settings = IamSettings(environment="test", database_url=f"sqlite+aiosqlite:///{tmp_path}/iam.db")
    engine = create_engine(settings)
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


def _assignment(assignment_id, advisor_id="adv-1", tenant_id="tenant-a", primary=False, offset=0):
    return AdvisorAssignment(
        assignment_id=assignment_id,
        advisor_id=advisor_id,
        tenant_id=tenant_id,
        assigned_at=NOW + timedelta(minutes=offset),
        is_primary=primary,
    )


def _entry(entry_id, tenant_id="tenant-a", action=AuditAction.ROLE_CREATED):
    return IamAuditLogEntry(
        entry_id=entry_id,
        actor_id="mgr-a",
        actor_type=ActorType.USER,
        action=action,
        target_type="role",
        target_id=f"role-{entry_id}",
        created_at=NOW,
        tenant_id=tenant_id,
        after={"name": entry_id},
    )


def _campaign():
    campaign = AccessReviewCampaign(
        campaign_id="c-1",
        tenant_id="tenant-a",
        name="Q2",
        system_name="CRM",
        created_by="mgr-a",
        created_at=NOW,
        subjects=[
            CampaignSubject(
                "s-1",
                "cust-a",
                "Casey",
                "cust@a.test",
                items=[CampaignItem("i-1", "crm", "admin", PrivilegeLevel.ADMIN)],
            )
        ],
    )
    return recompute(campaign)


def test_create_engine_requires_url():
    with pytest.raises(RuntimeError):
        create_engine(IamSettings(environment="test", database_url=None))


async def test_assignment_round_trip(session_factory):
    repo = DbAssignmentRepository(session_factory)
    stored = await repo.add(_assignment("as-1"))
    loaded = await repo.get("as-1")
    assert loaded == stored
    assert loaded.assigned_at.tzinfo is not None
    assert await repo.find_active("adv-1", "tenant-a") == loaded


async def test_duplicate_active_pair_conflicts(session_factory):
    repo = DbAssignmentRepository(session_factory)
    await repo.add(_assignment("as-1"))
    with pytest.raises(ConflictError) as exc_info:
        await repo.add(_assignment("as-2"))
    assert "already has an active assignment" in exc_info.value.message


async def test_duplicate_assignment_id_conflicts_by_name(session_factory):
    repo = DbAssignmentRepository(session_factory)
    await repo.add(_assignment("as-1"))
    with pytest.raises(ConflictError) as exc_info:
        await repo.add(_assignment("as-1", advisor_id="adv-2", offset=1))
    assert exc_info.value.message == "Assignment already exists: as-1"


async def test_primary_race_is_reported_as_retryable(session_factory, monkeypatch):
    repo = DbAssignmentRepository(session_factory)
    await repo.add(_assignment("as-1", advisor_id="adv-1", primary=True))

    async def concurrent_primary_survives(session, tenant_id, keep_id=None):
        return None

    monkeypatch.setattr(repo, "_clear_primaries", concurrent_primary_survives)
    with pytest.raises(ConflictError) as exc_info:
        await repo.add(_assignment("as-2", advisor_id="adv-2", primary=True, offset=1))
    assert "changed concurrently" in exc_info.value.message
    assert [a.assignment_id for a in await repo.list_for_tenant("tenant-a")] == ["as-1"]


async def test_pair_can_be_reused_after_deactivation(session_factory):
    repo = DbAssignmentRepository(session_factory)
    first = await repo.add(_assignment("as-1"))
    await repo.save(first.deactivated(NOW))
    await repo.add(_assignment("as-2", offset=1))
    assert [a.assignment_id for a in await repo.list_for_tenant("tenant-a")] == ["as-2"]
    assert len(await repo.list_for_tenant("tenant-a", active_only=False)) == 2


async def test_primary_is_exclusive_per_tenant(session_factory):
    repo = DbAssignmentRepository(session_factory)
    await repo.add(_assignment("as-1", advisor_id="adv-1", primary=True))
    await repo.add(_assignment("as-2", advisor_id="adv-2", primary=True, offset=1))
    assert [a.assignment_id for a in await repo.list_for_tenant("tenant-a") if a.is_primary] == ["as-2"]

    updated = await repo.set_primary("tenant-a", "as-1")
    assert updated.is_primary
    assert [a.assignment_id for a in await repo.list_for_tenant("tenant-a") if a.is_primary] == ["as-1"]


async def test_set_primary_checks_tenant_and_state(session_factory):
    repo = DbAssignmentRepository(session_factory)
    assignment = await repo.add(_assignment("as-1"))
    with pytest.raises(NotFoundError):
        await repo.set_primary("tenant-b", "as-1")
    await repo.save(assignment.deactivated(NOW))
    with pytest.raises(ConflictError):
        await repo.set_primary("tenant-a", "as-1")


async def test_list_for_advisor(session_factory):
    repo = DbAssignmentRepository(session_factory)
    await repo.add(_assignment("as-1", tenant_id="tenant-a"))
    await repo.add(_assignment("as-2", tenant_id="tenant-b", offset=1))
    assert [a.tenant_id for a in await repo.list_for_advisor("adv-1")] == ["tenant-a", "tenant-b"]


async def test_audit_sequence_is_assigned_by_store(session_factory):
    repo = DbAuditRepository(session_factory)
    first = await repo.append(_entry("e-1"))
    second = await repo.append(_entry("e-2"))
    assert first.sequence >= 1
    assert second.sequence > first.sequence


async def test_audit_query_filters_and_pages(session_factory):
    repo = DbAuditRepository(session_factory)
    for n in range(5):
        await repo.append(_entry(f"e-{n}"))
    await repo.append(_entry("e-b", tenant_id="tenant-b"))
    await repo.append(_entry("e-p", tenant_id=None, action=AuditAction.SYSTEM_ROLES_SEEDED))

    page = await repo.query(AuditQuery(tenant_id="tenant-a", limit=2, offset=1))
    assert page.total == 5
    assert [e.entry_id for e in page.entries] == ["e-1", "e-2"]
    assert page.entries[0].after == {"name": "e-1"}
    assert page.entries[0].created_at == NOW

    with_platform = await repo.query(AuditQuery(tenant_id="tenant-a", include_platform=True))
    assert with_platform.total == 6
    seeded = await repo.query(AuditQuery(action=AuditAction.SYSTEM_ROLES_SEEDED))
    assert [e.entry_id for e in seeded.entries] == ["e-p"]


async def test_campaign_compare_and_set(session_factory):
    repo = DbCampaignRepository(session_factory)
    campaign = _campaign()
    await repo.add(campaign)
    with pytest.raises(ConflictError):
        await repo.add(campaign)

    loaded = await repo.get("c-1")
    assert loaded.version == 0
    assert loaded.approvals.second_level_required
    loaded.transition_to(CampaignStatus.IN_REVIEW)
    assert await repo.compare_and_set(loaded, 0)
    assert not await repo.compare_and_set(loaded, 0)

    reloaded = await repo.get("c-1")
    assert reloaded.version == 1
    assert reloaded.status == CampaignStatus.IN_REVIEW


async def test_campaign_list_and_delete(session_factory):
    repo = DbCampaignRepository(session_factory)
    await repo.add(_campaign())
    assert [c.campaign_id for c in await repo.list_for_tenant("tenant-a")] == ["c-1"]
    assert await repo.list_for_tenant("tenant-b") == []
    await repo.delete("c-1")
    assert await repo.get("c-1") is None


async def test_sql_services_wire_the_sql_stores(session_factory, platform_admin, advisor, principal_repository):
    services = build_sql_services(
        session_factory,
        IamSettings(environment="test"),
        principal_repository=principal_repository,
    )
    await services.advisors.assign(platform_admin, advisor.principal_id, "tenant-a", primary=True)
    assert await services.tenant_guard.accessible_tenants(advisor) == ["tenant-a"]
    page = await services.audit.query(AuditQuery(action=AuditAction.ADVISOR_ASSIGNED))
    assert page.total == 1

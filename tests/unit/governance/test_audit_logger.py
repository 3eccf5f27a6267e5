"""Governance tests: audit writes never fail the caller; diffs are minimal and redacted."""

import csv
import io
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from iam_core.bootstrap import build_services
from iam_core.core.context import correlation_id_ctx
from iam_core.domain.models.identity import Principal, PrincipalType, RoleTier
from iam_core.governance.audit_logger import REDACTED, AuditRecorder, compute_diff, sanitize
from iam_core.governance.audit_models import ActorType, AuditAction
from iam_core.governance.audit_repository import AuditQuery
from iam_core.infrastructure.memory import InMemoryAuditRepository

SENSITIVE = ("password", "api_key", "secret")


@pytest.fixture
def audit_repository():
    return InMemoryAuditRepository()


@pytest.fixture
def recorder(audit_repository, settings):
    return AuditRecorder(audit_repository, settings)


@pytest.fixture
def actor():
    return Principal("mgr-a", RoleTier.TENANT_MANAGER, tenant_id="tenant-a", email="mgr@a.test")


async def _record(recorder, actor, **kwargs):
    defaults = dict(
        actor=actor,
        action=AuditAction.ROLE_UPDATED,
        target_type="role",
        target_id="role-1",
        tenant_id="tenant-a",
    )
    defaults.update(kwargs)
    return await recorder.record(**defaults)


def test_diff_keeps_only_changed_keys():
    before, after = compute_diff(
        {"name": "Ops", "description": "x", "is_active": True},
        {"name": "Ops", "description": "y", "is_active": True},
    )
    assert before == {"description": "x"}
    assert after == {"description": "y"}


def test_diff_handles_added_and_removed_keys():
    before, after = compute_diff({"a": 1, "gone": 2}, {"a": 1, "new": 3})
    assert before == {"gone": 2}
    assert after == {"new": 3}


def test_diff_passes_through_create_and_delete():
    assert compute_diff(None, {"name": "Ops"}) == (None, {"name": "Ops"})
    assert compute_diff({"name": "Ops"}, None) == ({"name": "Ops"}, None)


def test_sensitive_values_are_redacted_at_any_depth():
    cleaned = sanitize(
        {"Password": "hunter2", "nested": {"api-key": "k", "items": [{"secret": "s", "ok": 1}]}},
        SENSITIVE,
    )
    assert cleaned["Password"] == REDACTED
    assert cleaned["nested"]["api-key"] == REDACTED
    assert cleaned["nested"]["items"] == [{"secret": REDACTED, "ok": 1}]


async def test_record_stores_actor_and_sequence(recorder, actor):
    first = await _record(recorder, actor, before={"name": "a"}, after={"name": "b"})
    second = await _record(recorder, actor)
    assert first.sequence == 1
    assert second.sequence == 2
    assert first.actor_id == "mgr-a"
    assert first.actor_email == "mgr@a.test"
    assert first.actor_type == ActorType.USER
    assert first.before == {"name": "a"}


async def test_system_and_service_actors(recorder):
    system_entry = await recorder.record(
        actor=None, action=AuditAction.SYSTEM_ROLES_SEEDED, target_type="role", target_id="system"
    )
    assert system_entry.actor_id == "system"
    assert system_entry.actor_type == ActorType.SYSTEM

    bot = Principal("svc-1", RoleTier.CUSTOMER, tenant_id="tenant-a", principal_type=PrincipalType.SERVICE_ACCOUNT)
    bot_entry = await _record(recorder, bot)
    assert bot_entry.actor_type == ActorType.SERVICE_ACCOUNT


async def test_correlation_id_is_captured(recorder, actor):
    token = correlation_id_ctx.set("corr-123")
    try:
        entry = await _record(recorder, actor)
    finally:
        correlation_id_ctx.reset(token)
    assert entry.correlation_id == "corr-123"


async def test_failed_write_is_logged_and_swallowed(settings, actor, caplog):
    repository = AsyncMock()
    repository.append = AsyncMock(side_effect=RuntimeError("disk full"))
    recorder = AuditRecorder(repository, settings)

    with caplog.at_level(logging.ERROR, logger="iam_core.governance.audit_logger"):
        result = await _record(recorder, actor)

    assert result is None
    assert recorder.failure_count == 1
    assert any(r.getMessage() == "audit_write_failed" for r in caplog.records)


async def test_failed_audit_does_not_fail_the_operation(settings, principal_repository, manager_a, customer_a):
    failing = AsyncMock()
    failing.append = AsyncMock(side_effect=RuntimeError("audit store down"))
    services = build_services(settings, principal_repository=principal_repository, audit_repository=failing)
    updated = await services.principals.lock(manager_a, customer_a.principal_id, "review")
    assert updated.is_locked
    assert services.audit.failure_count == 1


async def test_query_filters_and_caps_limit(recorder, actor, settings):
    for n in range(30):
        await _record(recorder, actor, target_id=f"role-{n}")
    await _record(recorder, actor, tenant_id="tenant-b")

    page = await recorder.query(AuditQuery(tenant_id="tenant-a", limit=1000))
    assert page.total == 30
    assert page.limit == settings.audit_page_limit
    assert len(page.entries) == settings.audit_page_limit
    assert [e.sequence for e in page.entries] == sorted(e.sequence for e in page.entries)

    second = await recorder.query(AuditQuery(tenant_id="tenant-a", offset=25))
    assert len(second.entries) == 5


async def test_query_include_platform_entries(recorder, actor):
    await _record(recorder, actor)
    await _record(recorder, None, tenant_id=None, action=AuditAction.SYSTEM_ROLES_SEEDED)
    tenant_only = await recorder.query(AuditQuery(tenant_id="tenant-a"))
    with_platform = await recorder.query(AuditQuery(tenant_id="tenant-a", include_platform=True))
    assert tenant_only.total == 1
    assert with_platform.total == 2


async def test_query_time_window(recorder, actor):
    entry = await _record(recorder, actor)
    later = entry.created_at + timedelta(seconds=1)
    assert (await recorder.query(AuditQuery(since=later))).total == 0
    assert (await recorder.query(AuditQuery(until=later))).total == 1
    assert (await recorder.query(AuditQuery(since=datetime(2000, 1, 1, tzinfo=timezone.utc)))).total == 1


async def test_history_for_target(recorder, actor):
    await _record(recorder, actor, target_id="role-1")
    await _record(recorder, actor, target_id="role-2")
    page = await recorder.history_for("role", "role-1")
    assert [e.target_id for e in page.entries] == ["role-1"]


async def test_render_csv_serializes_changes(recorder, actor):
    await _record(recorder, actor, before={"name": "a", "password": "x"}, after={"name": "b", "password": "y"})
    content = await recorder.render_csv(AuditQuery(tenant_id="tenant-a"))
    rows = list(csv.DictReader(io.StringIO(content)))
    assert len(rows) == 1
    assert rows[0]["action"] == "role_updated"
    assert rows[0]["before"] == '{"name": "a", "password": "[REDACTED]"}'

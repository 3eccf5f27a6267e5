"""Governance tests: campaign evidence export for auditors."""

import csv
import io
from datetime import datetime, timezone

import pytest

from iam_core.domain.exceptions import NotFoundError, PermissionDeniedError, TenantAccessDeniedError
from iam_core.domain.models.campaign import DecisionReasonCode, DecisionType, PrivilegeLevel
from iam_core.domain.schemas.payloads import (
    CampaignDefinition,
    DecisionRequest,
    ItemSnapshot,
    SubjectSnapshot,
)
from iam_core.governance.audit_models import AuditAction
from iam_core.governance.audit_repository import AuditQuery
from iam_core.governance.evidence_export import EVIDENCE_COLUMNS


@pytest.fixture
async def campaign(services, manager_a):
    when = datetime(2026, 2, 1, tzinfo=timezone.utc)
    created = await services.campaigns.create_campaign(
        manager_a,
        "tenant-a",
        CampaignDefinition(
            name="Payroll review",
            system_name="Payroll",
            period_start=when,
            period_end=when,
            due_date=when,
        ),
        [
            SubjectSnapshot(
                subject_id="cust-a",
                full_name="Casey",
                email="cust@a.test",
                items=[
                    ItemSnapshot(application="payroll", role_name="viewer", privilege_level=PrivilegeLevel.READ_ONLY),
                    ItemSnapshot(application="payroll", role_name="owner", privilege_level=PrivilegeLevel.ADMIN),
                ],
            )
        ],
    )
    viewer = created.subjects[0].items[0].item_id
    return await services.campaigns.record_decision(
        manager_a,
        created.campaign_id,
        viewer,
        DecisionRequest(
            decision_type=DecisionType.REMOVE,
            reason_code=DecisionReasonCode.NO_LONGER_REQUIRED,
            comments="moved to sales",
        ),
    )


async def test_export_has_one_row_per_item(services, manager_a, campaign):
    content = await services.evidence.export_csv(manager_a, campaign.campaign_id)
    reader = csv.DictReader(io.StringIO(content))
    rows = list(reader)
    assert tuple(reader.fieldnames) == EVIDENCE_COLUMNS
    assert len(rows) == 2

    viewer, owner = rows
    assert viewer["decision"] == "remove"
    assert viewer["reason_code"] == "no_longer_required"
    assert viewer["reviewer_id"] == manager_a.principal_id
    assert viewer["comments"] == "moved to sales"
    assert owner["decision"] == "pending"
    assert owner["is_privileged"] == "yes"
    assert owner["reviewer_id"] == ""


async def test_export_is_audited(services, manager_a, campaign):
    await services.evidence.export_csv(manager_a, campaign.campaign_id)
    page = await services.audit_repository.query(
        AuditQuery(target_id=campaign.campaign_id, action=AuditAction.CAMPAIGN_EXPORTED)
    )
    assert page.total == 1


async def test_export_under_wrong_tenant_is_not_found(services, platform_admin, campaign):
    with pytest.raises(NotFoundError):
        await services.evidence.export_csv(platform_admin, campaign.campaign_id, tenant_id="tenant-b")


async def test_export_requires_read_permission(services, customer_a, campaign):
    with pytest.raises(PermissionDeniedError):
        await services.evidence.export_csv(customer_a, campaign.campaign_id)


async def test_audit_log_export_requires_export_permission(services, manager_a):
    with pytest.raises(PermissionDeniedError):
        await services.evidence.export_audit_log(manager_a, "tenant-a")


async def test_audit_log_export_is_tenant_scoped_and_audited(services, tenant_admin, campaign):
    content = await services.evidence.export_audit_log(tenant_admin, "tenant-a")
    rows = list(csv.DictReader(io.StringIO(content)))
    assert rows
    assert {r["tenant_id"] for r in rows} == {"tenant-a"}

    page = await services.audit_repository.query(
        AuditQuery(action=AuditAction.AUDIT_EXPORTED, target_id="tenant-a")
    )
    assert page.total == 1
    assert page.entries[0].actor_id == tenant_admin.principal_id


async def test_audit_log_export_of_other_tenant_reads_as_missing(services, tenant_admin):
    with pytest.raises(TenantAccessDeniedError):
        await services.evidence.export_audit_log(tenant_admin, "tenant-b")

"""Campaign evidence for auditors: one row per item with the decision trail."""

import csv
import io
from dataclasses import replace
from typing import Dict, List, Optional

from iam_core.domain.exceptions import NotFoundError
from iam_core.domain.models.campaign import AccessReviewCampaign
from iam_core.domain.models.identity import Permission, Principal
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.governance.audit_repository import AuditQuery
from iam_core.governance.campaign_engine import CampaignEngine
from iam_core.security.decision_point import AccessDecisionPoint

EVIDENCE_COLUMNS = (
    "campaign_id",
    "campaign_name",
    "system_name",
    "campaign_status",
    "subject_id",
    "subject_name",
    "subject_email",
    "employment_type",
    "item_id",
    "application",
    "environment",
    "role_name",
    "entitlement_type",
    "privilege_level",
    "data_classification",
    "is_privileged",
    "decision",
    "reason_code",
    "requested_roles",
    "reviewer_id",
    "decided_at",
    "comments",
)


def export_campaign_rows(campaign: AccessReviewCampaign) -> List[Dict[str, str]]:
    rows = []
    for subject, item in campaign.iter_items():
        decision = item.decision
        rows.append(
            {
                "campaign_id": campaign.campaign_id,
                "campaign_name": campaign.name,
                "system_name": campaign.system_name,
                "campaign_status": campaign.status.value,
                "subject_id": subject.subject_id,
                "subject_name": subject.full_name,
                "subject_email": subject.email,
                "employment_type": subject.employment_type.value,
                "item_id": item.item_id,
                "application": item.application,
                "environment": item.environment.value,
                "role_name": item.role_name,
                "entitlement_type": item.entitlement_type.value,
                "privilege_level": item.privilege_level.value,
                "data_classification": item.data_classification.value,
                "is_privileged": "yes" if item.is_privileged else "no",
                "decision": item.decision_type.value,
                "reason_code": decision.reason_code.value if decision and decision.reason_code else "",
                "requested_roles": (
                    ";".join(decision.requested_change.role_ids)
                    if decision and decision.requested_change
                    else ""
                ),
                "reviewer_id": decision.decided_by or "" if decision else "",
                "decided_at": (
                    decision.decided_at.isoformat() if decision and decision.decided_at else ""
                ),
                "comments": decision.comments or "" if decision else "",
            }
        )
    return rows


def export_campaign_csv(campaign: AccessReviewCampaign) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EVIDENCE_COLUMNS)
    writer.writeheader()
    writer.writerows(export_campaign_rows(campaign))
    return buffer.getvalue()


class EvidenceExporter:
    """Authorized, audited exports: campaign evidence and the tenant audit log."""

    def __init__(
        self, engine: CampaignEngine, audit: AuditRecorder, access: AccessDecisionPoint
    ) -> None:
        self._engine = engine
        self._audit = audit
        self._access = access

    async def export_csv(
        self, actor: Principal, campaign_id: str, tenant_id: Optional[str] = None
    ) -> str:
        campaign = await self._engine.get_campaign(actor, campaign_id)
        if tenant_id is not None and campaign.tenant_id != tenant_id:
            raise NotFoundError(f"Campaign not found: {campaign_id}")
        content = export_campaign_csv(campaign)
        await self._audit.record(
            actor=actor,
            action=AuditAction.CAMPAIGN_EXPORTED,
            target_type="access_review_campaign",
            target_id=campaign.campaign_id,
            target_name=campaign.name,
            summary=f"Exported evidence for {campaign.total_items} item(s)",
            tenant_id=campaign.tenant_id,
        )
        return content

    async def export_audit_log(
        self, actor: Principal, tenant_id: str, query: Optional[AuditQuery] = None
    ) -> str:
        """Tenant audit entries as CSV. Requires AUDIT_EXPORT in that tenant."""
        await self._access.require(
            actor, [Permission.AUDIT_EXPORT], resource_tenant_id=tenant_id
        )
        scoped = replace(query or AuditQuery(), tenant_id=tenant_id, include_platform=False)
        content = await self._audit.render_csv(scoped)
        await self._audit.record(
            actor=actor,
            action=AuditAction.AUDIT_EXPORTED,
            target_type="audit_log",
            target_id=tenant_id,
            after={
                "action": scoped.action.value if scoped.action else None,
                "actor_id": scoped.actor_id,
                "target_type": scoped.target_type,
                "since": scoped.since.isoformat() if scoped.since else None,
                "until": scoped.until.isoformat() if scoped.until else None,
            },
            summary="Exported audit log",
            tenant_id=tenant_id,
        )
        return content

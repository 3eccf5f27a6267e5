"""Access API router: catalog, decisions, campaign reads, evidence and audit history."""

from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from iam_core.api.dependencies import get_principal, get_services, get_tenant_context
from iam_core.bootstrap import IamServices
from iam_core.domain.exceptions import NotFoundError
from iam_core.domain.models.identity import Permission, Principal
from iam_core.governance.audit_models import AuditAction
from iam_core.governance.audit_repository import AuditQuery
from iam_core.security.catalog import catalog_entries
from iam_core.security.decision_point import MatchMode

router = APIRouter()


class DecisionQuery(BaseModel):
    permissions: List[Permission] = Field(default_factory=list)
    mode: MatchMode = MatchMode.ALL
    resource_tenant_id: Optional[str] = None


@router.get("/catalog/permissions")
async def list_permissions():
    return catalog_entries()


@router.post("/decisions")
async def decide(
    body: DecisionQuery,
    principal: Annotated[Principal, Depends(get_principal)],
    tenant_context: Annotated[Optional[str], Depends(get_tenant_context)],
    services: Annotated[IamServices, Depends(get_services)],
):
    """Evaluate a permission check without side effects."""
    decision = await services.access.decide(
        principal,
        body.permissions,
        mode=body.mode,
        tenant_context=tenant_context,
        resource_tenant_id=body.resource_tenant_id,
    )
    return {"allowed": decision.allowed, "reason": decision.reason.value}


@router.get("/tenants/{tenant_id}/campaigns/{campaign_id}")
async def get_campaign(
    tenant_id: str,
    campaign_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    services: Annotated[IamServices, Depends(get_services)],
):
    campaign = await services.campaigns.get_campaign(principal, campaign_id)
    if campaign.tenant_id != tenant_id:
        raise NotFoundError(f"Campaign not found: {campaign_id}")
    return campaign.to_dict()


@router.get(
    "/tenants/{tenant_id}/campaigns/{campaign_id}/evidence",
    response_class=PlainTextResponse,
)
async def export_evidence(
    tenant_id: str,
    campaign_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    services: Annotated[IamServices, Depends(get_services)],
):
    return await services.evidence.export_csv(principal, campaign_id, tenant_id=tenant_id)


@router.get("/tenants/{tenant_id}/audit")
async def audit_history(
    tenant_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    services: Annotated[IamServices, Depends(get_services)],
    action: Optional[AuditAction] = None,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Tenant audit history, oldest first. limit is capped server-side."""
    await services.access.require(
        principal, [Permission.AUDIT_READ], resource_tenant_id=tenant_id
    )
    page = await services.audit.query(
        AuditQuery(
            tenant_id=tenant_id,
            action=action,
            actor_id=actor_id,
            target_type=target_type,
            target_id=target_id,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )
    )
    return {
        "entries": [e.to_dict() for e in page.entries],
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }


@router.get("/tenants/{tenant_id}/audit/export", response_class=PlainTextResponse)
async def export_audit_log(
    tenant_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    services: Annotated[IamServices, Depends(get_services)],
    action: Optional[AuditAction] = None,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
):
    """Tenant audit log as CSV, up to the configured export limit."""
    return await services.evidence.export_audit_log(
        principal,
        tenant_id,
        AuditQuery(action=action, actor_id=actor_id, target_type=target_type, since=since, until=until),
    )

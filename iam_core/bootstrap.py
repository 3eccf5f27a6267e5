"""Wire repositories and services together. In-memory by default; SQL stores where configured."""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from iam_core.application.advisor_ledger import AdvisorAssignmentLedger
from iam_core.application.group_service import GroupService
from iam_core.application.principal_service import PrincipalService
from iam_core.application.role_service import RoleService
from iam_core.config.settings import IamSettings, get_settings
from iam_core.governance.access_review import AccessReviewService
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.campaign_engine import CampaignEngine
from iam_core.governance.evidence_export import EvidenceExporter
from iam_core.infrastructure.database.repositories import (
    DbAssignmentRepository,
    DbAuditRepository,
    DbCampaignRepository,
)
from iam_core.infrastructure.memory import (
    InMemoryAccessReviewRepository,
    InMemoryAssignmentRepository,
    InMemoryAuditRepository,
    InMemoryCampaignRepository,
    InMemoryGroupRepository,
    InMemoryPrincipalRepository,
    InMemoryRoleRepository,
)
from iam_core.security.decision_point import AccessDecisionPoint
from iam_core.security.resolver import PermissionResolver
from iam_core.security.tenant_context import TenantGuard


@dataclass
class IamServices:
    settings: IamSettings
    principal_repository: Any
    role_repository: Any
    group_repository: Any
    assignment_repository: Any
    campaign_repository: Any
    review_repository: Any
    audit_repository: Any
    resolver: PermissionResolver
    tenant_guard: TenantGuard
    access: AccessDecisionPoint
    audit: AuditRecorder
    roles: RoleService
    groups: GroupService
    principals: PrincipalService
    advisors: AdvisorAssignmentLedger
    campaigns: CampaignEngine
    access_reviews: AccessReviewService
    evidence: EvidenceExporter


def build_services(
    settings: Optional[IamSettings] = None,
    *,
    principal_repository=None,
    role_repository=None,
    group_repository=None,
    assignment_repository=None,
    campaign_repository=None,
    review_repository=None,
    audit_repository=None,
) -> IamServices:
    """Any repository left as None gets its in-memory implementation."""
    settings = settings or get_settings()
    principal_repository = principal_repository or InMemoryPrincipalRepository()
    role_repository = role_repository or InMemoryRoleRepository()
    group_repository = group_repository or InMemoryGroupRepository()
    assignment_repository = assignment_repository or InMemoryAssignmentRepository()
    campaign_repository = campaign_repository or InMemoryCampaignRepository()
    review_repository = review_repository or InMemoryAccessReviewRepository()
    audit_repository = audit_repository or InMemoryAuditRepository()

    resolver = PermissionResolver(role_repository, group_repository)
    guard = TenantGuard(assignment_repository)
    access = AccessDecisionPoint(resolver, guard)
    audit = AuditRecorder(audit_repository, settings)
    principals = PrincipalService(
        principal_repository, role_repository, group_repository, access, resolver, audit
    )
    campaigns = CampaignEngine(campaign_repository, principals, access, audit, settings)

    return IamServices(
        settings=settings,
        principal_repository=principal_repository,
        role_repository=role_repository,
        group_repository=group_repository,
        assignment_repository=assignment_repository,
        campaign_repository=campaign_repository,
        review_repository=review_repository,
        audit_repository=audit_repository,
        resolver=resolver,
        tenant_guard=guard,
        access=access,
        audit=audit,
        roles=RoleService(role_repository, access, audit),
        groups=GroupService(group_repository, principal_repository, role_repository, access, audit),
        principals=principals,
        advisors=AdvisorAssignmentLedger(assignment_repository, principal_repository, access, audit),
        campaigns=campaigns,
        access_reviews=AccessReviewService(
            review_repository,
            principal_repository,
            role_repository,
            group_repository,
            resolver,
            principals,
            access,
            audit,
            settings,
        ),
        evidence=EvidenceExporter(campaigns, audit, access),
    )


def build_sql_services(
    session_factory: async_sessionmaker,
    settings: Optional[IamSettings] = None,
    **repositories,
) -> IamServices:
    """Advisor assignments, audit entries and campaigns in SQL; the rest as given or in memory."""
    return build_services(
        settings,
        assignment_repository=DbAssignmentRepository(session_factory),
        campaign_repository=DbCampaignRepository(session_factory),
        audit_repository=DbAuditRepository(session_factory),
        **repositories,
    )

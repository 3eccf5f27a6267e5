"""
Access review campaign engine. DRAFT -> IN_REVIEW -> SUBMITTED -> COMPLETED, closable from
any non-terminal state. Every write is compare-and-set on the campaign version. No FastAPI.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from iam_core.application.principal_service import PrincipalService
from iam_core.application.repositories import CampaignRepository
from iam_core.config.settings import IamSettings, get_settings
from iam_core.domain.exceptions import ConflictError, IamValidationError, NotFoundError
from iam_core.domain.models.campaign import (
    AccessReviewCampaign,
    CampaignApprovals,
    CampaignItem,
    CampaignStatus,
    CampaignSubject,
    CampaignWorkflow,
    DataClassification,
    DecisionType,
    EmploymentType,
    EnvironmentType,
    GrantMethod,
    ItemDecision,
    PrivilegeLevel,
    RemediationStatus,
    RequestedChange,
    SecondLevelDecision,
    apply_item_decision,
    new_id,
    recompute,
)
from iam_core.domain.models.identity import Permission, Principal
from iam_core.domain.schemas.payloads import CampaignDefinition, DecisionRequest, SubjectSnapshot
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.decision_point import AccessDecisionPoint

logger = logging.getLogger(__name__)

TARGET_TYPE = "access_review_campaign"
HIGH_RISK_THRESHOLD = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _status_state(campaign: AccessReviewCampaign) -> dict:
    return {
        "status": campaign.status.value,
        "completed_items": campaign.completed_items,
        "completed_subjects": campaign.completed_subjects,
        "second_level_required": campaign.approvals.second_level_required,
        "escalation_level": campaign.workflow.escalation_level,
        "remediation_status": (
            campaign.workflow.remediation_status.value
            if campaign.workflow.remediation_status
            else None
        ),
    }


def _to_decision(request: DecisionRequest, decided_by: str, at: datetime) -> ItemDecision:
    change = None
    if request.decision_type == DecisionType.CHANGE:
        change = RequestedChange(role_ids=tuple(request.new_role_ids), notes=request.change_notes)
    return ItemDecision(
        decision_type=request.decision_type,
        decided_by=decided_by,
        decided_at=at,
        reason_code=request.reason_code,
        comments=request.comments,
        requested_change=change,
    )


def _needs_remediation(campaign: AccessReviewCampaign) -> bool:
    return any(
        item.decision_type in (DecisionType.REMOVE, DecisionType.CHANGE)
        for _, item in campaign.iter_items()
    )


def _is_high_risk(item: CampaignItem) -> bool:
    return item.is_privileged or item.data_classification == DataClassification.RESTRICTED


def _ensure_decisions_open(campaign: AccessReviewCampaign) -> None:
    if campaign.is_terminal:
        raise ConflictError(
            f"Campaign {campaign.campaign_id} is {campaign.status.value}; decisions are closed"
        )
    if (
        campaign.status == CampaignStatus.SUBMITTED
        and campaign.approvals.second_decision != SecondLevelDecision.REJECTED
    ):
        raise ConflictError("Decisions are locked once a campaign is submitted")


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ItemSuggestion:
    item_id: str
    subject_key: str
    suggested_decision: DecisionType
    confidence: Confidence
    reasons: Tuple[str, ...]
    requires_manual_review: bool
    risk_score: int


@dataclass(frozen=True)
class SuggestionReport:
    suggestions: List[ItemSuggestion] = field(default_factory=list)
    total_items: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    require_manual_review: int = 0
    average_risk_score: int = 0
    high_risk_items: int = 0


def score_item(subject: CampaignSubject, item: CampaignItem) -> ItemSuggestion:
    """Deterministic risk score in [0, 100] from privilege, data, employment and environment."""
    reasons = []
    confidence = Confidence.HIGH
    manual = False
    score = 0

    def soften() -> None:
        nonlocal confidence
        if confidence == Confidence.HIGH:
            confidence = Confidence.MEDIUM

    if item.privilege_level in (PrivilegeLevel.STANDARD, PrivilegeLevel.READ_ONLY):
        reasons.append("Standard/read-only access level")
        score += 10
    elif item.privilege_level == PrivilegeLevel.ADMIN:
        reasons.append("Admin access requires careful review")
        manual, confidence = True, Confidence.LOW
        score += 60
    elif item.privilege_level == PrivilegeLevel.SUPER_ADMIN:
        reasons.append("Super admin access - highest risk level")
        manual, confidence = True, Confidence.LOW
        score += 90

    if item.data_classification == DataClassification.PUBLIC:
        reasons.append("Public data classification - minimal risk")
        score += 5
    elif item.data_classification == DataClassification.INTERNAL:
        reasons.append("Internal data - standard business access")
        score += 15
        soften()
    elif item.data_classification == DataClassification.CONFIDENTIAL:
        reasons.append("Confidential data - elevated review needed")
        score += 40
        if confidence != Confidence.LOW:
            confidence = Confidence.MEDIUM
    elif item.data_classification == DataClassification.RESTRICTED:
        reasons.append("Restricted data - high-sensitivity access")
        manual, confidence = True, Confidence.LOW
        score += 70

    if subject.employment_type == EmploymentType.CONTRACTOR:
        reasons.append("External contractor - verify access necessity")
        soften()
        score += 20
    elif subject.employment_type == EmploymentType.VENDOR:
        reasons.append("Vendor access - limited scope recommended")
        manual = True
        score += 30

    if item.grant_method == GrantMethod.AUTOMATIC:
        reasons.append("Automatically granted - review for appropriateness")
        soften()

    if item.environment == EnvironmentType.PRODUCTION:
        reasons.append("Production environment access")
        score += 15

    return ItemSuggestion(
        item_id=item.item_id,
        subject_key=subject.subject_key,
        suggested_decision=DecisionType.KEEP,
        confidence=confidence,
        reasons=tuple(reasons),
        requires_manual_review=manual,
        risk_score=min(score, 100),
    )


def suggest(campaign: AccessReviewCampaign) -> SuggestionReport:
    """Score every item; highest risk first."""
    suggestions = [score_item(s, i) for s, i in campaign.iter_items()]
    suggestions.sort(key=lambda s: s.risk_score, reverse=True)
    total = len(suggestions)
    average = (
        int(math.floor(sum(s.risk_score for s in suggestions) / total + 0.5)) if total else 0
    )
    return SuggestionReport(
        suggestions=suggestions,
        total_items=total,
        high_confidence=sum(1 for s in suggestions if s.confidence == Confidence.HIGH),
        medium_confidence=sum(1 for s in suggestions if s.confidence == Confidence.MEDIUM),
        low_confidence=sum(1 for s in suggestions if s.confidence == Confidence.LOW),
        require_manual_review=sum(1 for s in suggestions if s.requires_manual_review),
        average_risk_score=average,
        high_risk_items=sum(1 for s in suggestions if s.risk_score >= HIGH_RISK_THRESHOLD),
    )


@dataclass(frozen=True)
class BulkDecisionResult:
    processed: int
    skipped: int
    skipped_items: List[Tuple[str, str]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class CampaignEngine:
    """
    Drives campaigns to closure. Counters are never written directly: every mutation
    ends in recompute(), and the result is committed only if nobody else wrote first.
    """

    def __init__(
        self,
        repository: CampaignRepository,
        principal_service: PrincipalService,
        access: AccessDecisionPoint,
        audit: AuditRecorder,
        settings: Optional[IamSettings] = None,
    ) -> None:
        self._repo = repository
        self._principals = principal_service
        self._access = access
        self._audit = audit
        self._settings = settings or get_settings()

    async def _load(
        self, actor: Principal, campaign_id: str, permissions: Iterable[Permission]
    ) -> AccessReviewCampaign:
        await self._access.require_permissions(actor, permissions)
        campaign = await self._repo.get(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign not found: {campaign_id}")
        await self._access.require(actor, permissions, resource_tenant_id=campaign.tenant_id)
        return campaign

    async def _mutate(
        self,
        actor: Principal,
        campaign_id: str,
        permissions: Iterable[Permission],
        mutate: Callable[[AccessReviewCampaign], object],
    ) -> Tuple[AccessReviewCampaign, dict, object]:
        """
        Load, apply mutate(campaign), write back with compare-and-set.
        On a lost race the campaign is reloaded and mutate() re-applied, up to the retry limit.
        Returns (campaign, state before, mutate result).
        """
        campaign = await self._load(actor, campaign_id, permissions)
        retries = max(1, self._settings.campaign_write_retries)
        for attempt in range(1, retries + 1):
            before = _status_state(campaign)
            result = mutate(campaign)
            expected = campaign.version
            campaign.updated_at = _now()
            if await self._repo.compare_and_set(campaign, expected):
                campaign.version = expected + 1
                return campaign, before, result
            logger.warning(
                "campaign_write_conflict",
                extra={"campaign_id": campaign_id, "attempt": attempt},
            )
            campaign = await self._repo.get(campaign_id)
            if campaign is None:
                raise NotFoundError(f"Campaign not found: {campaign_id}")
        raise ConflictError(f"Campaign {campaign_id} is being modified concurrently; try again")

    async def _record(
        self,
        actor: Principal,
        action: AuditAction,
        campaign: AccessReviewCampaign,
        before: Optional[dict],
        summary: str,
        after: Optional[dict] = None,
    ) -> None:
        await self._audit.record(
            actor=actor,
            action=action,
            target_type=TARGET_TYPE,
            target_id=campaign.campaign_id,
            target_name=campaign.name,
            before=before,
            after=after if after is not None else _status_state(campaign),
            summary=summary,
            tenant_id=campaign.tenant_id,
        )

    # -- lifecycle ------------------------------------------------------------

    async def create_campaign(
        self,
        actor: Principal,
        tenant_id: str,
        definition: CampaignDefinition,
        subjects: List[SubjectSnapshot],
    ) -> AccessReviewCampaign:
        """Snapshot subjects and their entitlements into a new DRAFT campaign."""
        await self._access.require(
            actor, [Permission.ACCESS_REVIEW_WRITE], resource_tenant_id=tenant_id
        )
        campaign = AccessReviewCampaign(
            campaign_id=new_id(),
            tenant_id=tenant_id,
            name=definition.name,
            system_name=definition.system_name,
            created_by=actor.principal_id,
            created_at=_now(),
            review_type=definition.review_type,
            reviewer_type=definition.reviewer_type,
            environment=definition.environment,
            period_start=definition.period_start,
            period_end=definition.period_end,
            description=definition.description,
            approvals=CampaignApprovals(),
            workflow=CampaignWorkflow(due_date=definition.due_date),
            subjects=[
                CampaignSubject(
                    subject_key=new_id(),
                    subject_id=s.subject_id,
                    full_name=s.full_name,
                    email=s.email,
                    employment_type=s.employment_type,
                    items=[
                        CampaignItem(
                            item_id=new_id(),
                            application=i.application,
                            role_name=i.role_name,
                            privilege_level=i.privilege_level,
                            environment=i.environment,
                            entitlement_type=i.entitlement_type,
                            grant_method=i.grant_method,
                            data_classification=i.data_classification,
                            role_id=i.role_id,
                            scope=i.scope,
                        )
                        for i in s.items
                    ],
                )
                for s in subjects
            ],
        )
        recompute(campaign)
        campaign.updated_at = campaign.created_at
        await self._repo.add(campaign)
        await self._record(
            actor,
            AuditAction.CAMPAIGN_CREATED,
            campaign,
            None,
            f"Created access review campaign: {campaign.name}",
            after={
                "name": campaign.name,
                "system_name": campaign.system_name,
                "total_subjects": campaign.total_subjects,
                "total_items": campaign.total_items,
            },
        )
        logger.info(
            "campaign_created",
            extra={
                "campaign_id": campaign.campaign_id,
                "tenant_id": tenant_id,
                "total_items": campaign.total_items,
            },
        )
        return campaign

    async def get_campaign(self, actor: Principal, campaign_id: str) -> AccessReviewCampaign:
        return await self._load(actor, campaign_id, [Permission.ACCESS_REVIEW_READ])

    async def list_campaigns(self, actor: Principal, tenant_id: str) -> List[AccessReviewCampaign]:
        await self._access.require(
            actor, [Permission.ACCESS_REVIEW_READ], resource_tenant_id=tenant_id
        )
        return await self._repo.list_for_tenant(tenant_id)

    async def start_review(self, actor: Principal, campaign_id: str) -> AccessReviewCampaign:
        campaign, before, _ = await self._mutate(
            actor,
            campaign_id,
            [Permission.ACCESS_REVIEW_WRITE],
            lambda c: c.transition_to(CampaignStatus.IN_REVIEW),
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_REVIEW_STARTED,
            campaign,
            before,
            f"Started review of campaign: {campaign.name}",
        )
        return campaign

    async def record_decision(
        self,
        actor: Principal,
        campaign_id: str,
        item_id: str,
        request: DecisionRequest,
    ) -> AccessReviewCampaign:
        """
        Write one item decision, then re-derive subject completion and every counter.
        A first decision on a DRAFT campaign moves it to IN_REVIEW.
        """
        decided_at = _now()

        def decide(campaign: AccessReviewCampaign) -> Optional[ItemDecision]:
            _ensure_decisions_open(campaign)
            _, item = campaign.find_item(item_id)
            previous = apply_item_decision(
                item, _to_decision(request, actor.principal_id, decided_at)
            )
            if campaign.status == CampaignStatus.DRAFT:
                campaign.transition_to(CampaignStatus.IN_REVIEW)
            recompute(campaign)
            return previous

        campaign, before, previous = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_DECIDE], decide
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_DECISION_RECORDED,
            campaign,
            {
                "item_id": item_id,
                "decision": previous.decision_type.value if previous else DecisionType.PENDING.value,
                **before,
            },
            f"Recorded {request.decision_type.value} decision on item {item_id}",
            after={"item_id": item_id, "decision": request.decision_type.value, **_status_state(campaign)},
        )
        logger.info(
            "campaign_decision_recorded",
            extra={
                "campaign_id": campaign_id,
                "item_id": item_id,
                "decision": request.decision_type.value,
                "completed_items": campaign.completed_items,
                "total_items": campaign.total_items,
            },
        )
        return campaign

    async def bulk_decide(
        self,
        actor: Principal,
        campaign_id: str,
        request: DecisionRequest,
        item_ids: Optional[Iterable[str]] = None,
        skip_high_risk: bool = True,
    ) -> Tuple[AccessReviewCampaign, BulkDecisionResult]:
        """
        Apply one decision to many items. Already-decided items are skipped, and so are
        privileged or restricted items when skip_high_risk is set.
        """
        selected = set(item_ids) if item_ids is not None else None
        decided_at = _now()

        def decide_many(campaign: AccessReviewCampaign) -> BulkDecisionResult:
            if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.IN_REVIEW):
                raise ConflictError("Bulk decisions apply only to DRAFT or IN_REVIEW campaigns")
            processed = 0
            skipped: List[Tuple[str, str]] = []
            for _, item in campaign.iter_items():
                if selected is not None and item.item_id not in selected:
                    continue
                if skip_high_risk and _is_high_risk(item):
                    skipped.append((item.item_id, "High-risk item requires manual review"))
                    continue
                if item.is_decided:
                    skipped.append((item.item_id, "Item already has a decision"))
                    continue
                decision = _to_decision(request, actor.principal_id, decided_at)
                if not decision.comments:
                    decision.comments = "Bulk decision applied"
                apply_item_decision(item, decision)
                processed += 1
            if processed and campaign.status == CampaignStatus.DRAFT:
                campaign.transition_to(CampaignStatus.IN_REVIEW)
            recompute(campaign)
            return BulkDecisionResult(processed, len(skipped), skipped)

        campaign, before, result = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_DECIDE], decide_many
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_BULK_DECIDED,
            campaign,
            before,
            f"Bulk decision applied to {result.processed} items in campaign: {campaign.name}",
            after={
                "decision": request.decision_type.value,
                "processed": result.processed,
                "skipped": result.skipped,
                **_status_state(campaign),
            },
        )
        return campaign, result

    async def submit(
        self,
        actor: Principal,
        campaign_id: str,
        attestation: bool,
        reviewer_name: Optional[str] = None,
        reviewer_email: Optional[str] = None,
    ) -> AccessReviewCampaign:
        """
        IN_REVIEW -> SUBMITTED. Every item must be decided and the reviewer must attest.
        A campaign whose second-level sign-off was rejected may be resubmitted; the
        sign-off then starts over.
        """
        if not attestation:
            raise IamValidationError("Reviewer attestation is required to submit")
        submitted_at = _now()

        def do_submit(campaign: AccessReviewCampaign) -> None:
            resubmission = (
                campaign.status == CampaignStatus.SUBMITTED
                and campaign.approvals.second_decision == SecondLevelDecision.REJECTED
            )
            if campaign.status != CampaignStatus.IN_REVIEW and not resubmission:
                # Raises: CONFLICT when terminal, VALIDATION otherwise.
                campaign.transition_to(CampaignStatus.SUBMITTED)
            if not campaign.subjects:
                raise IamValidationError("Campaign must have at least one subject")
            if campaign.completed_items < campaign.total_items:
                raise IamValidationError(
                    f"{campaign.total_items - campaign.completed_items} item(s) still pending a decision"
                )
            if resubmission:
                campaign.approvals.second_decision = None
                campaign.approvals.second_approver_id = None
                campaign.approvals.second_decision_notes = None
                campaign.approvals.second_decided_at = None
            else:
                campaign.transition_to(CampaignStatus.SUBMITTED)
            campaign.submitted_at = submitted_at
            campaign.approvals.reviewer_name = reviewer_name
            campaign.approvals.reviewer_email = reviewer_email
            campaign.approvals.reviewer_attestation = True
            campaign.approvals.reviewer_attested_at = submitted_at
            campaign.workflow.remediation_status = (
                RemediationStatus.PENDING
                if _needs_remediation(campaign)
                else RemediationStatus.NOT_REQUIRED
            )
            recompute(campaign)

        campaign, before, _ = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE], do_submit
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_SUBMITTED,
            campaign,
            before,
            f"Submitted access review campaign: {campaign.name}",
        )
        logger.info(
            "campaign_submitted",
            extra={
                "campaign_id": campaign_id,
                "second_level_required": campaign.approvals.second_level_required,
            },
        )
        return campaign

    async def approve_second_level(
        self,
        actor: Principal,
        campaign_id: str,
        approved: bool,
        notes: Optional[str] = None,
    ) -> AccessReviewCampaign:
        """
        Second-level sign-off for campaigns with privileged items. Approval completes the
        campaign unless remediation is outstanding; rejection is recorded and the campaign
        stays SUBMITTED with decisions reopened for revision.
        """
        decided_at = _now()

        def do_approve(campaign: AccessReviewCampaign) -> None:
            if campaign.status != CampaignStatus.SUBMITTED:
                if campaign.is_terminal:
                    raise ConflictError(f"Campaign is {campaign.status.value}")
                raise IamValidationError("Only SUBMITTED campaigns can be approved")
            if not campaign.approvals.second_level_required:
                raise IamValidationError("This campaign does not require second-level approval")
            if campaign.approvals.second_decision == SecondLevelDecision.APPROVED:
                raise ConflictError("Second-level approval has already been granted")
            campaign.approvals.second_approver_id = actor.principal_id
            campaign.approvals.second_decision_notes = notes
            campaign.approvals.second_decided_at = decided_at
            if not approved:
                campaign.approvals.second_decision = SecondLevelDecision.REJECTED
                return
            campaign.approvals.second_decision = SecondLevelDecision.APPROVED
            campaign.approved_at = decided_at
            if _needs_remediation(campaign):
                if campaign.workflow.remediation_status in (None, RemediationStatus.NOT_REQUIRED):
                    campaign.workflow.remediation_status = RemediationStatus.PENDING
            else:
                campaign.workflow.remediation_status = RemediationStatus.NOT_REQUIRED
            if not campaign.workflow.remediation_pending:
                campaign.transition_to(CampaignStatus.COMPLETED)
                campaign.completed_at = decided_at

        campaign, before, _ = await self._mutate(
            actor,
            campaign_id,
            [Permission.ACCESS_REVIEW_DECIDE, Permission.ACCESS_REVIEW_WRITE],
            do_approve,
        )
        verdict = "Approved" if approved else "Rejected"
        await self._record(
            actor,
            AuditAction.CAMPAIGN_SECOND_LEVEL_DECIDED,
            campaign,
            before,
            f"{verdict} access review campaign: {campaign.name}",
            after={"second_decision": campaign.approvals.second_decision.value, **_status_state(campaign)},
        )
        return campaign

    async def record_remediation(
        self,
        actor: Principal,
        campaign_id: str,
        ticket_id: str,
        status: RemediationStatus,
    ) -> AccessReviewCampaign:
        """Track the remediation ticket for REMOVE/CHANGE outcomes of a submitted campaign."""
        updated_at = _now()

        def do_remediate(campaign: AccessReviewCampaign) -> None:
            if campaign.status != CampaignStatus.SUBMITTED:
                raise IamValidationError("Remediation applies only to SUBMITTED campaigns")
            if (
                campaign.approvals.second_level_required
                and campaign.approvals.second_decision != SecondLevelDecision.APPROVED
            ):
                raise IamValidationError("Second-level approval must be granted before remediation")
            campaign.workflow.remediation_ticket_id = ticket_id
            campaign.workflow.remediation_status = status
            if status == RemediationStatus.COMPLETED:
                campaign.workflow.remediation_completed_at = updated_at

        campaign, before, _ = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE], do_remediate
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_REMEDIATION_UPDATED,
            campaign,
            before,
            f"Remediation {status.value} for campaign: {campaign.name}",
            after={"remediation_ticket_id": ticket_id, **_status_state(campaign)},
        )
        return campaign

    async def escalate(self, actor: Principal, campaign_id: str, reason: str) -> AccessReviewCampaign:
        """
        Raise the escalation level of an open campaign, typically one running past its
        due date. An escalated campaign needs second-level sign-off from then on.
        """
        if not reason or not reason.strip():
            raise IamValidationError("An escalation reason is required")
        reason = reason.strip()

        def do_escalate(campaign: AccessReviewCampaign) -> None:
            if campaign.is_terminal:
                raise ConflictError(f"Campaign {campaign.campaign_id} is {campaign.status.value}")
            if campaign.approvals.second_decision == SecondLevelDecision.APPROVED:
                raise ConflictError("Second-level approval has already been granted")
            campaign.workflow.escalation_level += 1
            campaign.approvals.second_level_required = True

        campaign, before, _ = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE], do_escalate
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_ESCALATED,
            campaign,
            before,
            f"Escalated campaign {campaign.name}: {reason}",
        )
        logger.info(
            "campaign_escalated",
            extra={"campaign_id": campaign_id, "escalation_level": campaign.workflow.escalation_level},
        )
        return campaign

    async def complete(self, actor: Principal, campaign_id: str) -> AccessReviewCampaign:
        """SUBMITTED -> COMPLETED once remediation and any second-level approval are done."""
        completed_at = _now()

        def do_complete(campaign: AccessReviewCampaign) -> None:
            if campaign.status != CampaignStatus.SUBMITTED:
                # Raises: CONFLICT when terminal, VALIDATION otherwise.
                campaign.transition_to(CampaignStatus.COMPLETED)
            if (
                campaign.approvals.second_level_required
                and campaign.approvals.second_decision != SecondLevelDecision.APPROVED
            ):
                raise IamValidationError("Second-level approval is required before completion")
            if campaign.workflow.remediation_pending:
                raise IamValidationError(
                    "Remediation must be completed before marking campaign as complete"
                )
            campaign.transition_to(CampaignStatus.COMPLETED)
            campaign.completed_at = completed_at
            campaign.workflow.verified_by = actor.principal_id
            campaign.workflow.verified_at = completed_at

        campaign, before, _ = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE], do_complete
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_COMPLETED,
            campaign,
            before,
            f"Completed access review campaign: {campaign.name}",
        )
        return campaign

    async def close_campaign(self, actor: Principal, campaign_id: str) -> AccessReviewCampaign:
        """Terminal closure from any non-terminal state. Partial completion is allowed."""
        closed_at = _now()

        def do_close(campaign: AccessReviewCampaign) -> None:
            campaign.transition_to(CampaignStatus.CLOSED)
            campaign.closed_at = closed_at
            campaign.closed_by = actor.principal_id

        campaign, before, _ = await self._mutate(
            actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE], do_close
        )
        await self._record(
            actor,
            AuditAction.CAMPAIGN_CLOSED,
            campaign,
            before,
            f"Closed access review campaign: {campaign.name}",
        )
        logger.info(
            "campaign_closed",
            extra={
                "campaign_id": campaign_id,
                "completion_percentage": campaign.completion_percentage,
            },
        )
        return campaign

    async def delete_draft(self, actor: Principal, campaign_id: str) -> None:
        campaign = await self._load(actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE])
        if campaign.status != CampaignStatus.DRAFT:
            raise ConflictError("Only DRAFT campaigns can be deleted")
        await self._repo.delete(campaign_id)
        await self._record(
            actor,
            AuditAction.CAMPAIGN_DELETED,
            campaign,
            _status_state(campaign),
            f"Deleted draft campaign: {campaign.name}",
            after={},
        )

    async def suggestions(self, actor: Principal, campaign_id: str) -> SuggestionReport:
        campaign = await self._load(actor, campaign_id, [Permission.ACCESS_REVIEW_READ])
        return suggest(campaign)

    # -- effects --------------------------------------------------------------

    async def apply_decision_effects(
        self, actor: Principal, campaign_id: str, item_id: str
    ) -> Optional[Principal]:
        """
        Carry an item's decision over to the live principal. REMOVE clears every direct
        role and group membership; CHANGE replaces direct roles with the requested set;
        KEEP changes nothing and returns None.
        """
        campaign = await self._load(actor, campaign_id, [Permission.ACCESS_REVIEW_WRITE])
        subject, item = campaign.find_item(item_id)
        if not item.is_decided:
            raise IamValidationError(f"Item {item_id} has no decision to apply")

        decision = item.decision
        summary = f"Campaign {campaign.name}: {decision.decision_type.value} on {item.role_name}"
        if decision.decision_type == DecisionType.KEEP:
            return None
        if decision.decision_type == DecisionType.REMOVE:
            principal = await self._principals.clear_access(actor, subject.subject_id, summary)
        else:
            principal = await self._principals.replace_roles(
                actor, subject.subject_id, decision.requested_change.role_ids, summary
            )

        await self._record(
            actor,
            AuditAction.CAMPAIGN_DECISION_APPLIED,
            campaign,
            {"item_id": item_id},
            summary,
            after={
                "item_id": item_id,
                "subject_id": subject.subject_id,
                "decision": decision.decision_type.value,
            },
        )
        return principal

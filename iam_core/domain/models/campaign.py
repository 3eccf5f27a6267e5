"""
Access review campaign aggregate: campaign -> subjects -> items -> decision.

Counters and subject completion are derived by recompute(); they are never set by hand.
Status must be changed only via transition_to() to enforce the lifecycle.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Tuple

from iam_core.domain.exceptions import ConflictError, IamValidationError, NotFoundError


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    CLOSED = "closed"


class DecisionType(str, Enum):
    PENDING = "pending"
    KEEP = "keep"
    REMOVE = "remove"
    CHANGE = "change"


class PrivilegeLevel(str, Enum):
    READ_ONLY = "read_only"
    STANDARD = "standard"
    ELEVATED = "elevated"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Top two tiers trigger second-level approval.
PRIVILEGED_LEVELS: FrozenSet[PrivilegeLevel] = frozenset(
    {PrivilegeLevel.ADMIN, PrivilegeLevel.SUPER_ADMIN}
)


class SubjectStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ReviewType(str, Enum):
    PERIODIC = "periodic"
    EVENT_DRIVEN = "event_driven"
    AD_HOC = "ad_hoc"
    CERTIFICATION = "certification"


class ReviewerType(str, Enum):
    MANAGER = "manager"
    APPLICATION_OWNER = "application_owner"
    SECURITY = "security"
    OTHER = "other"


class EnvironmentType(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"
    TEST = "test"


class DataClassification(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class EntitlementType(str, Enum):
    ROLE = "role"
    GROUP = "group"
    PERMISSION = "permission"
    ACCOUNT = "account"


class GrantMethod(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    INHERITED = "inherited"
    REQUEST = "request"


class EmploymentType(str, Enum):
    EMPLOYEE = "employee"
    CONTRACTOR = "contractor"
    VENDOR = "vendor"
    SERVICE = "service"


class RemediationStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SecondLevelDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class DecisionReasonCode(str, Enum):
    JOB_FUNCTION = "job_function"
    NO_LONGER_REQUIRED = "no_longer_required"
    ROLE_CHANGE = "role_change"
    SOD_CONFLICT = "sod_conflict"
    EXCESSIVE_ACCESS = "excessive_access"
    TERMINATED = "terminated"
    OTHER = "other"


TERMINAL_STATUSES: FrozenSet[CampaignStatus] = frozenset(
    {CampaignStatus.COMPLETED, CampaignStatus.CLOSED}
)

_STATUS_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.IN_REVIEW, CampaignStatus.CLOSED}),
    CampaignStatus.IN_REVIEW: frozenset({CampaignStatus.SUBMITTED, CampaignStatus.CLOSED}),
    CampaignStatus.SUBMITTED: frozenset({CampaignStatus.COMPLETED, CampaignStatus.CLOSED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.CLOSED: frozenset(),
}


def new_id() -> str:
    return uuid.uuid4().hex


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class RequestedChange:
    """Replacement role set for a CHANGE decision."""

    role_ids: Tuple[str, ...] = ()
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"role_ids": list(self.role_ids), "notes": self.notes}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestedChange":
        return cls(role_ids=tuple(data.get("role_ids") or ()), notes=data.get("notes"))


@dataclass
class ItemDecision:
    decision_type: DecisionType
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    reason_code: Optional[DecisionReasonCode] = None
    comments: Optional[str] = None
    requested_change: Optional[RequestedChange] = None

    @property
    def is_pending(self) -> bool:
        return self.decision_type == DecisionType.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision_type": self.decision_type.value,
            "decided_by": self.decided_by,
            "decided_at": _dt(self.decided_at),
            "reason_code": self.reason_code.value if self.reason_code else None,
            "comments": self.comments,
            "requested_change": self.requested_change.to_dict() if self.requested_change else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemDecision":
        change = data.get("requested_change")
        reason = data.get("reason_code")
        return cls(
            decision_type=DecisionType(data["decision_type"]),
            decided_by=data.get("decided_by"),
            decided_at=_parse_dt(data.get("decided_at")),
            reason_code=DecisionReasonCode(reason) if reason else None,
            comments=data.get("comments"),
            requested_change=RequestedChange.from_dict(change) if change else None,
        )


@dataclass
class CampaignItem:
    """One entitlement frozen at campaign creation."""

    item_id: str
    application: str
    role_name: str
    privilege_level: PrivilegeLevel
    environment: EnvironmentType = EnvironmentType.PRODUCTION
    entitlement_type: EntitlementType = EntitlementType.ROLE
    grant_method: GrantMethod = GrantMethod.MANUAL
    data_classification: DataClassification = DataClassification.INTERNAL
    role_id: Optional[str] = None
    scope: Optional[str] = None
    decision: Optional[ItemDecision] = None

    @property
    def is_privileged(self) -> bool:
        return self.privilege_level in PRIVILEGED_LEVELS

    @property
    def is_decided(self) -> bool:
        return self.decision is not None and not self.decision.is_pending

    @property
    def decision_type(self) -> DecisionType:
        return self.decision.decision_type if self.decision else DecisionType.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "application": self.application,
            "role_name": self.role_name,
            "privilege_level": self.privilege_level.value,
            "environment": self.environment.value,
            "entitlement_type": self.entitlement_type.value,
            "grant_method": self.grant_method.value,
            "data_classification": self.data_classification.value,
            "role_id": self.role_id,
            "scope": self.scope,
            "is_privileged": self.is_privileged,
            "decision": self.decision.to_dict() if self.decision else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignItem":
        decision = data.get("decision")
        return cls(
            item_id=data["item_id"],
            application=data["application"],
            role_name=data["role_name"],
            privilege_level=PrivilegeLevel(data["privilege_level"]),
            environment=EnvironmentType(data["environment"]),
            entitlement_type=EntitlementType(data["entitlement_type"]),
            grant_method=GrantMethod(data["grant_method"]),
            data_classification=DataClassification(data["data_classification"]),
            role_id=data.get("role_id"),
            scope=data.get("scope"),
            decision=ItemDecision.from_dict(decision) if decision else None,
        )


@dataclass
class CampaignSubject:
    """One identity under review. subject_key is the generated id; subject_id references the principal."""

    subject_key: str
    subject_id: str
    full_name: str
    email: str
    employment_type: EmploymentType = EmploymentType.EMPLOYEE
    items: List[CampaignItem] = field(default_factory=list)
    status: SubjectStatus = SubjectStatus.PENDING
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_key": self.subject_key,
            "subject_id": self.subject_id,
            "full_name": self.full_name,
            "email": self.email,
            "employment_type": self.employment_type.value,
            "items": [i.to_dict() for i in self.items],
            "status": self.status.value,
            "reviewed_at": _dt(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignSubject":
        return cls(
            subject_key=data["subject_key"],
            subject_id=data["subject_id"],
            full_name=data["full_name"],
            email=data["email"],
            employment_type=EmploymentType(data["employment_type"]),
            items=[CampaignItem.from_dict(i) for i in data.get("items", [])],
            status=SubjectStatus(data["status"]),
            reviewed_at=_parse_dt(data.get("reviewed_at")),
            reviewed_by=data.get("reviewed_by"),
        )


@dataclass
class CampaignApprovals:
    """Reviewer attestation and second-level sign-off. second_level_required never clears."""

    reviewer_name: Optional[str] = None
    reviewer_email: Optional[str] = None
    reviewer_attestation: bool = False
    reviewer_attested_at: Optional[datetime] = None
    second_level_required: bool = False
    second_approver_id: Optional[str] = None
    second_decision: Optional[SecondLevelDecision] = None
    second_decision_notes: Optional[str] = None
    second_decided_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviewer_name": self.reviewer_name,
            "reviewer_email": self.reviewer_email,
            "reviewer_attestation": self.reviewer_attestation,
            "reviewer_attested_at": _dt(self.reviewer_attested_at),
            "second_level_required": self.second_level_required,
            "second_approver_id": self.second_approver_id,
            "second_decision": self.second_decision.value if self.second_decision else None,
            "second_decision_notes": self.second_decision_notes,
            "second_decided_at": _dt(self.second_decided_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignApprovals":
        second = data.get("second_decision")
        return cls(
            reviewer_name=data.get("reviewer_name"),
            reviewer_email=data.get("reviewer_email"),
            reviewer_attestation=bool(data.get("reviewer_attestation")),
            reviewer_attested_at=_parse_dt(data.get("reviewer_attested_at")),
            second_level_required=bool(data.get("second_level_required")),
            second_approver_id=data.get("second_approver_id"),
            second_decision=SecondLevelDecision(second) if second else None,
            second_decision_notes=data.get("second_decision_notes"),
            second_decided_at=_parse_dt(data.get("second_decided_at")),
        )


@dataclass
class CampaignWorkflow:
    due_date: Optional[datetime] = None
    escalation_level: int = 0
    remediation_status: Optional[RemediationStatus] = None
    remediation_ticket_id: Optional[str] = None
    remediation_completed_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    @property
    def remediation_pending(self) -> bool:
        return self.remediation_status in (RemediationStatus.PENDING, RemediationStatus.IN_PROGRESS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "due_date": _dt(self.due_date),
            "escalation_level": self.escalation_level,
            "remediation_status": self.remediation_status.value if self.remediation_status else None,
            "remediation_ticket_id": self.remediation_ticket_id,
            "remediation_completed_at": _dt(self.remediation_completed_at),
            "verified_by": self.verified_by,
            "verified_at": _dt(self.verified_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignWorkflow":
        status = data.get("remediation_status")
        return cls(
            due_date=_parse_dt(data.get("due_date")),
            escalation_level=int(data.get("escalation_level") or 0),
            remediation_status=RemediationStatus(status) if status else None,
            remediation_ticket_id=data.get("remediation_ticket_id"),
            remediation_completed_at=_parse_dt(data.get("remediation_completed_at")),
            verified_by=data.get("verified_by"),
            verified_at=_parse_dt(data.get("verified_at")),
        )


@dataclass
class AccessReviewCampaign:
    """Aggregate root for one recertification exercise."""

    campaign_id: str
    tenant_id: str
    name: str
    system_name: str
    created_by: str
    created_at: datetime
    review_type: ReviewType = ReviewType.PERIODIC
    reviewer_type: ReviewerType = ReviewerType.MANAGER
    environment: EnvironmentType = EnvironmentType.PRODUCTION
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    description: Optional[str] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    subjects: List[CampaignSubject] = field(default_factory=list)
    approvals: CampaignApprovals = field(default_factory=CampaignApprovals)
    workflow: CampaignWorkflow = field(default_factory=CampaignWorkflow)
    total_subjects: int = 0
    completed_subjects: int = 0
    total_items: int = 0
    completed_items: int = 0
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def completion_percentage(self) -> int:
        return _percentage(self.completed_items, self.total_items)

    @property
    def subject_completion_percentage(self) -> int:
        return _percentage(self.completed_subjects, self.total_subjects)

    def transition_to(self, new_status: CampaignStatus) -> None:
        """Move to new_status if allowed. Terminal states raise ConflictError."""
        if self.is_terminal:
            raise ConflictError(
                f"Campaign {self.campaign_id} is {self.status.value}; no further transitions"
            )
        if new_status not in _STATUS_TRANSITIONS[self.status]:
            raise IamValidationError(
                f"Invalid campaign transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def iter_items(self) -> Iterator[Tuple[CampaignSubject, CampaignItem]]:
        for subject in self.subjects:
            for item in subject.items:
                yield subject, item

    def find_item(self, item_id: str) -> Tuple[CampaignSubject, CampaignItem]:
        for subject, item in self.iter_items():
            if item.item_id == item_id:
                return subject, item
        raise NotFoundError(f"Campaign item not found: {item_id}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "system_name": self.system_name,
            "created_by": self.created_by,
            "created_at": _dt(self.created_at),
            "review_type": self.review_type.value,
            "reviewer_type": self.reviewer_type.value,
            "environment": self.environment.value,
            "period_start": _dt(self.period_start),
            "period_end": _dt(self.period_end),
            "description": self.description,
            "status": self.status.value,
            "subjects": [s.to_dict() for s in self.subjects],
            "approvals": self.approvals.to_dict(),
            "workflow": self.workflow.to_dict(),
            "total_subjects": self.total_subjects,
            "completed_subjects": self.completed_subjects,
            "total_items": self.total_items,
            "completed_items": self.completed_items,
            "completion_percentage": self.completion_percentage,
            "submitted_at": _dt(self.submitted_at),
            "approved_at": _dt(self.approved_at),
            "completed_at": _dt(self.completed_at),
            "closed_at": _dt(self.closed_at),
            "closed_by": self.closed_by,
            "updated_at": _dt(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessReviewCampaign":
        campaign = cls(
            campaign_id=data["campaign_id"],
            tenant_id=data["tenant_id"],
            name=data["name"],
            system_name=data["system_name"],
            created_by=data["created_by"],
            created_at=_parse_dt(data["created_at"]),
            review_type=ReviewType(data["review_type"]),
            reviewer_type=ReviewerType(data["reviewer_type"]),
            environment=EnvironmentType(data["environment"]),
            period_start=_parse_dt(data.get("period_start")),
            period_end=_parse_dt(data.get("period_end")),
            description=data.get("description"),
            status=CampaignStatus(data["status"]),
            subjects=[CampaignSubject.from_dict(s) for s in data.get("subjects", [])],
            approvals=CampaignApprovals.from_dict(data.get("approvals") or {}),
            workflow=CampaignWorkflow.from_dict(data.get("workflow") or {}),
            submitted_at=_parse_dt(data.get("submitted_at")),
            approved_at=_parse_dt(data.get("approved_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            closed_at=_parse_dt(data.get("closed_at")),
            closed_by=data.get("closed_by"),
            updated_at=_parse_dt(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )
        # Stored counters are ignored; they are always re-derived.
        return recompute(campaign)


def _percentage(done: int, total: int) -> int:
    if total == 0:
        return 0
    # Half-up rounding, not banker's rounding.
    return int(math.floor(done * 100 / total + 0.5))


def recompute(campaign: AccessReviewCampaign) -> AccessReviewCampaign:
    """
    Re-derive subject completion, campaign counters and the second-level flag
    from the full item set. Mutates and returns the campaign; no I/O, no clock.
    """
    completed_items = 0
    completed_subjects = 0
    total_items = 0
    privileged_present = False

    for subject in campaign.subjects:
        decided = [item for item in subject.items if item.is_decided]
        total_items += len(subject.items)
        completed_items += len(decided)
        privileged_present = privileged_present or any(i.is_privileged for i in subject.items)

        if len(decided) == len(subject.items):
            subject.status = SubjectStatus.COMPLETED
            completed_subjects += 1
            latest = max(
                (i.decision for i in decided if i.decision.decided_at),
                key=lambda d: d.decided_at,
                default=None,
            )
            if latest is not None:
                subject.reviewed_at = latest.decided_at
                subject.reviewed_by = latest.decided_by
        else:
            subject.status = SubjectStatus.PENDING

    campaign.total_subjects = len(campaign.subjects)
    campaign.completed_subjects = completed_subjects
    campaign.total_items = total_items
    campaign.completed_items = completed_items
    if privileged_present:
        campaign.approvals.second_level_required = True
    return campaign


def apply_item_decision(item: CampaignItem, decision: ItemDecision) -> Optional[ItemDecision]:
    """
    Write decision onto item. Returns the previous decision.
    PENDING can never be written; a terminal decision may be replaced by another terminal one.
    """
    if decision.decision_type == DecisionType.PENDING:
        raise IamValidationError("A decision cannot be set back to pending")
    if decision.decision_type == DecisionType.CHANGE and (
        decision.requested_change is None or not decision.requested_change.role_ids
    ):
        raise IamValidationError("CHANGE decisions require a requested role set")
    previous = item.decision
    item.decision = decision
    return previous

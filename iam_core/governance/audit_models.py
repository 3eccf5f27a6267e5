"""Immutable IAM audit entry model. Domain-level immutability."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ActorType(str, Enum):
    USER = "user"
    SERVICE_ACCOUNT = "service_account"
    SYSTEM = "system"


class AuditAction(str, Enum):
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DEACTIVATED = "role_deactivated"
    SYSTEM_ROLES_SEEDED = "system_roles_seeded"
    GROUP_CREATED = "group_created"
    GROUP_DEACTIVATED = "group_deactivated"
    GROUP_MEMBER_ADDED = "group_member_added"
    GROUP_MEMBER_REMOVED = "group_member_removed"
    GROUP_ROLE_ADDED = "group_role_added"
    GROUP_ROLE_REMOVED = "group_role_removed"
    PRINCIPAL_ROLE_ASSIGNED = "principal_role_assigned"
    PRINCIPAL_ROLE_REVOKED = "principal_role_revoked"
    PRINCIPAL_ROLES_REPLACED = "principal_roles_replaced"
    PRINCIPAL_LOCKED = "principal_locked"
    PRINCIPAL_UNLOCKED = "principal_unlocked"
    PRINCIPAL_TIER_CHANGED = "principal_tier_changed"
    ADVISOR_ASSIGNED = "advisor_assigned"
    ADVISOR_PRIMARY_CHANGED = "advisor_primary_changed"
    ADVISOR_UNASSIGNED = "advisor_unassigned"
    CAMPAIGN_CREATED = "campaign_created"
    CAMPAIGN_REVIEW_STARTED = "campaign_review_started"
    CAMPAIGN_DECISION_RECORDED = "campaign_decision_recorded"
    CAMPAIGN_BULK_DECIDED = "campaign_bulk_decided"
    CAMPAIGN_DECISION_APPLIED = "campaign_decision_applied"
    CAMPAIGN_SUBMITTED = "campaign_submitted"
    CAMPAIGN_SECOND_LEVEL_DECIDED = "campaign_second_level_decided"
    CAMPAIGN_REMEDIATION_UPDATED = "campaign_remediation_updated"
    CAMPAIGN_ESCALATED = "campaign_escalated"
    CAMPAIGN_COMPLETED = "campaign_completed"
    CAMPAIGN_CLOSED = "campaign_closed"
    CAMPAIGN_DELETED = "campaign_deleted"
    CAMPAIGN_EXPORTED = "campaign_exported"
    ACCESS_REVIEW_OPENED = "access_review_opened"
    ACCESS_REVIEW_ITEM_DECIDED = "access_review_item_decided"
    ACCESS_REVIEW_CLOSED = "access_review_closed"
    AUDIT_EXPORTED = "audit_exported"


@dataclass(frozen=True)
class IamAuditLogEntry:
    """
    Immutable audit entry: who, what, on which target, when (UTC), correlation_id.
    before/after hold only the keys that changed, with sensitive values redacted.
    sequence is assigned by the repository on append and orders entries.
    """

    entry_id: str
    actor_id: str
    actor_type: ActorType
    action: AuditAction
    target_type: str
    target_id: str
    created_at: datetime
    tenant_id: Optional[str] = None
    actor_email: Optional[str] = None
    target_name: Optional[str] = None
    summary: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for JSON logging and export."""
        return {
            "entry_id": self.entry_id,
            "sequence": self.sequence,
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "actor_type": self.actor_type.value,
            "action": self.action.value,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "summary": self.summary,
            "before": self.before,
            "after": self.after,
            "correlation_id": self.correlation_id,
            "created_at": self.created_at.isoformat(),
        }

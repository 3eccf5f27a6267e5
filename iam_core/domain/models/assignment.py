"""Advisor-to-tenant assignment. Soft-deactivated, never deleted."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class AdvisorAssignment:
    """One advisor linked to one tenant. Deactivation is terminal."""

    assignment_id: str
    advisor_id: str
    tenant_id: str
    assigned_at: datetime
    is_active: bool = True
    is_primary: bool = False
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    unassigned_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None

    def deactivated(self, at: datetime) -> "AdvisorAssignment":
        return replace(
            self,
            is_active=False,
            is_primary=False,
            status=AssignmentStatus.INACTIVE,
            unassigned_at=at,
        )

    def audit_state(self) -> dict:
        return {
            "advisor_id": self.advisor_id,
            "tenant_id": self.tenant_id,
            "is_active": self.is_active,
            "is_primary": self.is_primary,
            "status": self.status.value,
            "notes": self.notes,
        }

"""Pydantic schemas for mutation payloads. Strict validation, no DB or infrastructure."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from iam_core.domain.models.campaign import (
    DataClassification,
    DecisionReasonCode,
    DecisionType,
    EmploymentType,
    EntitlementType,
    EnvironmentType,
    GrantMethod,
    PrivilegeLevel,
    ReviewerType,
    ReviewType,
)
from iam_core.domain.models.identity import Permission


# ---------------------------------------------------------------------------
# Roles and groups
# ---------------------------------------------------------------------------

class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: List[Permission] = Field(..., min_length=1)
    tenant_id: Optional[str] = Field(None, description="None creates a global role")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[Permission]] = None
    is_active: Optional[bool] = None


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    tenant_id: Optional[str] = Field(None, description="None creates a platform group")
    role_ids: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------

class ItemSnapshot(BaseModel):
    """One entitlement as it stands when the campaign is created."""

    application: str = Field(..., min_length=1, max_length=200)
    role_name: str = Field(..., min_length=1, max_length=200)
    privilege_level: PrivilegeLevel
    environment: EnvironmentType = EnvironmentType.PRODUCTION
    entitlement_type: EntitlementType = EntitlementType.ROLE
    grant_method: GrantMethod = GrantMethod.MANUAL
    data_classification: DataClassification = DataClassification.INTERNAL
    role_id: Optional[str] = None
    scope: Optional[str] = Field(None, max_length=200)


class SubjectSnapshot(BaseModel):
    subject_id: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=254)
    employment_type: EmploymentType = EmploymentType.EMPLOYEE
    items: List[ItemSnapshot] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class CampaignDefinition(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    system_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    review_type: ReviewType = ReviewType.PERIODIC
    reviewer_type: ReviewerType = ReviewerType.MANAGER
    environment: EnvironmentType = EnvironmentType.PRODUCTION
    period_start: datetime
    period_end: datetime
    due_date: datetime

    @model_validator(mode="after")
    def period_is_ordered(self) -> "CampaignDefinition":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")
        return self


class DecisionRequest(BaseModel):
    decision_type: DecisionType
    reason_code: Optional[DecisionReasonCode] = None
    comments: Optional[str] = Field(None, max_length=2000)
    new_role_ids: List[str] = Field(default_factory=list)
    change_notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_decision_shape(self) -> "DecisionRequest":
        if self.decision_type == DecisionType.PENDING:
            raise ValueError("decision_type must not be pending")
        if self.decision_type in (DecisionType.REMOVE, DecisionType.CHANGE) and not self.comments:
            raise ValueError("comments are required for REMOVE or CHANGE decisions")
        if self.decision_type == DecisionType.CHANGE and not self.new_role_ids:
            raise ValueError("new_role_ids are required for CHANGE decisions")
        return self

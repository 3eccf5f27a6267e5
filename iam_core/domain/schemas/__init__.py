"""Pydantic payload schemas handed to the core by its callers."""

from iam_core.domain.schemas.payloads import (
    CampaignDefinition,
    DecisionRequest,
    GroupCreateRequest,
    ItemSnapshot,
    RoleCreateRequest,
    RoleUpdateRequest,
    SubjectSnapshot,
)

__all__ = [
    "CampaignDefinition",
    "DecisionRequest",
    "GroupCreateRequest",
    "ItemSnapshot",
    "RoleCreateRequest",
    "RoleUpdateRequest",
    "SubjectSnapshot",
]

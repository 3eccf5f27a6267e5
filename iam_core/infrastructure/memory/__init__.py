from iam_core.infrastructure.memory.audit_repository import InMemoryAuditRepository
from iam_core.infrastructure.memory.repositories import (
    InMemoryAccessReviewRepository,
    InMemoryAssignmentRepository,
    InMemoryCampaignRepository,
    InMemoryGroupRepository,
    InMemoryPrincipalRepository,
    InMemoryRoleRepository,
)

__all__ = [
    "InMemoryAccessReviewRepository",
    "InMemoryAssignmentRepository",
    "InMemoryAuditRepository",
    "InMemoryCampaignRepository",
    "InMemoryGroupRepository",
    "InMemoryPrincipalRepository",
    "InMemoryRoleRepository",
]

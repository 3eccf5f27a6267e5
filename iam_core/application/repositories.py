"""Repository protocols. Application layer depends on these; infrastructure implements them."""

from typing import Iterable, List, Optional, Protocol

from iam_core.domain.models.assignment import AdvisorAssignment
from iam_core.domain.models.campaign import AccessReviewCampaign
from iam_core.domain.models.identity import Group, Principal, Role, RoleTier
from iam_core.domain.models.review import AccessReview


class PrincipalRepository(Protocol):
    async def get(self, principal_id: str) -> Optional[Principal]:
        ...

    async def save(self, principal: Principal) -> None:
        ...

    async def list_for_tenant(self, tenant_id: str) -> List[Principal]:
        ...

    async def list_by_tier(self, tier: RoleTier) -> List[Principal]:
        ...


class RoleRepository(Protocol):
    async def get(self, role_id: str) -> Optional[Role]:
        ...

    async def get_many(self, role_ids: Iterable[str]) -> List[Role]:
        """Return the roles that exist; unknown ids are skipped."""
        ...

    async def find_by_name(self, name: str, tenant_id: Optional[str]) -> Optional[Role]:
        """Case-insensitive lookup within exactly one scope (None = global)."""
        ...

    async def save(self, role: Role) -> None:
        ...

    async def list_visible(self, tenant_id: Optional[str]) -> List[Role]:
        """Global roles plus the roles of tenant_id."""
        ...


class GroupRepository(Protocol):
    async def get(self, group_id: str) -> Optional[Group]:
        ...

    async def get_many(self, group_ids: Iterable[str]) -> List[Group]:
        ...

    async def find_by_name(self, name: str, tenant_id: Optional[str]) -> Optional[Group]:
        ...

    async def save(self, group: Group) -> None:
        ...

    async def list_visible(self, tenant_id: Optional[str]) -> List[Group]:
        ...


class AssignmentRepository(Protocol):
    """
    Advisor assignments. add() and set_primary() are atomic per tenant:
    no reader may observe two active primaries for one tenant.
    """

    async def get(self, assignment_id: str) -> Optional[AdvisorAssignment]:
        ...

    async def find_active(self, advisor_id: str, tenant_id: str) -> Optional[AdvisorAssignment]:
        ...

    async def add(self, assignment: AdvisorAssignment) -> AdvisorAssignment:
        """
        Insert a new active assignment. Raises ConflictError when the (advisor, tenant)
        pair already has an active one. If the assignment is primary, every other
        active primary for the tenant is cleared in the same operation.
        """
        ...

    async def set_primary(self, tenant_id: str, assignment_id: str) -> AdvisorAssignment:
        """Clear every other primary for tenant_id and mark assignment_id primary, atomically."""
        ...

    async def save(self, assignment: AdvisorAssignment) -> None:
        ...

    async def list_for_tenant(
        self, tenant_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        ...

    async def list_for_advisor(
        self, advisor_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        ...


class CampaignRepository(Protocol):
    """Versioned campaign documents. Writes are compare-and-set on version."""

    async def get(self, campaign_id: str) -> Optional[AccessReviewCampaign]:
        ...

    async def add(self, campaign: AccessReviewCampaign) -> None:
        ...

    async def compare_and_set(
        self, campaign: AccessReviewCampaign, expected_version: int
    ) -> bool:
        """
        Persist campaign only if the stored version still equals expected_version.
        On success the stored version becomes expected_version + 1 and True is returned.
        """
        ...

    async def delete(self, campaign_id: str) -> None:
        ...

    async def list_for_tenant(self, tenant_id: str) -> List[AccessReviewCampaign]:
        ...


class AccessReviewRepository(Protocol):
    async def get(self, review_id: str) -> Optional[AccessReview]:
        ...

    async def add(self, review: AccessReview) -> None:
        ...

    async def compare_and_set(self, review: AccessReview, expected_version: int) -> bool:
        ...

    async def list_for_tenant(self, tenant_id: str) -> List[AccessReview]:
        ...

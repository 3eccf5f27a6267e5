"""In-process repositories. Default for tests and embedding; state lives for the process only."""

import asyncio
import copy
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from iam_core.domain.exceptions import ConflictError, NotFoundError
from iam_core.domain.models.assignment import AdvisorAssignment
from iam_core.domain.models.campaign import AccessReviewCampaign
from iam_core.domain.models.identity import Group, Principal, Role, RoleTier
from iam_core.domain.models.review import AccessReview


class InMemoryPrincipalRepository:
    def __init__(self, principals: Iterable[Principal] = ()) -> None:
        self._items: Dict[str, Principal] = {p.principal_id: p for p in principals}

    async def get(self, principal_id: str) -> Optional[Principal]:
        return self._items.get(principal_id)

    async def save(self, principal: Principal) -> None:
        self._items[principal.principal_id] = principal

    async def list_for_tenant(self, tenant_id: str) -> List[Principal]:
        return [p for p in self._items.values() if p.tenant_id == tenant_id]

    async def list_by_tier(self, tier: RoleTier) -> List[Principal]:
        return [p for p in self._items.values() if p.tier == tier]


class InMemoryRoleRepository:
    def __init__(self, roles: Iterable[Role] = ()) -> None:
        self._items: Dict[str, Role] = {r.role_id: r for r in roles}

    async def get(self, role_id: str) -> Optional[Role]:
        return self._items.get(role_id)

    async def get_many(self, role_ids: Iterable[str]) -> List[Role]:
        return [self._items[i] for i in sorted(set(role_ids)) if i in self._items]

    async def find_by_name(self, name: str, tenant_id: Optional[str]) -> Optional[Role]:
        wanted = name.strip().lower()
        for role in self._items.values():
            if role.tenant_id == tenant_id and role.name.lower() == wanted:
                return role
        return None

    async def save(self, role: Role) -> None:
        self._items[role.role_id] = role

    async def list_visible(self, tenant_id: Optional[str]) -> List[Role]:
        return sorted(
            (r for r in self._items.values() if r.in_scope_for(tenant_id)),
            key=lambda r: (r.tenant_id is not None, r.name.lower()),
        )


class InMemoryGroupRepository:
    def __init__(self, groups: Iterable[Group] = ()) -> None:
        self._items: Dict[str, Group] = {g.group_id: g for g in groups}

    async def get(self, group_id: str) -> Optional[Group]:
        return self._items.get(group_id)

    async def get_many(self, group_ids: Iterable[str]) -> List[Group]:
        return [self._items[i] for i in sorted(set(group_ids)) if i in self._items]

    async def find_by_name(self, name: str, tenant_id: Optional[str]) -> Optional[Group]:
        wanted = name.strip().lower()
        for group in self._items.values():
            if group.tenant_id == tenant_id and group.name.lower() == wanted:
                return group
        return None

    async def save(self, group: Group) -> None:
        self._items[group.group_id] = group

    async def list_visible(self, tenant_id: Optional[str]) -> List[Group]:
        return sorted(
            (g for g in self._items.values() if g.in_scope_for(tenant_id)),
            key=lambda g: g.name.lower(),
        )


class InMemoryAssignmentRepository:
    """Primary swaps and inserts for one tenant run under that tenant's asyncio.Lock."""

    def __init__(self) -> None:
        self._items: Dict[str, AdvisorAssignment] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _active_for(self, tenant_id: str) -> List[AdvisorAssignment]:
        return [a for a in self._items.values() if a.tenant_id == tenant_id and a.is_active]

    def _clear_primaries(self, tenant_id: str, keep_id: Optional[str] = None) -> None:
        for other in self._active_for(tenant_id):
            if other.is_primary and other.assignment_id != keep_id:
                self._items[other.assignment_id] = replace(other, is_primary=False)

    async def get(self, assignment_id: str) -> Optional[AdvisorAssignment]:
        return self._items.get(assignment_id)

    async def find_active(self, advisor_id: str, tenant_id: str) -> Optional[AdvisorAssignment]:
        for assignment in self._active_for(tenant_id):
            if assignment.advisor_id == advisor_id:
                return assignment
        return None

    async def add(self, assignment: AdvisorAssignment) -> AdvisorAssignment:
        async with self._locks[assignment.tenant_id]:
            if assignment.assignment_id in self._items:
                raise ConflictError(f"Assignment already exists: {assignment.assignment_id}")
            if await self.find_active(assignment.advisor_id, assignment.tenant_id) is not None:
                raise ConflictError(
                    f"Advisor {assignment.advisor_id} already has an active assignment "
                    f"to tenant {assignment.tenant_id}"
                )
            if assignment.is_primary:
                self._clear_primaries(assignment.tenant_id)
            self._items[assignment.assignment_id] = assignment
            return assignment

    async def set_primary(self, tenant_id: str, assignment_id: str) -> AdvisorAssignment:
        async with self._locks[tenant_id]:
            current = self._items.get(assignment_id)
            if current is None or current.tenant_id != tenant_id:
                raise NotFoundError(f"Assignment not found: {assignment_id}")
            if not current.is_active:
                raise ConflictError("Only an active assignment can become primary")
            self._clear_primaries(tenant_id, keep_id=assignment_id)
            updated = replace(current, is_primary=True)
            self._items[assignment_id] = updated
            return updated

    async def save(self, assignment: AdvisorAssignment) -> None:
        async with self._locks[assignment.tenant_id]:
            self._items[assignment.assignment_id] = assignment

    async def list_for_tenant(
        self, tenant_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        return sorted(
            (
                a
                for a in self._items.values()
                if a.tenant_id == tenant_id and (a.is_active or not active_only)
            ),
            key=lambda a: a.assigned_at,
        )

    async def list_for_advisor(
        self, advisor_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        return sorted(
            (
                a
                for a in self._items.values()
                if a.advisor_id == advisor_id and (a.is_active or not active_only)
            ),
            key=lambda a: a.assigned_at,
        )


class InMemoryCampaignRepository:
    """
    Stores serialized documents so callers never share mutable state with the store.
    compare_and_set() is the only write path after add().
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Tuple[int, dict]] = {}
        self._lock = asyncio.Lock()

    async def get(self, campaign_id: str) -> Optional[AccessReviewCampaign]:
        stored = self._docs.get(campaign_id)
        if stored is None:
            return None
        version, doc = stored
        campaign = AccessReviewCampaign.from_dict(copy.deepcopy(doc))
        campaign.version = version
        return campaign

    async def add(self, campaign: AccessReviewCampaign) -> None:
        async with self._lock:
            if campaign.campaign_id in self._docs:
                raise ConflictError(f"Campaign already exists: {campaign.campaign_id}")
            self._docs[campaign.campaign_id] = (campaign.version, campaign.to_dict())

    async def compare_and_set(
        self, campaign: AccessReviewCampaign, expected_version: int
    ) -> bool:
        async with self._lock:
            stored = self._docs.get(campaign.campaign_id)
            if stored is None or stored[0] != expected_version:
                return False
            doc = campaign.to_dict()
            doc["version"] = expected_version + 1
            self._docs[campaign.campaign_id] = (expected_version + 1, doc)
            return True

    async def delete(self, campaign_id: str) -> None:
        async with self._lock:
            self._docs.pop(campaign_id, None)

    async def list_for_tenant(self, tenant_id: str) -> List[AccessReviewCampaign]:
        campaigns = []
        for campaign_id, (_, doc) in list(self._docs.items()):
            if doc["tenant_id"] == tenant_id:
                campaigns.append(await self.get(campaign_id))
        return sorted(campaigns, key=lambda c: c.created_at, reverse=True)


class InMemoryAccessReviewRepository:
    def __init__(self) -> None:
        self._items: Dict[str, AccessReview] = {}
        self._lock = asyncio.Lock()

    async def get(self, review_id: str) -> Optional[AccessReview]:
        review = self._items.get(review_id)
        return copy.deepcopy(review) if review is not None else None

    async def add(self, review: AccessReview) -> None:
        async with self._lock:
            self._items[review.review_id] = copy.deepcopy(review)

    async def compare_and_set(self, review: AccessReview, expected_version: int) -> bool:
        async with self._lock:
            stored = self._items.get(review.review_id)
            if stored is None or stored.version != expected_version:
                return False
            updated = copy.deepcopy(review)
            updated.version = expected_version + 1
            self._items[review.review_id] = updated
            return True

    async def list_for_tenant(self, tenant_id: str) -> List[AccessReview]:
        return sorted(
            (copy.deepcopy(r) for r in self._items.values() if r.tenant_id == tenant_id),
            key=lambda r: r.created_at,
            reverse=True,
        )

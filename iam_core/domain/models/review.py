"""Lightweight ad hoc access review: OPEN -> CLOSED, one item per principal."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from iam_core.domain.exceptions import NotFoundError
from iam_core.domain.models.campaign import DecisionType


class AccessReviewStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ReviewItem:
    """Snapshot of one principal's access at review creation plus the reviewer's verdict."""

    item_id: str
    principal_id: str
    email: str
    display_name: str
    current_role_ids: Tuple[str, ...] = ()
    current_role_names: Tuple[str, ...] = ()
    current_group_ids: Tuple[str, ...] = ()
    current_group_names: Tuple[str, ...] = ()
    current_permissions: Tuple[str, ...] = ()
    decision: DecisionType = DecisionType.PENDING
    new_role_ids: Tuple[str, ...] = ()
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_decided(self) -> bool:
        return self.decision != DecisionType.PENDING


@dataclass
class AccessReview:
    review_id: str
    tenant_id: str
    name: str
    created_by: str
    created_at: datetime
    due_at: Optional[datetime] = None
    description: Optional[str] = None
    status: AccessReviewStatus = AccessReviewStatus.OPEN
    items: List[ReviewItem] = field(default_factory=list)
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    version: int = 0

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def completed_item_count(self) -> int:
        return sum(1 for item in self.items if item.is_decided)

    @property
    def is_closed(self) -> bool:
        return self.status == AccessReviewStatus.CLOSED

    @property
    def completion_percentage(self) -> int:
        if not self.items:
            return 0
        return int(self.completed_item_count * 100 / self.item_count + 0.5)

    def find_item(self, item_id: str) -> ReviewItem:
        for item in self.items:
            if item.item_id == item_id:
                return item
        raise NotFoundError(f"Review item not found: {item_id}")

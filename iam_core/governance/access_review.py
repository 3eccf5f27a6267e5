"""Ad hoc access review: snapshot principals, decide per principal, close once. No FastAPI."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from iam_core.application.principal_service import PrincipalService
from iam_core.application.repositories import (
    AccessReviewRepository,
    GroupRepository,
    PrincipalRepository,
    RoleRepository,
)
from iam_core.config.settings import IamSettings, get_settings
from iam_core.domain.exceptions import ConflictError, IamValidationError, NotFoundError
from iam_core.domain.models.campaign import DecisionType
from iam_core.domain.models.identity import Permission, Principal
from iam_core.domain.models.review import AccessReview, AccessReviewStatus, ReviewItem
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.decision_point import AccessDecisionPoint
from iam_core.security.resolver import PermissionResolver

logger = logging.getLogger(__name__)

TARGET_TYPE = "access_review"


class AccessReviewService:
    """
    OPEN -> CLOSED, one item per principal. Decisions take effect on the principal
    immediately; closing is one-shot and allows partial completion.
    """

    def __init__(
        self,
        repository: AccessReviewRepository,
        principal_repository: PrincipalRepository,
        role_repository: RoleRepository,
        group_repository: GroupRepository,
        resolver: PermissionResolver,
        principal_service: PrincipalService,
        access: AccessDecisionPoint,
        audit: AuditRecorder,
        settings: Optional[IamSettings] = None,
    ) -> None:
        self._repo = repository
        self._principals = principal_repository
        self._roles = role_repository
        self._groups = group_repository
        self._resolver = resolver
        self._principal_service = principal_service
        self._access = access
        self._audit = audit
        self._settings = settings or get_settings()

    async def _load(
        self, actor: Principal, review_id: str, permissions: Iterable[Permission]
    ) -> AccessReview:
        await self._access.require_permissions(actor, permissions)
        review = await self._repo.get(review_id)
        if review is None:
            raise NotFoundError(f"Access review not found: {review_id}")
        await self._access.require(actor, permissions, resource_tenant_id=review.tenant_id)
        return review

    async def _write(self, review_id: str, review: AccessReview, mutate: Callable) -> AccessReview:
        for _ in range(max(1, self._settings.campaign_write_retries)):
            mutate(review)
            expected = review.version
            if await self._repo.compare_and_set(review, expected):
                review.version = expected + 1
                return review
            review = await self._repo.get(review_id)
            if review is None:
                raise NotFoundError(f"Access review not found: {review_id}")
        raise ConflictError(f"Access review {review_id} is being modified concurrently; try again")

    async def _snapshot(self, principal: Principal) -> ReviewItem:
        roles = await self._roles.get_many(principal.role_ids)
        groups = await self._groups.get_many(principal.group_ids)
        permissions = await self._resolver.resolve(principal)
        return ReviewItem(
            item_id=uuid.uuid4().hex,
            principal_id=principal.principal_id,
            email=principal.email,
            display_name=principal.display_name,
            current_role_ids=tuple(r.role_id for r in roles),
            current_role_names=tuple(r.name for r in roles),
            current_group_ids=tuple(g.group_id for g in groups),
            current_group_names=tuple(g.name for g in groups),
            current_permissions=tuple(sorted(p.value for p in permissions)),
        )

    async def open_review(
        self,
        actor: Principal,
        tenant_id: str,
        name: str,
        principal_ids: Optional[List[str]] = None,
        due_at: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> AccessReview:
        """Snapshot the listed principals (default: every principal of the tenant)."""
        await self._access.require(
            actor, [Permission.ACCESS_REVIEW_WRITE], resource_tenant_id=tenant_id
        )
        if not name or not name.strip():
            raise IamValidationError("Review name is required")

        if principal_ids is None:
            principals = await self._principals.list_for_tenant(tenant_id)
        else:
            principals = []
            for principal_id in principal_ids:
                principal = await self._principals.get(principal_id)
                if principal is None or principal.tenant_id != tenant_id:
                    raise IamValidationError(f"Principal {principal_id} is not in tenant {tenant_id}")
                principals.append(principal)
        if not principals:
            raise IamValidationError("An access review needs at least one principal")

        review = AccessReview(
            review_id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            name=name.strip(),
            created_by=actor.principal_id,
            created_at=datetime.now(timezone.utc),
            due_at=due_at,
            description=description,
            items=[await self._snapshot(p) for p in principals],
        )
        await self._repo.add(review)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ACCESS_REVIEW_OPENED,
            target_type=TARGET_TYPE,
            target_id=review.review_id,
            target_name=review.name,
            after={"item_count": review.item_count, "status": review.status.value},
            tenant_id=tenant_id,
        )
        logger.info(
            "access_review_opened",
            extra={"review_id": review.review_id, "tenant_id": tenant_id, "item_count": review.item_count},
        )
        return review

    async def decide_item(
        self,
        actor: Principal,
        review_id: str,
        item_id: str,
        decision: DecisionType,
        new_role_ids: Iterable[str] = (),
        notes: Optional[str] = None,
    ) -> AccessReview:
        new_role_ids = tuple(new_role_ids)
        if decision == DecisionType.PENDING:
            raise IamValidationError("A decision cannot be set back to pending")
        if decision == DecisionType.CHANGE and not new_role_ids:
            raise IamValidationError("CHANGE decisions require a requested role set")

        review = await self._load(actor, review_id, [Permission.ACCESS_REVIEW_DECIDE])
        # Effects are authorized before the decision is stored.
        principal_id = review.find_item(item_id).principal_id
        if decision == DecisionType.REMOVE:
            await self._principal_service.check_clear_access(actor, principal_id)
        elif decision == DecisionType.CHANGE:
            await self._principal_service.check_replace_roles(actor, principal_id, new_role_ids)
        reviewed_at = datetime.now(timezone.utc)
        previous = {}

        def decide(current: AccessReview) -> None:
            if current.is_closed:
                raise ConflictError(f"Access review {review_id} is closed")
            item = current.find_item(item_id)
            previous["decision"] = item.decision.value
            item.decision = decision
            item.new_role_ids = new_role_ids if decision == DecisionType.CHANGE else ()
            item.reviewer_id = actor.principal_id
            item.reviewed_at = reviewed_at
            item.notes = notes

        review = await self._write(review_id, review, decide)
        item = review.find_item(item_id)

        summary = f"Access review {review.name}: {decision.value}"
        if decision == DecisionType.REMOVE:
            await self._principal_service.clear_access(actor, item.principal_id, summary)
        elif decision == DecisionType.CHANGE:
            await self._principal_service.replace_roles(actor, item.principal_id, new_role_ids, summary)

        await self._audit.record(
            actor=actor,
            action=AuditAction.ACCESS_REVIEW_ITEM_DECIDED,
            target_type=TARGET_TYPE,
            target_id=review.review_id,
            target_name=review.name,
            before={"item_id": item_id, **previous},
            after={"item_id": item_id, "decision": decision.value, "new_role_ids": list(new_role_ids)},
            tenant_id=review.tenant_id,
        )
        return review

    async def close_review(self, actor: Principal, review_id: str) -> AccessReview:
        review = await self._load(actor, review_id, [Permission.ACCESS_REVIEW_WRITE])
        closed_at = datetime.now(timezone.utc)

        def close(current: AccessReview) -> None:
            if current.is_closed:
                raise ConflictError(f"Access review {review_id} is already closed")
            current.status = AccessReviewStatus.CLOSED
            current.closed_at = closed_at
            current.closed_by = actor.principal_id

        review = await self._write(review_id, review, close)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ACCESS_REVIEW_CLOSED,
            target_type=TARGET_TYPE,
            target_id=review.review_id,
            target_name=review.name,
            before={"status": AccessReviewStatus.OPEN.value},
            after={
                "status": review.status.value,
                "completed_item_count": review.completed_item_count,
                "item_count": review.item_count,
            },
            tenant_id=review.tenant_id,
        )
        return review

    async def get_review(self, actor: Principal, review_id: str) -> AccessReview:
        return await self._load(actor, review_id, [Permission.ACCESS_REVIEW_READ])

    async def list_reviews(self, actor: Principal, tenant_id: str) -> List[AccessReview]:
        await self._access.require(
            actor, [Permission.ACCESS_REVIEW_READ], resource_tenant_id=tenant_id
        )
        return await self._repo.list_for_tenant(tenant_id)

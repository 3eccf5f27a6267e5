"""Advisor-to-tenant assignment ledger. Platform tier only; one primary per tenant. No FastAPI."""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from iam_core.application.repositories import AssignmentRepository, PrincipalRepository
from iam_core.domain.exceptions import (
    ConflictError,
    IamValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from iam_core.domain.models.assignment import AdvisorAssignment
from iam_core.domain.models.identity import Permission, Principal, RoleTier
from iam_core.governance.audit_logger import AuditRecorder
from iam_core.governance.audit_models import AuditAction
from iam_core.security.decision_point import AccessDecisionPoint

logger = logging.getLogger(__name__)


class AdvisorAssignmentLedger:
    """
    At most one active assignment per (advisor, tenant) and at most one active
    primary per tenant. Both are enforced by the repository's atomic operations.
    """

    def __init__(
        self,
        repository: AssignmentRepository,
        principal_repository: PrincipalRepository,
        access: AccessDecisionPoint,
        audit: AuditRecorder,
    ) -> None:
        self._repo = repository
        self._principals = principal_repository
        self._access = access
        self._audit = audit

    @staticmethod
    def _require_platform_tier(actor: Principal) -> None:
        if actor.tier != RoleTier.PLATFORM_ADMIN:
            raise PermissionDeniedError("Advisor assignments are managed by platform administrators")

    async def _require_platform(self, actor: Principal, tenant_id: Optional[str]) -> None:
        self._require_platform_tier(actor)
        await self._access.require(
            actor, [Permission.ADVISOR_ASSIGNMENT_WRITE], resource_tenant_id=tenant_id
        )

    async def _get(self, assignment_id: str) -> AdvisorAssignment:
        assignment = await self._repo.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment not found: {assignment_id}")
        return assignment

    async def assign(
        self,
        actor: Principal,
        advisor_id: str,
        tenant_id: str,
        primary: bool = False,
        notes: Optional[str] = None,
    ) -> AdvisorAssignment:
        await self._require_platform(actor, tenant_id)
        advisor = await self._principals.get(advisor_id)
        if advisor is None:
            raise NotFoundError(f"Advisor not found: {advisor_id}")
        if advisor.tier != RoleTier.ADVISOR:
            raise IamValidationError(f"Principal {advisor_id} is not an advisor")

        assignment = AdvisorAssignment(
            assignment_id=uuid.uuid4().hex,
            advisor_id=advisor_id,
            tenant_id=tenant_id,
            assigned_at=datetime.now(timezone.utc),
            is_primary=primary,
            notes=notes,
            created_by=actor.principal_id,
        )
        stored = await self._repo.add(assignment)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ADVISOR_ASSIGNED,
            target_type="advisor_assignment",
            target_id=stored.assignment_id,
            target_name=advisor.email or advisor_id,
            after=stored.audit_state(),
            tenant_id=tenant_id,
        )
        logger.info(
            "advisor_assigned",
            extra={
                "assignment_id": stored.assignment_id,
                "advisor_id": advisor_id,
                "tenant_id": tenant_id,
                "is_primary": primary,
            },
        )
        return stored

    async def reassign_primary(
        self, actor: Principal, tenant_id: str, assignment_id: str
    ) -> AdvisorAssignment:
        await self._require_platform(actor, tenant_id)
        current = await self._get(assignment_id)
        if current.tenant_id != tenant_id:
            raise NotFoundError(f"Assignment not found: {assignment_id}")
        if not current.is_active:
            raise ConflictError("Only an active assignment can become primary")
        updated = await self._repo.set_primary(tenant_id, assignment_id)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ADVISOR_PRIMARY_CHANGED,
            target_type="advisor_assignment",
            target_id=assignment_id,
            before=current.audit_state(),
            after=updated.audit_state(),
            tenant_id=tenant_id,
        )
        logger.info(
            "advisor_primary_changed",
            extra={"assignment_id": assignment_id, "tenant_id": tenant_id},
        )
        return updated

    async def deactivate(self, actor: Principal, assignment_id: str) -> AdvisorAssignment:
        self._require_platform_tier(actor)
        current = await self._get(assignment_id)
        await self._require_platform(actor, current.tenant_id)
        if not current.is_active:
            raise ConflictError(f"Assignment already inactive: {assignment_id}")
        updated = current.deactivated(datetime.now(timezone.utc))
        await self._repo.save(updated)
        await self._audit.record(
            actor=actor,
            action=AuditAction.ADVISOR_UNASSIGNED,
            target_type="advisor_assignment",
            target_id=assignment_id,
            before=current.audit_state(),
            after=updated.audit_state(),
            tenant_id=current.tenant_id,
        )
        logger.info(
            "advisor_unassigned",
            extra={"assignment_id": assignment_id, "tenant_id": current.tenant_id},
        )
        return updated

    async def list_for_tenant(
        self, tenant_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        return await self._repo.list_for_tenant(tenant_id, active_only=active_only)

    async def list_for_advisor(
        self, advisor_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        return await self._repo.list_for_advisor(advisor_id, active_only=active_only)

    async def has_active_assignment(self, advisor_id: str, tenant_id: str) -> bool:
        return await self._repo.find_active(advisor_id, tenant_id) is not None

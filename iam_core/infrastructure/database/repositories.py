"""SQLAlchemy async repositories for advisor assignments, audit entries and campaigns."""

from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from iam_core.domain.exceptions import ConflictError, NotFoundError
from iam_core.domain.models.assignment import AdvisorAssignment, AssignmentStatus
from iam_core.domain.models.campaign import AccessReviewCampaign
from iam_core.governance.audit_models import ActorType, AuditAction, IamAuditLogEntry
from iam_core.governance.audit_repository import AuditPage, AuditQuery
from iam_core.infrastructure.database.models import (
    AdvisorAssignmentRecord,
    AuditEntryRecord,
    CampaignDocumentRecord,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_assignment(row: AdvisorAssignmentRecord) -> AdvisorAssignment:
    return AdvisorAssignment(
        assignment_id=row.assignment_id,
        advisor_id=row.advisor_id,
        tenant_id=row.tenant_id,
        assigned_at=_utc(row.assigned_at),
        is_active=row.is_active,
        is_primary=row.is_primary,
        status=AssignmentStatus(row.status),
        unassigned_at=_utc(row.unassigned_at),
        notes=row.notes,
        created_by=row.created_by,
    )


class DbAssignmentRepository:
    """Implements AssignmentRepository. Each primary swap is one transaction."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def get(self, assignment_id: str) -> Optional[AdvisorAssignment]:
        async with self._session_factory() as session:
            row = await session.get(AdvisorAssignmentRecord, assignment_id)
            return _to_assignment(row) if row is not None else None

    async def find_active(self, advisor_id: str, tenant_id: str) -> Optional[AdvisorAssignment]:
        stmt = select(AdvisorAssignmentRecord).where(
            AdvisorAssignmentRecord.advisor_id == advisor_id,
            AdvisorAssignmentRecord.tenant_id == tenant_id,
            AdvisorAssignmentRecord.is_active == True,  # noqa: E712
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_assignment(row) if row is not None else None

    async def _clear_primaries(self, session, tenant_id: str, keep_id: Optional[str] = None) -> None:
        conditions = [
            AdvisorAssignmentRecord.tenant_id == tenant_id,
            AdvisorAssignmentRecord.is_primary == True,  # noqa: E712
        ]
        if keep_id is not None:
            conditions.append(AdvisorAssignmentRecord.assignment_id != keep_id)
        await session.execute(update(AdvisorAssignmentRecord).where(*conditions).values(is_primary=False))

    async def _conflict_for(self, assignment: AdvisorAssignment) -> ConflictError:
        """Name the constraint an insert broke. Index names differ between backends, so re-read."""
        if await self.find_active(assignment.advisor_id, assignment.tenant_id) is not None:
            return ConflictError(
                f"Advisor {assignment.advisor_id} already has an active assignment "
                f"to tenant {assignment.tenant_id}"
            )
        if await self.get(assignment.assignment_id) is not None:
            return ConflictError(f"Assignment already exists: {assignment.assignment_id}")
        return ConflictError(
            f"Primary advisor of tenant {assignment.tenant_id} changed concurrently; try again"
        )

    async def add(self, assignment: AdvisorAssignment) -> AdvisorAssignment:
        try:
            async with self._session_factory() as session, session.begin():
                if assignment.is_primary:
                    await self._clear_primaries(session, assignment.tenant_id)
                session.add(
                    AdvisorAssignmentRecord(
                        assignment_id=assignment.assignment_id,
                        advisor_id=assignment.advisor_id,
                        tenant_id=assignment.tenant_id,
                        is_active=assignment.is_active,
                        is_primary=assignment.is_primary,
                        status=assignment.status.value,
                        assigned_at=assignment.assigned_at,
                        notes=assignment.notes,
                        created_by=assignment.created_by,
                    )
                )
        except IntegrityError as e:
            raise await self._conflict_for(assignment) from e
        return assignment

    async def set_primary(self, tenant_id: str, assignment_id: str) -> AdvisorAssignment:
        async with self._session_factory() as session, session.begin():
            row = await session.get(AdvisorAssignmentRecord, assignment_id)
            if row is None or row.tenant_id != tenant_id:
                raise NotFoundError(f"Assignment not found: {assignment_id}")
            if not row.is_active:
                raise ConflictError("Only an active assignment can become primary")
            await self._clear_primaries(session, tenant_id, keep_id=assignment_id)
            await session.flush()
            row.is_primary = True
        return _to_assignment(row)

    async def save(self, assignment: AdvisorAssignment) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(AdvisorAssignmentRecord)
                .where(AdvisorAssignmentRecord.assignment_id == assignment.assignment_id)
                .values(
                    is_active=assignment.is_active,
                    is_primary=assignment.is_primary,
                    status=assignment.status.value,
                    unassigned_at=assignment.unassigned_at,
                    notes=assignment.notes,
                )
            )

    async def _list(self, *conditions) -> List[AdvisorAssignment]:
        stmt = (
            select(AdvisorAssignmentRecord)
            .where(*conditions)
            .order_by(AdvisorAssignmentRecord.assigned_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_assignment(r) for r in rows]

    async def list_for_tenant(
        self, tenant_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        conditions = [AdvisorAssignmentRecord.tenant_id == tenant_id]
        if active_only:
            conditions.append(AdvisorAssignmentRecord.is_active == True)  # noqa: E712
        return await self._list(*conditions)

    async def list_for_advisor(
        self, advisor_id: str, active_only: bool = True
    ) -> List[AdvisorAssignment]:
        conditions = [AdvisorAssignmentRecord.advisor_id == advisor_id]
        if active_only:
            conditions.append(AdvisorAssignmentRecord.is_active == True)  # noqa: E712
        return await self._list(*conditions)


def _to_entry(row: AuditEntryRecord) -> IamAuditLogEntry:
    return IamAuditLogEntry(
        entry_id=row.entry_id,
        actor_id=row.actor_id,
        actor_type=ActorType(row.actor_type),
        action=AuditAction(row.action),
        target_type=row.target_type,
        target_id=row.target_id,
        created_at=_utc(row.created_at),
        tenant_id=row.tenant_id,
        actor_email=row.actor_email,
        target_name=row.target_name,
        summary=row.summary,
        before=row.before,
        after=row.after,
        correlation_id=row.correlation_id,
        sequence=row.sequence,
    )


class DbAuditRepository:
    """Implements AuditRepository. The autoincrement key is the entry sequence."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def append(self, entry: IamAuditLogEntry) -> IamAuditLogEntry:
        row = AuditEntryRecord(
            entry_id=entry.entry_id,
            tenant_id=entry.tenant_id,
            actor_id=entry.actor_id,
            actor_email=entry.actor_email,
            actor_type=entry.actor_type.value,
            action=entry.action.value,
            target_type=entry.target_type,
            target_id=entry.target_id,
            target_name=entry.target_name,
            summary=entry.summary,
            before=entry.before,
            after=entry.after,
            correlation_id=entry.correlation_id,
            created_at=entry.created_at,
        )
        async with self._session_factory() as session, session.begin():
            session.add(row)
            await session.flush()
            sequence = row.sequence
        return replace(entry, sequence=sequence)

    @staticmethod
    def _conditions(query: AuditQuery) -> list:
        conditions = []
        if query.tenant_id is not None:
            if query.include_platform:
                conditions.append(
                    (AuditEntryRecord.tenant_id == query.tenant_id)
                    | AuditEntryRecord.tenant_id.is_(None)
                )
            else:
                conditions.append(AuditEntryRecord.tenant_id == query.tenant_id)
        if query.actor_id is not None:
            conditions.append(AuditEntryRecord.actor_id == query.actor_id)
        if query.action is not None:
            conditions.append(AuditEntryRecord.action == query.action.value)
        if query.target_type is not None:
            conditions.append(AuditEntryRecord.target_type == query.target_type)
        if query.target_id is not None:
            conditions.append(AuditEntryRecord.target_id == query.target_id)
        if query.since is not None:
            conditions.append(AuditEntryRecord.created_at >= query.since)
        if query.until is not None:
            conditions.append(AuditEntryRecord.created_at <= query.until)
        return conditions

    async def query(self, query: AuditQuery) -> AuditPage:
        conditions = self._conditions(query)
        count_stmt = select(func.count()).select_from(AuditEntryRecord).where(*conditions)
        stmt = (
            select(AuditEntryRecord)
            .where(*conditions)
            .order_by(AuditEntryRecord.sequence)
            .offset(query.offset)
            .limit(query.limit)
        )
        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()
        return AuditPage(
            entries=[_to_entry(r) for r in rows],
            total=total,
            limit=query.limit,
            offset=query.offset,
        )


class DbCampaignRepository:
    """Implements CampaignRepository with UPDATE ... WHERE version = :expected."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_campaign(row: CampaignDocumentRecord) -> AccessReviewCampaign:
        campaign = AccessReviewCampaign.from_dict(dict(row.document))
        campaign.version = row.version
        return campaign

    async def get(self, campaign_id: str) -> Optional[AccessReviewCampaign]:
        async with self._session_factory() as session:
            row = await session.get(CampaignDocumentRecord, campaign_id)
            return self._to_campaign(row) if row is not None else None

    async def add(self, campaign: AccessReviewCampaign) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    CampaignDocumentRecord(
                        campaign_id=campaign.campaign_id,
                        tenant_id=campaign.tenant_id,
                        status=campaign.status.value,
                        version=campaign.version,
                        document=campaign.to_dict(),
                        created_at=campaign.created_at,
                        updated_at=campaign.updated_at,
                    )
                )
        except IntegrityError as e:
            raise ConflictError(f"Campaign already exists: {campaign.campaign_id}") from e

    async def compare_and_set(
        self, campaign: AccessReviewCampaign, expected_version: int
    ) -> bool:
        document = campaign.to_dict()
        document["version"] = expected_version + 1
        stmt = (
            update(CampaignDocumentRecord)
            .where(
                CampaignDocumentRecord.campaign_id == campaign.campaign_id,
                CampaignDocumentRecord.version == expected_version,
            )
            .values(
                document=document,
                status=campaign.status.value,
                version=expected_version + 1,
                updated_at=campaign.updated_at,
            )
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def delete(self, campaign_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(CampaignDocumentRecord, campaign_id)
            if row is not None:
                await session.delete(row)

    async def list_for_tenant(self, tenant_id: str) -> List[AccessReviewCampaign]:
        stmt = (
            select(CampaignDocumentRecord)
            .where(CampaignDocumentRecord.tenant_id == tenant_id)
            .order_by(CampaignDocumentRecord.created_at.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_campaign(r) for r in rows]

# iam_core/infrastructure/database/models.py

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, and_
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from iam_core.infrastructure.database.session import Base

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class AdvisorAssignmentRecord(Base):
    """
    One advisor-tenant link. Partial unique indexes allow a single active row per
    (advisor, tenant) and a single active primary per tenant.
    """

    __tablename__ = "advisor_assignments"

    assignment_id = Column(String, primary_key=True)
    advisor_id = Column(String, nullable=False, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="active")
    assigned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    unassigned_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)

    __table_args__ = (
        Index(
            "uq_advisor_assignments_active_pair",
            advisor_id,
            tenant_id,
            unique=True,
            sqlite_where=is_active,
            postgresql_where=is_active,
        ),
        Index(
            "uq_advisor_assignments_active_primary",
            tenant_id,
            unique=True,
            sqlite_where=and_(is_active, is_primary),
            postgresql_where=and_(is_active, is_primary),
        ),
    )


class AuditEntryRecord(Base):
    """Append-only. sequence orders entries; rows are never updated or deleted."""

    __tablename__ = "iam_audit_entries"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(String, nullable=False, unique=True)
    tenant_id = Column(String, nullable=True, index=True)
    actor_id = Column(String, nullable=False, index=True)
    actor_email = Column(String, nullable=True)
    actor_type = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False, index=True)
    target_name = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    before = Column(JsonDocument, nullable=True)
    after = Column(JsonDocument, nullable=True)
    correlation_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class CampaignDocumentRecord(Base):
    """Whole campaign aggregate as one JSON document, guarded by version."""

    __tablename__ = "access_review_campaigns"

    campaign_id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    document = Column(JsonDocument, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

"""Audit repository protocol. Governance layer depends on this; infrastructure implements it."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from iam_core.governance.audit_models import AuditAction, IamAuditLogEntry


@dataclass(frozen=True)
class AuditQuery:
    """
    Filter for audit history. tenant_id None with include_platform False means no
    tenant filter (platform view); a tenant_id plus include_platform also returns
    entries recorded without a tenant.
    """

    tenant_id: Optional[str] = None
    include_platform: bool = False
    actor_id: Optional[str] = None
    action: Optional[AuditAction] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 50
    offset: int = 0

    def matches(self, entry: IamAuditLogEntry) -> bool:
        if self.tenant_id is not None:
            if entry.tenant_id != self.tenant_id and not (
                self.include_platform and entry.tenant_id is None
            ):
                return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.target_type is not None and entry.target_type != self.target_type:
            return False
        if self.target_id is not None and entry.target_id != self.target_id:
            return False
        if self.since is not None and entry.created_at < self.since:
            return False
        if self.until is not None and entry.created_at > self.until:
            return False
        return True


@dataclass(frozen=True)
class AuditPage:
    entries: List[IamAuditLogEntry] = field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class AuditRepository(Protocol):
    """Protocol for appending and reading immutable audit entries. No update, no delete."""

    async def append(self, entry: IamAuditLogEntry) -> IamAuditLogEntry:
        """Persist entry; returns it with the repository-assigned sequence."""
        ...

    async def query(self, query: AuditQuery) -> AuditPage:
        """Matching entries ordered by sequence ascending, sliced by offset/limit."""
        ...

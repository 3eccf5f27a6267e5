"""Immutable IAM audit trail. Writes never break the caller's operation. No FastAPI."""

import csv
import io
import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from iam_core.config.settings import IamSettings, get_settings
from iam_core.core.context import correlation_id_ctx
from iam_core.domain.models.identity import Principal, PrincipalType
from iam_core.governance.audit_models import ActorType, AuditAction, IamAuditLogEntry
from iam_core.governance.audit_repository import AuditPage, AuditQuery, AuditRepository

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SYSTEM_ACTOR_ID = "system"

EXPORT_COLUMNS = (
    "sequence",
    "created_at",
    "tenant_id",
    "actor_id",
    "actor_email",
    "actor_type",
    "action",
    "target_type",
    "target_id",
    "target_name",
    "summary",
    "before",
    "after",
    "correlation_id",
)


def _normalize_key(key: str) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def sanitize(value: Any, sensitive_keys: Iterable[str]) -> Any:
    """Replace values under sensitive keys with a marker, recursively."""
    normalized = {_normalize_key(k) for k in sensitive_keys}
    return _sanitize(value, normalized)


def _sanitize(value: Any, normalized: set) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if _normalize_key(k) in normalized else _sanitize(v, normalized)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_sanitize(v, normalized) for v in value]
    return value


def compute_diff(
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    sensitive_keys: Iterable[str] = (),
) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """
    Keep only keys whose value differs between before and after. A key missing on
    one side appears only on the other. Either side may be None (create / delete).
    """
    if before is None or after is None:
        return (
            sanitize(before, sensitive_keys) if before is not None else None,
            sanitize(after, sensitive_keys) if after is not None else None,
        )
    changed_before: Dict[str, Any] = {}
    changed_after: Dict[str, Any] = {}
    for key in list(before.keys()) + [k for k in after.keys() if k not in before]:
        if before.get(key) == after.get(key) and (key in before) == (key in after):
            continue
        if key in before:
            changed_before[key] = before[key]
        if key in after:
            changed_after[key] = after[key]
    return sanitize(changed_before, sensitive_keys), sanitize(changed_after, sensitive_keys)


def _actor_fields(actor: Optional[Principal]) -> Tuple[str, Optional[str], ActorType]:
    if actor is None:
        return SYSTEM_ACTOR_ID, None, ActorType.SYSTEM
    if actor.principal_type == PrincipalType.SERVICE_ACCOUNT:
        actor_type = ActorType.SERVICE_ACCOUNT
    elif actor.principal_type == PrincipalType.SYSTEM:
        actor_type = ActorType.SYSTEM
    else:
        actor_type = ActorType.USER
    return actor.principal_id, actor.email or None, actor_type


class AuditRecorder:
    """
    Appends immutable audit entries via repository.
    record() never raises: a failed write is logged at ERROR and counted.
    """

    def __init__(
        self,
        repository: AuditRepository,
        settings: Optional[IamSettings] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self.failure_count = 0

    async def record(
        self,
        *,
        actor: Optional[Principal],
        action: AuditAction,
        target_type: str,
        target_id: str,
        target_name: Optional[str] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        summary: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Optional[IamAuditLogEntry]:
        """Write one entry. Returns the stored entry, or None when the write failed."""
        actor_id, actor_email, actor_type = _actor_fields(actor)
        correlation_id = correlation_id_ctx.get()
        try:
            diff_before, diff_after = compute_diff(
                before, after, self._settings.sensitive_audit_keys
            )
            entry = IamAuditLogEntry(
                entry_id=uuid.uuid4().hex,
                actor_id=actor_id,
                actor_type=actor_type,
                action=action,
                target_type=target_type,
                target_id=target_id,
                created_at=datetime.now(timezone.utc),
                tenant_id=tenant_id,
                actor_email=actor_email,
                target_name=target_name,
                summary=summary,
                before=diff_before,
                after=diff_after,
                correlation_id=correlation_id,
            )
            stored = await self._repository.append(entry)
        except Exception as e:
            self.failure_count += 1
            logger.error(
                "audit_write_failed",
                extra={
                    "action": action.value,
                    "actor_id": actor_id,
                    "target_type": target_type,
                    "target_id": target_id,
                    "tenant_id": tenant_id,
                    "correlation_id": correlation_id,
                    "error": str(e),
                },
                exc_info=True,
            )
            return None
        logger.debug(
            "audit_recorded",
            extra={"action": action.value, "target_id": target_id, "sequence": stored.sequence},
        )
        return stored

    async def query(self, query: AuditQuery) -> AuditPage:
        """Filtered history ordered by sequence. limit is capped at the configured page size."""
        limit = max(1, min(query.limit, self._settings.audit_page_limit))
        return await self._repository.query(replace(query, limit=limit, offset=max(0, query.offset)))

    async def history_for(
        self, target_type: str, target_id: str, tenant_id: Optional[str] = None
    ) -> AuditPage:
        return await self.query(
            AuditQuery(
                tenant_id=tenant_id,
                target_type=target_type,
                target_id=target_id,
                limit=self._settings.audit_page_limit,
            )
        )

    async def render_csv(self, query: AuditQuery) -> str:
        """Every matching entry up to the export limit, as CSV. Callers authorize first."""
        page = await self._repository.query(
            replace(query, limit=self._settings.audit_export_limit, offset=0)
        )
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_COLUMNS)
        for entry in page.entries:
            row = entry.to_dict()
            for key in ("before", "after"):
                row[key] = json.dumps(row[key], sort_keys=True, default=str) if row[key] else ""
            writer.writerow(["" if row[c] is None else row[c] for c in EXPORT_COLUMNS])
        return buffer.getvalue()

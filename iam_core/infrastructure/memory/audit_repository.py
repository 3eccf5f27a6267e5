"""Append-only in-process audit store."""

import asyncio
from dataclasses import replace
from typing import List

from iam_core.governance.audit_models import IamAuditLogEntry
from iam_core.governance.audit_repository import AuditPage, AuditQuery


class InMemoryAuditRepository:
    """Implements AuditRepository. Sequence numbers start at 1 and never repeat."""

    def __init__(self) -> None:
        self._entries: List[IamAuditLogEntry] = []
        self._lock = asyncio.Lock()

    async def append(self, entry: IamAuditLogEntry) -> IamAuditLogEntry:
        async with self._lock:
            stored = replace(entry, sequence=len(self._entries) + 1)
            self._entries.append(stored)
            return stored

    async def query(self, query: AuditQuery) -> AuditPage:
        matching = [e for e in self._entries if query.matches(e)]
        return AuditPage(
            entries=matching[query.offset : query.offset + query.limit],
            total=len(matching),
            limit=query.limit,
            offset=query.offset,
        )

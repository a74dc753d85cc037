"""Audit repository protocol. Application layer depends on this; infrastructure implements it."""

from typing import List, Protocol

from audit_stream.domain.models.audit import AuditRecord, SuspicionAlert


class AuditRepository(Protocol):
    """Protocol for persisting and reading audit records and alerts. DB is primary source of truth."""

    async def save_audit_record(self, record: AuditRecord) -> AuditRecord:
        """Append record; return it with the store-assigned id."""
        ...

    async def save_alert(self, alert: SuspicionAlert) -> SuspicionAlert:
        """Append alert; return it with the store-assigned id."""
        ...

    async def list_recent_audit_records(self, limit: int) -> List[AuditRecord]:
        """Newest first, at most `limit` records."""
        ...

    async def list_recent_alerts(self, limit: int) -> List[SuspicionAlert]:
        """Newest first, at most `limit` alerts."""
        ...

"""In-memory audit repository. Implements AuditRepository protocol for local runs and tests."""

from typing import List

from audit_stream.domain.models.audit import AuditRecord, SuspicionAlert


class InMemoryAuditRepository:
    """Append-only lists; ids are assigned sequentially from 1, like a SERIAL column."""

    def __init__(self) -> None:
        self._records: List[AuditRecord] = []
        self._alerts: List[SuspicionAlert] = []

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)

    @property
    def alerts(self) -> List[SuspicionAlert]:
        return list(self._alerts)

    async def save_audit_record(self, record: AuditRecord) -> AuditRecord:
        saved = record.with_id(len(self._records) + 1)
        self._records.append(saved)
        return saved

    async def save_alert(self, alert: SuspicionAlert) -> SuspicionAlert:
        saved = alert.with_id(len(self._alerts) + 1)
        self._alerts.append(saved)
        return saved

    async def list_recent_audit_records(self, limit: int) -> List[AuditRecord]:
        newest = sorted(self._records, key=lambda r: (r.occurred_at, r.id), reverse=True)
        return newest[:limit]

    async def list_recent_alerts(self, limit: int) -> List[SuspicionAlert]:
        newest = sorted(self._alerts, key=lambda a: (a.occurred_at, a.id), reverse=True)
        return newest[:limit]

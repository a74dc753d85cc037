"""DB-backed audit repository. Persists AuditRecords and SuspicionAlerts to the AuditLog and SuspiciousActivity tables."""

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import select

from audit_stream.domain.models.audit import AuditRecord, Operation, Severity, SuspicionAlert
from audit_stream.infrastructure.database.models import AuditLog, SuspiciousActivity


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def audit_log_to_record(orm: AuditLog) -> AuditRecord:
    return AuditRecord(
        id=orm.id,
        entity_name=orm.table_name,
        operation=Operation(orm.operation),
        actor_name=orm.user_name,
        before_image=orm.old_data,
        after_image=orm.new_data,
        occurred_at=_aware(orm.timestamp),
    )


def suspicious_activity_to_alert(orm: SuspiciousActivity) -> SuspicionAlert:
    return SuspicionAlert(
        id=orm.id,
        related_audit_record_id=orm.log_id,
        message=orm.message,
        severity=Severity(orm.severity),
        details=orm.details or {},
        occurred_at=_aware(orm.timestamp),
    )


class DbAuditRepository:
    """
    Implements the AuditRepository protocol on the connection manager's primary engine.
    Each call opens its own session; failures surface as QueryFailure / NotConnected.
    """

    def __init__(self, connections: Any) -> None:
        self._connections = connections

    async def save_audit_record(self, record: AuditRecord) -> AuditRecord:
        orm = AuditLog(
            table_name=record.entity_name,
            operation=record.operation.value,
            user_name=record.actor_name,
            old_data=record.before_image,
            new_data=record.after_image,
            timestamp=record.occurred_at,
        )
        async with self._connections.session() as session:
            session.add(orm)
            await session.flush()
            await session.commit()
            await session.refresh(orm)
        return record.with_id(orm.id)

    async def save_alert(self, alert: SuspicionAlert) -> SuspicionAlert:
        orm = SuspiciousActivity(
            log_id=alert.related_audit_record_id,
            message=alert.message,
            severity=alert.severity.value,
            details=alert.details,
            timestamp=alert.occurred_at,
        )
        async with self._connections.session() as session:
            session.add(orm)
            await session.flush()
            await session.commit()
            await session.refresh(orm)
        return alert.with_id(orm.id)

    async def list_recent_audit_records(self, limit: int) -> List[AuditRecord]:
        stmt = select(AuditLog).order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)
        async with self._connections.session() as session:
            result = await session.execute(stmt)
            return [audit_log_to_record(orm) for orm in result.scalars().all()]

    async def list_recent_alerts(self, limit: int) -> List[SuspicionAlert]:
        stmt = (
            select(SuspiciousActivity)
            .order_by(SuspiciousActivity.timestamp.desc(), SuspiciousActivity.id.desc())
            .limit(limit)
        )
        async with self._connections.session() as session:
            result = await session.execute(stmt)
            return [suspicious_activity_to_alert(orm) for orm in result.scalars().all()]

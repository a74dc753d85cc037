"""Domain schemas. Wire format, request/response and validation."""

from audit_stream.domain.schemas.audit import (
    AuditEventPayload,
    ChangeNotification,
    ConnectionConfigRequest,
    SuspicionAlertPayload,
    alerts_to_payloads,
    audit_records_to_payloads,
)

__all__ = [
    "AuditEventPayload",
    "ChangeNotification",
    "ConnectionConfigRequest",
    "SuspicionAlertPayload",
    "alerts_to_payloads",
    "audit_records_to_payloads",
]

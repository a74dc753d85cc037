"""Domain models. Pure business entities."""

from audit_stream.domain.models.audit import (
    DEFAULT_ACTOR,
    ActorContext,
    AuditRecord,
    ConnectionConfig,
    Operation,
    Severity,
    SuspicionAlert,
)

__all__ = [
    "DEFAULT_ACTOR",
    "ActorContext",
    "AuditRecord",
    "ConnectionConfig",
    "Operation",
    "Severity",
    "SuspicionAlert",
]

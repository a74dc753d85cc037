"""Domain model for audited changes and suspicion alerts. Pure business semantics, no ORM or infrastructure."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

# Actor attributed to a mutation when the caller supplies none.
DEFAULT_ACTOR = "System"


class Operation(str, Enum):
    """Row mutation kinds captured on watched entities."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class AuditRecord:
    """
    One captured row mutation. Immutable once created.
    DELETE carries only before_image, INSERT only after_image, UPDATE both.
    id is None until the record has been persisted.
    """

    entity_name: str
    operation: Operation
    actor_name: str
    occurred_at: datetime
    before_image: Optional[Dict[str, Any]] = None
    after_image: Optional[Dict[str, Any]] = None
    id: Optional[int] = None

    def with_id(self, record_id: int) -> "AuditRecord":
        return AuditRecord(
            entity_name=self.entity_name,
            operation=self.operation,
            actor_name=self.actor_name,
            occurred_at=self.occurred_at,
            before_image=self.before_image,
            after_image=self.after_image,
            id=record_id,
        )


@dataclass(frozen=True)
class SuspicionAlert:
    """
    Alert raised by a detection rule. related_audit_record_id is a weak reference:
    the alert does not own the audit record and may outlive it.
    """

    message: str
    severity: Severity
    occurred_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    related_audit_record_id: Optional[int] = None
    id: Optional[int] = None

    def with_id(self, alert_id: int) -> "SuspicionAlert":
        return SuspicionAlert(
            message=self.message,
            severity=self.severity,
            occurred_at=self.occurred_at,
            details=self.details,
            related_audit_record_id=self.related_audit_record_id,
            id=alert_id,
        )


@dataclass(frozen=True)
class ConnectionConfig:
    """Target store coordinates. Value object: two configs are the same target iff all fields match."""

    host: str
    port: int
    database: str
    user: str
    password: str

    def redacted(self) -> Dict[str, Any]:
        """Loggable form without the password."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
        }


@dataclass(frozen=True)
class ActorContext:
    """Request-scoped identity of whoever is performing a mutation. Passed explicitly, never stored globally."""

    actor_name: str = DEFAULT_ACTOR

    @classmethod
    def from_optional(cls, actor_name: Optional[str]) -> "ActorContext":
        if actor_name is None or not actor_name.strip():
            return cls()
        return cls(actor_name=actor_name.strip())

"""Suspicious-activity detector: fixed, ordered heuristics over a bounded per-(actor, entity) activity window."""

from collections import OrderedDict
from datetime import datetime
from typing import Optional, Tuple

from audit_stream.domain.models.audit import AuditRecord, Operation, Severity, SuspicionAlert

RAPID_DELETE_WINDOW_MS = 1000
IDENTITY_ENTITY = "User"
ROLE_FIELD = "role"
ACTIVITY_WINDOW_CAPACITY = 10_000

ActivityKey = Tuple[str, str]


class ActivityWindow:
    """
    (actor, entity) -> timestamp of that pair's most recent event.
    Bounded: the least recently touched key is evicted once capacity is exceeded.
    """

    def __init__(self, capacity: int = ACTIVITY_WINDOW_CAPACITY) -> None:
        self._capacity = capacity
        self._entries: "OrderedDict[ActivityKey, datetime]" = OrderedDict()

    def last_seen(self, key: ActivityKey) -> Optional[datetime]:
        return self._entries.get(key)

    def touch(self, key: ActivityKey, at: datetime) -> None:
        self._entries[key] = at
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class SuspiciousActivityDetector:
    """
    Evaluates each canonical event; first matching rule wins:
      1. DELETE less than rapid_delete_window_ms after the previous event of the same (actor, entity) -> HIGH
      2. any other DELETE -> MEDIUM
      3. UPDATE on the identity entity that changes the role field -> CRITICAL
    No I/O. Time is taken from the event, never from the wall clock.
    """

    def __init__(
        self,
        rapid_delete_window_ms: int = RAPID_DELETE_WINDOW_MS,
        window: Optional[ActivityWindow] = None,
        identity_entity: str = IDENTITY_ENTITY,
        role_field: str = ROLE_FIELD,
    ) -> None:
        self._rapid_window_ms = rapid_delete_window_ms
        self._window = window if window is not None else ActivityWindow()
        self._identity_entity = identity_entity
        self._role_field = role_field

    @property
    def window(self) -> ActivityWindow:
        return self._window

    def evaluate(self, event: AuditRecord) -> Optional[SuspicionAlert]:
        key = (event.actor_name, event.entity_name)
        previous = self._window.last_seen(key)
        try:
            return self._match(event, previous)
        finally:
            # Rule 1 compares against the previous event, alerting or not.
            self._window.touch(key, event.occurred_at)

    def _match(self, event: AuditRecord, previous: Optional[datetime]) -> Optional[SuspicionAlert]:
        if event.operation == Operation.DELETE:
            if previous is not None and self._elapsed_ms(previous, event.occurred_at) < self._rapid_window_ms:
                return self._alert(
                    event,
                    f"Rapid DELETE operations detected from {event.actor_name}",
                    Severity.HIGH,
                    {
                        "user": event.actor_name,
                        "table": event.entity_name,
                        "operation": event.operation.value,
                    },
                )
            return self._alert(
                event,
                f"DELETE operation detected on {event.entity_name}",
                Severity.MEDIUM,
                {
                    "user": event.actor_name,
                    "table": event.entity_name,
                    "deletedData": event.before_image,
                },
            )

        if event.operation == Operation.UPDATE and event.entity_name == self._identity_entity:
            old_role = (event.before_image or {}).get(self._role_field)
            new_role = (event.after_image or {}).get(self._role_field)
            if old_role != new_role:
                return self._alert(
                    event,
                    "Role modification detected for user",
                    Severity.CRITICAL,
                    {
                        "user": event.actor_name,
                        "oldRole": old_role,
                        "newRole": new_role,
                    },
                )
        return None

    @staticmethod
    def _elapsed_ms(earlier: datetime, later: datetime) -> float:
        # abs(): notifications from concurrent transactions can arrive slightly out of order.
        return abs((later - earlier).total_seconds()) * 1000.0

    @staticmethod
    def _alert(event: AuditRecord, message: str, severity: Severity, details: dict) -> SuspicionAlert:
        return SuspicionAlert(
            message=message,
            severity=severity,
            occurred_at=event.occurred_at,
            details=details,
            related_audit_record_id=event.id,
        )

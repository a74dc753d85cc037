"""
Dispatcher: turns decoded change notifications into canonical audit events.

Steps per notification: deduplicate -> persist (sole writer of AuditRecord) -> broadcast audit_event
-> detect -> persist + broadcast suspicion_alert. on_raw_event never raises past its boundary.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from audit_stream.application.audit_repository import AuditRepository
from audit_stream.application.broadcast_hub import (
    AUDIT_EVENT_CHANNEL,
    SUSPICION_ALERT_CHANNEL,
    BroadcastHub,
)
from audit_stream.application.detector import SuspiciousActivityDetector
from audit_stream.domain.models.audit import AuditRecord, SuspicionAlert
from audit_stream.domain.schemas.audit import (
    AuditEventPayload,
    ChangeNotification,
    SuspicionAlertPayload,
)

DEDUP_CAPACITY = 100
DEDUP_HORIZON_SECONDS = 60.0


def fingerprint(event: ChangeNotification) -> str:
    """
    Key identifying one physical mutation: entity, operation, timestamp and row image.
    The after image is used; DELETE has none, so its before image stands in.
    """
    image = event.after_image if event.after_image is not None else event.before_image
    parts = [
        event.entity_name,
        event.operation.value,
        event.occurred_at.isoformat(),
        json.dumps(image, sort_keys=True, default=str),
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


class Deduplicator:
    """
    Recently seen fingerprints. Entries expire after horizon_seconds; beyond capacity
    the oldest entry is evicted first, so memory stays bounded.
    """

    def __init__(
        self,
        capacity: int = DEDUP_CAPACITY,
        horizon_seconds: float = DEDUP_HORIZON_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity
        self._horizon = horizon_seconds
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        self._expire(self._clock())
        return key in self._seen

    def check_and_remember(self, key: str) -> bool:
        """Return True if key is new (and remember it), False if it is a duplicate."""
        now = self._clock()
        self._expire(now)
        if key in self._seen:
            return False
        self._seen[key] = now
        while len(self._seen) > self._capacity:
            self._seen.popitem(last=False)
        return True

    def _expire(self, now: float) -> None:
        # Insertion order is time order, so expired entries are always at the front.
        while self._seen:
            key, inserted = next(iter(self._seen.items()))
            if now - inserted < self._horizon:
                break
            self._seen.popitem(last=False)


class Dispatcher:
    """
    Consumes decoded notifications. Persistence, broadcast and detection failures are each
    logged and isolated so one bad event never stops the stream.
    Ordering: the audit_event broadcast completes before the detector runs.
    """

    def __init__(
        self,
        repository: AuditRepository,
        hub: BroadcastHub,
        detector: SuspiciousActivityDetector,
        deduplicator: Optional[Deduplicator] = None,
        logger: Optional[logging.Logger] = None,
        metrics: Any = None,
    ) -> None:
        self._repository = repository
        self._hub = hub
        self._detector = detector
        self._dedup = deduplicator if deduplicator is not None else Deduplicator()
        self._logger = logger or logging.getLogger(__name__)
        self._metrics = metrics

    @property
    def deduplicator(self) -> Deduplicator:
        return self._dedup

    async def on_raw_event(self, event: ChangeNotification) -> None:
        try:
            await self._dispatch(event)
        except Exception as e:
            self._logger.exception(
                "dispatch_failed",
                extra={"entity": getattr(event, "entity_name", None), "error": str(e)},
            )
            self._count("dispatch_failures")

    async def _dispatch(self, event: ChangeNotification) -> None:
        started = time.monotonic()

        # Step 1: Deduplicate
        if not self._dedup.check_and_remember(fingerprint(event)):
            self._logger.info(
                "duplicate_notification_dropped",
                extra={"entity": event.entity_name, "operation": event.operation.value},
            )
            self._count("duplicates_dropped", entity=event.entity_name)
            return
        self._count("events_received", entity=event.entity_name)

        # Step 2: Persist (sole writer); failure does not stop broadcast or detection
        record = event.to_record()
        try:
            record = await self._repository.save_audit_record(record)
        except Exception as e:
            self._logger.error(
                "audit_record_persist_failed",
                extra={"entity": event.entity_name, "operation": event.operation.value, "error": str(e)},
            )
            self._count("persist_failures", category="audit_record")

        # Step 3: Broadcast canonical event
        await self._hub.broadcast(AUDIT_EVENT_CHANNEL, AuditEventPayload.from_record(record).to_message())
        self._logger.info(
            "audit_event_dispatched",
            extra={
                "audit_record_id": record.id,
                "entity": record.entity_name,
                "operation": record.operation.value,
                "actor": record.actor_name,
            },
        )

        # Step 4: Detect, after observers have the base event
        alert = self._evaluate(record)
        if alert is not None:
            await self._raise_alert(alert)

        if self._metrics is not None:
            self._metrics.observe_latency("dispatch_latency_ms", (time.monotonic() - started) * 1000.0)

    def _evaluate(self, record: AuditRecord) -> Optional[SuspicionAlert]:
        try:
            return self._detector.evaluate(record)
        except Exception as e:
            self._logger.exception(
                "detector_failed",
                extra={"audit_record_id": record.id, "error": str(e)},
            )
            return None

    async def _raise_alert(self, alert: SuspicionAlert) -> None:
        try:
            alert = await self._repository.save_alert(alert)
        except Exception as e:
            self._logger.error(
                "alert_persist_failed",
                extra={"audit_record_id": alert.related_audit_record_id, "error": str(e)},
            )
            self._count("persist_failures", category="alert")
        await self._hub.broadcast(SUSPICION_ALERT_CHANNEL, SuspicionAlertPayload.from_alert(alert).to_message())
        self._logger.warning(
            "suspicious_activity_detected",
            extra={
                "alert_id": alert.id,
                "audit_record_id": alert.related_audit_record_id,
                "severity": alert.severity.value,
                "alert_message": alert.message,
            },
        )
        self._count("alerts_raised", category=alert.severity.value)

    def _count(self, name: str, **labels: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(name, 1, **labels)

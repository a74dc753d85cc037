"""Dispatcher tests: persist -> broadcast -> detect ordering, dedup, failure isolation."""

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from audit_stream.application.broadcast_hub import BroadcastHub
from audit_stream.application.detector import SuspiciousActivityDetector
from audit_stream.application.dispatcher import Dispatcher
from audit_stream.domain.models.audit import Severity, SuspicionAlert
from audit_stream.domain.schemas.audit import ChangeNotification
from audit_stream.observability.metrics import MetricsCollector


class RecordingSubscriber:
    def __init__(self) -> None:
        self.messages = []

    async def send_json(self, data) -> None:
        self.messages.append(data)


def _event(operation="INSERT", at="2024-05-01T10:00:00+00:00", actor="Admin"):
    return ChangeNotification.model_validate(
        {
            "table_name": "User",
            "operation": operation,
            "user_name": actor,
            "old_data": {"id": 1, "role": "Faculty"} if operation != "INSERT" else None,
            "new_data": {"id": 1, "role": "Faculty"} if operation != "DELETE" else None,
            "timestamp": at,
        }
    )


@pytest.fixture
def repository():
    r = AsyncMock()
    r.save_audit_record = AsyncMock(side_effect=lambda record: record.with_id(41))
    r.save_alert = AsyncMock(side_effect=lambda alert: alert.with_id(7))
    return r


@pytest.fixture
def subscriber():
    return RecordingSubscriber()


@pytest.fixture
def hub(subscriber):
    h = BroadcastHub()
    h.connect(subscriber)
    return h


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def dispatcher(repository, hub, metrics):
    return Dispatcher(
        repository=repository,
        hub=hub,
        detector=SuspiciousActivityDetector(),
        logger=logging.getLogger(__name__),
        metrics=metrics,
    )


@pytest.mark.asyncio
async def test_insert_is_persisted_and_broadcast(dispatcher, repository, subscriber):
    await dispatcher.on_raw_event(_event())
    repository.save_audit_record.assert_awaited_once()
    repository.save_alert.assert_not_awaited()
    assert len(subscriber.messages) == 1
    message = subscriber.messages[0]
    assert message["type"] == "audit_event"
    assert message["data"]["id"] == 41
    assert message["data"]["entityName"] == "User"
    assert message["data"]["actorName"] == "Admin"


@pytest.mark.asyncio
async def test_duplicate_notification_dropped(dispatcher, repository, subscriber, metrics):
    await dispatcher.on_raw_event(_event())
    await dispatcher.on_raw_event(_event())
    assert repository.save_audit_record.await_count == 1
    assert len(subscriber.messages) == 1
    assert metrics.counter("duplicates_dropped") == 1


@pytest.mark.asyncio
async def test_delete_broadcasts_event_then_alert(dispatcher, repository, subscriber):
    await dispatcher.on_raw_event(_event(operation="DELETE"))
    assert [m["type"] for m in subscriber.messages] == ["audit_event", "suspicion_alert"]
    alert = subscriber.messages[1]["data"]
    assert alert["severity"] == "MEDIUM"
    assert alert["id"] == 7
    assert alert["relatedAuditRecordId"] == 41
    repository.save_alert.assert_awaited_once()


@pytest.mark.asyncio
async def test_audit_broadcast_happens_before_detection(repository, hub, subscriber):
    seen_at_detection = []
    detector = MagicMock()

    def evaluate(record):
        seen_at_detection.append(len(subscriber.messages))
        return None

    detector.evaluate = MagicMock(side_effect=evaluate)
    dispatcher = Dispatcher(repository=repository, hub=hub, detector=detector)
    await dispatcher.on_raw_event(_event())
    assert seen_at_detection == [1]


@pytest.mark.asyncio
async def test_persist_failure_still_broadcasts_with_null_id(hub, subscriber, metrics):
    repository = AsyncMock()
    repository.save_audit_record = AsyncMock(side_effect=RuntimeError("db down"))
    repository.save_alert = AsyncMock(side_effect=RuntimeError("db down"))
    dispatcher = Dispatcher(
        repository=repository,
        hub=hub,
        detector=SuspiciousActivityDetector(),
        metrics=metrics,
    )
    await dispatcher.on_raw_event(_event(operation="DELETE"))
    assert [m["type"] for m in subscriber.messages] == ["audit_event", "suspicion_alert"]
    assert subscriber.messages[0]["data"]["id"] is None
    assert subscriber.messages[1]["data"]["id"] is None
    assert subscriber.messages[1]["data"]["relatedAuditRecordId"] is None
    assert metrics.counter("persist_failures") == 2


@pytest.mark.asyncio
async def test_detector_failure_is_isolated(repository, hub, subscriber):
    detector = MagicMock()
    detector.evaluate = MagicMock(side_effect=ValueError("bad rule"))
    dispatcher = Dispatcher(repository=repository, hub=hub, detector=detector)
    await dispatcher.on_raw_event(_event(operation="DELETE"))
    assert [m["type"] for m in subscriber.messages] == ["audit_event"]


@pytest.mark.asyncio
async def test_on_raw_event_never_raises(repository, subscriber):
    hub = MagicMock()
    hub.broadcast = AsyncMock(side_effect=RuntimeError("hub exploded"))
    metrics = MetricsCollector()
    dispatcher = Dispatcher(
        repository=repository,
        hub=hub,
        detector=SuspiciousActivityDetector(),
        metrics=metrics,
    )
    await dispatcher.on_raw_event(_event())
    assert metrics.counter("dispatch_failures") == 1


@pytest.mark.asyncio
async def test_rapid_delete_by_same_actor_is_high(dispatcher, subscriber):
    await dispatcher.on_raw_event(_event(at="2024-05-01T10:00:00+00:00"))
    await dispatcher.on_raw_event(_event(operation="DELETE", at="2024-05-01T10:00:00.300000+00:00"))
    alerts = [m["data"] for m in subscriber.messages if m["type"] == "suspicion_alert"]
    assert len(alerts) == 1
    assert alerts[0]["severity"] == Severity.HIGH.value
    assert alerts[0]["message"] == "Rapid DELETE operations detected from Admin"


@pytest.mark.asyncio
async def test_alert_persisted_with_related_record(dispatcher, repository):
    await dispatcher.on_raw_event(_event(operation="DELETE"))
    saved: SuspicionAlert = repository.save_alert.await_args.args[0]
    assert saved.related_audit_record_id == 41
    assert saved.occurred_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

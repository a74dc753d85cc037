"""
Chaos: audit store failures at runtime.
System must: keep streaming when persistence fails, degrade reads to empty lists,
resume capture after the subscription connection is lost and re-established.
"""

from unittest.mock import AsyncMock

import pytest

from audit_stream.application.exceptions import QueryFailure
from audit_stream.config.settings import AppSettings
from audit_stream.core.container import build_in_memory_pipeline
from audit_stream.domain.models.audit import ActorContext, ConnectionConfig, Severity

CONFIG = ConnectionConfig(host="localhost", port=5432, database="school", user="app", password="pw")


class RecordingSubscriber:
    def __init__(self) -> None:
        self.messages = []

    async def send_json(self, data) -> None:
        self.messages.append(data)


@pytest.fixture
async def stack():
    s = build_in_memory_pipeline(AppSettings(_env_file=None))
    await s.pipeline.configure(CONFIG)
    yield s
    await s.pipeline.shutdown()


@pytest.mark.asyncio
async def test_persistence_outage_still_streams_events_and_alerts(stack):
    """When the audit table is unwritable, subscribers still get the event (id None) and the alert."""
    subscriber = RecordingSubscriber()
    stack.pipeline.hub.connect(subscriber)
    stack.repository.save_audit_record = AsyncMock(side_effect=QueryFailure("connection reset", transient=True))
    stack.repository.save_alert = AsyncMock(side_effect=QueryFailure("connection reset", transient=True))

    row = stack.store.insert("User", {"name": "Ada", "role": "Faculty"}, ActorContext("Admin"))
    stack.store.update("User", row["id"], {"role": "Admin"}, ActorContext("Admin"))
    await stack.pipeline.drain()

    types = [m["type"] for m in subscriber.messages]
    assert types == ["audit_event", "audit_event", "suspicion_alert"]
    assert all(m["data"]["id"] is None for m in subscriber.messages)
    assert subscriber.messages[2]["data"]["severity"] == Severity.CRITICAL.value
    assert stack.pipeline.status()["metrics"]["counters_by_labels"]["persist_failures"] == {
        "persist_failures:category=audit_record": 2,
        "persist_failures:category=alert": 1,
    }


@pytest.mark.asyncio
async def test_persistence_recovers_after_transient_failure(stack):
    stack.repository.save_audit_record = AsyncMock(side_effect=QueryFailure("timeout", transient=True))
    stack.store.insert("Course", {"name": "Algebra", "code": "M101"})
    await stack.pipeline.drain()

    del stack.repository.save_audit_record
    stack.store.insert("Course", {"name": "Geometry", "code": "M102"})
    await stack.pipeline.drain()

    assert [r.after_image["name"] for r in stack.repository.records] == ["Geometry"]


@pytest.mark.asyncio
async def test_reads_degrade_to_empty_on_query_failure(stack):
    stack.repository.list_recent_audit_records = AsyncMock(side_effect=QueryFailure("relation missing"))
    stack.repository.list_recent_alerts = AsyncMock(side_effect=QueryFailure("relation missing"))
    assert await stack.pipeline.list_recent_audit_records() == []
    assert await stack.pipeline.list_recent_alerts() == []


@pytest.mark.asyncio
async def test_lost_subscription_is_reestablished_without_replay(stack):
    """Changes committed while the listen connection is down are not replayed."""
    await stack.bus.close_subscription()
    assert stack.pipeline.listener.is_subscribed is False

    stack.store.insert("Course", {"name": "Lost", "code": "X1"})
    await stack.pipeline.start_listening()
    assert stack.pipeline.listener.is_subscribed is True

    stack.store.insert("Course", {"name": "Seen", "code": "X2"})
    await stack.pipeline.drain()
    assert [r.after_image["name"] for r in stack.repository.records] == ["Seen"]


@pytest.mark.asyncio
async def test_malformed_notification_does_not_stop_stream(stack):
    stack.bus.notify("audit_channel", "{not json")
    stack.bus.notify("audit_channel", '{"table_name": "User"}')
    stack.store.insert("Course", {"name": "Algebra", "code": "M101"})
    await stack.pipeline.drain()
    assert len(stack.repository.records) == 1
    assert stack.pipeline.status()["metrics"]["counters"]["notifications_malformed"] == 2

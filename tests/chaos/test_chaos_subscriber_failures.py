"""
Chaos: realtime subscriber and broker failures.
System must: prune dead subscribers mid-stream, keep delivering to the rest,
keep capturing and persisting when the message broker is unreachable.
"""

from unittest.mock import AsyncMock, patch

import pytest

from audit_stream.application.broadcast_hub import BroadcastHub
from audit_stream.config.settings import AppSettings
from audit_stream.core.container import build_in_memory_pipeline
from audit_stream.domain.models.audit import ActorContext, ConnectionConfig
from audit_stream.infrastructure.messaging.rabbitmq_publisher import RabbitMQBroadcastSink

CONFIG = ConnectionConfig(host="localhost", port=5432, database="school", user="app", password="pw")


class RecordingSubscriber:
    def __init__(self) -> None:
        self.messages = []

    async def send_json(self, data) -> None:
        self.messages.append(data)


class DroppingSubscriber(RecordingSubscriber):
    """Accepts a fixed number of messages, then behaves like a closed socket."""

    def __init__(self, accept: int) -> None:
        super().__init__()
        self.accept = accept

    async def send_json(self, data) -> None:
        if len(self.messages) >= self.accept:
            raise RuntimeError("websocket closed")
        await super().send_json(data)


@pytest.mark.asyncio
async def test_dead_subscriber_pruned_mid_stream():
    stack = build_in_memory_pipeline(AppSettings(_env_file=None))
    healthy, flaky = RecordingSubscriber(), DroppingSubscriber(accept=1)
    stack.pipeline.hub.connect(flaky)
    stack.pipeline.hub.connect(healthy)
    await stack.pipeline.configure(CONFIG)

    for name in ("A", "B", "C"):
        stack.store.insert("Course", {"name": name, "code": name})
    await stack.pipeline.drain()

    assert len(healthy.messages) == 3
    assert len(flaky.messages) == 1
    assert stack.pipeline.hub.subscriber_count == 1
    assert len(stack.repository.records) == 3
    await stack.pipeline.shutdown()


@pytest.mark.asyncio
async def test_all_subscribers_failing_does_not_raise():
    hub = BroadcastHub()
    for _ in range(3):
        hub.connect(DroppingSubscriber(accept=0))
    assert await hub.broadcast("audit_event", {"id": 1}) == 0
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_broker_outage_does_not_block_capture():
    settings = AppSettings(_env_file=None)
    stack = build_in_memory_pipeline(settings)
    sink = RabbitMQBroadcastSink("amqp://localhost/", settings.rabbitmq_exchange)
    stack.pipeline.hub.connect(sink)
    websocket = RecordingSubscriber()
    stack.pipeline.hub.connect(websocket)

    with patch("aio_pika.connect_robust", AsyncMock(side_effect=ConnectionError("broker down"))):
        await stack.pipeline.configure(CONFIG)
        row = stack.store.insert("User", {"name": "Ada"}, ActorContext("Admin"))
        stack.store.delete("User", row["id"], ActorContext("Admin"))
        await stack.pipeline.drain()

    assert len(stack.repository.records) == 2
    assert len(stack.repository.alerts) == 1
    assert [m["type"] for m in websocket.messages] == ["audit_event", "audit_event", "suspicion_alert"]
    assert stack.pipeline.hub.subscriber_count == 2
    await stack.pipeline.shutdown()

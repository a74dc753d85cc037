"""BroadcastHub tests: fan-out envelope, pruning failed subscribers, no replay."""

from unittest.mock import AsyncMock

import pytest

from audit_stream.application.broadcast_hub import AUDIT_EVENT_CHANNEL, BroadcastHub
from audit_stream.observability.metrics import MetricsCollector


def _subscriber(fail: bool = False):
    s = AsyncMock()
    s.send_json = AsyncMock(side_effect=ConnectionError("closed") if fail else None)
    return s


@pytest.mark.asyncio
async def test_broadcast_wraps_payload_in_envelope():
    hub = BroadcastHub()
    s = _subscriber()
    hub.connect(s)
    delivered = await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 1})
    assert delivered == 1
    s.send_json.assert_awaited_once_with({"type": "audit_event", "data": {"id": 1}})


@pytest.mark.asyncio
async def test_failed_subscriber_is_pruned_others_still_receive():
    metrics = MetricsCollector()
    hub = BroadcastHub(metrics=metrics)
    good, bad = _subscriber(), _subscriber(fail=True)
    hub.connect(bad)
    hub.connect(good)
    delivered = await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 1})
    assert delivered == 1
    assert hub.subscriber_count == 1
    await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 2})
    assert bad.send_json.await_count == 1
    assert good.send_json.await_count == 2
    assert metrics.counter("subscribers_pruned") == 1


@pytest.mark.asyncio
async def test_no_replay_for_late_subscriber():
    hub = BroadcastHub()
    await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 1})
    late = _subscriber()
    hub.connect(late)
    await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 2})
    late.send_json.assert_awaited_once_with({"type": "audit_event", "data": {"id": 2}})


@pytest.mark.asyncio
async def test_broadcast_without_subscribers_is_noop():
    hub = BroadcastHub()
    assert await hub.broadcast(AUDIT_EVENT_CHANNEL, {"id": 1}) == 0


def test_connect_is_idempotent_and_disconnect_removes():
    hub = BroadcastHub()
    s = _subscriber()
    hub.connect(s)
    hub.connect(s)
    assert hub.subscriber_count == 1
    hub.disconnect(s)
    hub.disconnect(s)
    assert hub.subscriber_count == 0

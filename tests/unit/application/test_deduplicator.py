"""Deduplicator and fingerprint tests: horizon expiry, capacity eviction, DELETE uses the before image."""

from datetime import datetime, timezone

from audit_stream.application.dispatcher import Deduplicator, fingerprint
from audit_stream.domain.schemas.audit import ChangeNotification


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _event(operation="INSERT", old=None, new=None, at="2024-05-01T10:00:00+00:00", table="User"):
    if operation == "INSERT" and new is None:
        new = {"id": 1}
    if operation == "DELETE" and old is None:
        old = {"id": 1}
    return ChangeNotification.model_validate(
        {
            "table_name": table,
            "operation": operation,
            "user_name": "Admin",
            "old_data": old,
            "new_data": new,
            "timestamp": at,
        }
    )


def test_same_notification_has_same_fingerprint():
    assert fingerprint(_event()) == fingerprint(_event())


def test_fingerprint_ignores_actor():
    a = _event()
    b = a.model_copy(update={"actor_name": "Someone"})
    assert fingerprint(a) == fingerprint(b)


def test_fingerprint_distinguishes_timestamp_and_operation():
    assert fingerprint(_event()) != fingerprint(_event(at="2024-05-01T10:00:00.000001+00:00"))
    assert fingerprint(_event()) != fingerprint(_event(operation="DELETE"))


def test_delete_fingerprint_uses_before_image():
    assert fingerprint(_event(operation="DELETE", old={"id": 1})) != fingerprint(
        _event(operation="DELETE", old={"id": 2})
    )


def test_fingerprint_is_key_order_independent():
    assert fingerprint(_event(new={"a": 1, "b": 2})) == fingerprint(_event(new={"b": 2, "a": 1}))


def test_duplicate_within_horizon_rejected():
    clock = FakeClock()
    dedup = Deduplicator(capacity=10, horizon_seconds=60, clock=clock)
    assert dedup.check_and_remember("k") is True
    clock.now = 59.9
    assert dedup.check_and_remember("k") is False


def test_entry_expires_after_horizon():
    clock = FakeClock()
    dedup = Deduplicator(capacity=10, horizon_seconds=60, clock=clock)
    dedup.check_and_remember("k")
    clock.now = 60.0
    assert "k" not in dedup
    assert dedup.check_and_remember("k") is True


def test_capacity_evicts_oldest_first():
    dedup = Deduplicator(capacity=3, horizon_seconds=60, clock=FakeClock())
    for key in ("a", "b", "c", "d"):
        dedup.check_and_remember(key)
    assert len(dedup) == 3
    assert "a" not in dedup
    assert "d" in dedup


def test_default_capacity_is_one_hundred():
    dedup = Deduplicator(clock=FakeClock())
    for i in range(150):
        dedup.check_and_remember(str(i))
    assert len(dedup) == 100
    assert "49" not in dedup
    assert "50" in dedup


def test_timestamp_from_wire_is_aware():
    assert _event().occurred_at.tzinfo is not None
    assert _event().occurred_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

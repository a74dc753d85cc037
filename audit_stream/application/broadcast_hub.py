"""Realtime broadcast hub: fans canonical events and alerts out to every live subscriber."""

import logging
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)

AUDIT_EVENT_CHANNEL = "audit_event"
SUSPICION_ALERT_CHANNEL = "suspicion_alert"


class Subscriber(Protocol):
    """Anything that can receive a JSON message (a WebSocket, a broker sink, a test double)."""

    async def send_json(self, data: Any) -> None: ...


class BroadcastHub:
    """
    Live subscriber set. No replay: a subscriber only sees broadcasts made after it connected.
    A subscriber whose send fails is pruned; broadcast never raises.
    """

    def __init__(self, metrics: Any = None) -> None:
        self._subscribers: List[Subscriber] = []
        self._metrics = metrics

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def connect(self, subscriber: Subscriber) -> None:
        if any(s is subscriber for s in self._subscribers):
            return
        self._subscribers.append(subscriber)
        logger.info("subscriber_connected", extra={"subscribers": len(self._subscribers)})

    def disconnect(self, subscriber: Subscriber) -> None:
        before = len(self._subscribers)
        self._subscribers = [s for s in self._subscribers if s is not subscriber]
        if len(self._subscribers) != before:
            logger.info("subscriber_disconnected", extra={"subscribers": len(self._subscribers)})

    async def broadcast(self, channel: str, payload: Dict[str, Any]) -> int:
        """Send {"type": channel, "data": payload} to every subscriber. Returns the number of successful sends."""
        message = {"type": channel, "data": payload}
        delivered = 0
        dead: List[Subscriber] = []
        # Snapshot: subscribers may connect or disconnect while a send is suspended.
        for subscriber in list(self._subscribers):
            try:
                await subscriber.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "broadcast_send_failed",
                    extra={"channel": channel, "error": str(e)},
                )
                dead.append(subscriber)
        for subscriber in dead:
            self.disconnect(subscriber)
        if self._metrics is not None:
            self._metrics.increment("broadcast_messages", 1, category=channel)
            if dead:
                self._metrics.increment("subscribers_pruned", len(dead))
        return delivered

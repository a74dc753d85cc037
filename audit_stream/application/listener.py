"""
Notification listener: one long-lived subscription to the change channel.

Raw payloads are queued by the driver callback and decoded/forwarded in arrival order by a
single consumer task, so downstream processing never runs concurrently with itself.
"""

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple

from pydantic import ValidationError

from audit_stream.application.exceptions import NotConnected, NotificationDecodeFailure
from audit_stream.domain.schemas.audit import ChangeNotification

EventHandler = Callable[[ChangeNotification], Awaitable[None]]


class ListenConnection(Protocol):
    """Subset of asyncpg.Connection used for LISTEN/NOTIFY."""

    async def add_listener(self, channel: str, callback: Callable[..., Any]) -> None: ...
    async def remove_listener(self, channel: str, callback: Callable[..., Any]) -> None: ...
    def is_closed(self) -> bool: ...


class SubscriptionProvider(Protocol):
    """Owner of the subscription connection (the connection manager, or an in-memory bus)."""

    @property
    def is_configured(self) -> bool: ...

    async def open_subscription(self) -> ListenConnection: ...
    async def close_subscription(self) -> None: ...


def decode_notification(payload: Any) -> ChangeNotification:
    """Decode a raw payload (JSON text or bytes) into a ChangeNotification."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise NotificationDecodeFailure(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise NotificationDecodeFailure("Payload must be a JSON object")
    try:
        return ChangeNotification.model_validate(data)
    except ValidationError as e:
        raise NotificationDecodeFailure(f"Payload failed validation: {e.error_count()} error(s)") from e


class NotificationListener:
    """
    subscribe() is idempotent while the subscription is live. It never connects on its own:
    without a configured store it raises NotConnected.
    """

    def __init__(
        self,
        provider: SubscriptionProvider,
        channel: str,
        logger: Optional[logging.Logger] = None,
        metrics: Any = None,
    ) -> None:
        self._provider = provider
        self._channel = channel
        self._logger = logger or logging.getLogger(__name__)
        self._metrics = metrics
        self._connection: Optional[ListenConnection] = None
        self._callback: Optional[Callable[..., None]] = None
        self._on_event: Optional[EventHandler] = None
        self._queue: Optional["asyncio.Queue[Tuple[int, Any]]"] = None
        self._consumer: Optional[asyncio.Task] = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def is_subscribed(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    async def subscribe(self, on_event: EventHandler) -> None:
        # One subscribe/unsubscribe at a time; the awaits below would let a second caller through.
        async with self._lock:
            await self._subscribe(on_event)

    async def _subscribe(self, on_event: EventHandler) -> None:
        if self.is_subscribed:
            self._logger.info("listener_already_subscribed", extra={"channel": self._channel})
            return
        if not self._provider.is_configured:
            raise NotConnected(
                "Audit store not configured. Configure the connection (POST /agent/connect) before listening."
            )

        # A previous subscription may have been closed underneath us (e.g. by a reconfigure).
        await self._stop()

        self._generation += 1
        generation = self._generation
        self._on_event = on_event
        self._queue = asyncio.Queue()

        connection = await self._provider.open_subscription()

        def _callback(_connection: Any, _pid: int, _channel: str, payload: Any) -> None:
            self._enqueue(generation, payload)

        await connection.add_listener(self._channel, _callback)
        self._connection = connection
        self._callback = _callback
        self._consumer = asyncio.create_task(self._consume())
        self._logger.info("listener_subscribed", extra={"channel": self._channel})

    async def unsubscribe(self) -> None:
        """Stop receiving. Payloads already queued from this subscription are discarded."""
        async with self._lock:
            await self._stop()
            await self._provider.close_subscription()
        self._logger.info("listener_unsubscribed", extra={"channel": self._channel})

    async def drain(self) -> None:
        """Wait until every payload queued so far has been processed."""
        if self._queue is not None and self._consumer is not None and not self._consumer.done():
            await self._queue.join()

    def _enqueue(self, generation: int, payload: Any) -> None:
        if self._queue is None or generation != self._generation:
            return
        self._queue.put_nowait((generation, payload))

    async def _consume(self) -> None:
        queue = self._queue
        while True:
            generation, payload = await queue.get()
            try:
                if generation != self._generation:
                    continue
                await self._handle(payload)
            finally:
                queue.task_done()

    async def _handle(self, payload: Any) -> None:
        try:
            event = decode_notification(payload)
        except NotificationDecodeFailure as e:
            self._logger.warning(
                "notification_decode_failed",
                extra={"channel": self._channel, "error": e.message},
            )
            if self._metrics is not None:
                self._metrics.increment("notifications_malformed", 1)
            return
        try:
            await self._on_event(event)
        except Exception as e:
            self._logger.exception("event_handler_failed", extra={"error": str(e)})

    async def _stop(self) -> None:
        self._generation += 1
        connection, callback = self._connection, self._callback
        self._connection = None
        self._callback = None
        if connection is not None and callback is not None and not connection.is_closed():
            try:
                await connection.remove_listener(self._channel, callback)
            except Exception as e:
                self._logger.warning("listener_remove_failed", extra={"error": str(e)})
        consumer = self._consumer
        self._consumer = None
        if consumer is not None and not consumer.done():
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        self._queue = None

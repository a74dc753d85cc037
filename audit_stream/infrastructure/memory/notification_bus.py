"""In-memory LISTEN/NOTIFY bus. Implements the subscription provider the listener expects."""

from typing import Any, Callable, Dict, List

from audit_stream.application.exceptions import NotConnected


class InMemoryListenConnection:
    """Same listener surface as asyncpg.Connection: callbacks get (connection, pid, channel, payload)."""

    def __init__(self, pid: int) -> None:
        self._pid = pid
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._closed = False

    async def add_listener(self, channel: str, callback: Callable[..., Any]) -> None:
        self._listeners.setdefault(channel, []).append(callback)

    async def remove_listener(self, channel: str, callback: Callable[..., Any]) -> None:
        callbacks = self._listeners.get(channel, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        self._listeners.clear()

    def deliver(self, channel: str, payload: str) -> None:
        if self._closed:
            return
        for callback in list(self._listeners.get(channel, [])):
            callback(self, self._pid, channel, payload)


class InMemoryNotificationBus:
    """
    notify() fans a payload out to every open listen connection, synchronously, in call order.
    configured mirrors ConnectionManager.is_configured: without it open_subscription() refuses.
    """

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.config: Any = None
        self._connections: List[InMemoryListenConnection] = []
        self._subscription: Any = None
        self._next_pid = 1
        self.notified: int = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def configure(self, config: Any) -> None:
        if config != self.config:
            await self.close_subscription()
        self.config = config
        self.configured = True

    async def disconnect(self) -> None:
        await self.close_subscription()
        self.config = None
        self.configured = False

    async def open_subscription(self) -> InMemoryListenConnection:
        if not self.configured:
            raise NotConnected("No store configured")
        if self._subscription is not None and not self._subscription.is_closed():
            return self._subscription
        self._subscription = InMemoryListenConnection(pid=self._next_pid)
        self._next_pid += 1
        self._connections.append(self._subscription)
        return self._subscription

    async def close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    def notify(self, channel: str, payload: str) -> None:
        self.notified += 1
        self._connections = [c for c in self._connections if not c.is_closed()]
        for connection in list(self._connections):
            connection.deliver(channel, payload)

"""
Audit pipeline: the service object owning every component of one process's change-capture flow.

Built once at startup and kept on app.state. Store-specific pieces (connection manager,
schema installer, repository) are injected, so the same pipeline runs against PostgreSQL
or the in-memory store.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from audit_stream.application.audit_repository import AuditRepository
from audit_stream.application.broadcast_hub import BroadcastHub, Subscriber
from audit_stream.application.detector import SuspiciousActivityDetector
from audit_stream.application.dispatcher import Deduplicator, Dispatcher
from audit_stream.application.exceptions import ApplicationError, NotConnected
from audit_stream.application.listener import NotificationListener, SubscriptionProvider
from audit_stream.domain.models.audit import AuditRecord, ConnectionConfig, SuspicionAlert
from audit_stream.observability.metrics import MetricsCollector

DEFAULT_RECENT_AUDIT_LIMIT = 100
DEFAULT_RECENT_ALERT_LIMIT = 50


class StoreConnections(SubscriptionProvider, Protocol):
    @property
    def config(self) -> Optional[ConnectionConfig]: ...

    async def configure(self, config: ConnectionConfig) -> None: ...
    async def disconnect(self) -> None: ...


class Installer(Protocol):
    async def ensure_infrastructure(self) -> None: ...
    async def describe(self) -> Dict[str, Any]: ...


class AuditPipeline:
    def __init__(
        self,
        connections: StoreConnections,
        installer: Installer,
        repository: AuditRepository,
        channel: str,
        detector: Optional[SuspiciousActivityDetector] = None,
        deduplicator: Optional[Deduplicator] = None,
        hub: Optional[BroadcastHub] = None,
        sinks: Optional[List[Subscriber]] = None,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[logging.Logger] = None,
        recent_audit_limit: int = DEFAULT_RECENT_AUDIT_LIMIT,
        recent_alert_limit: int = DEFAULT_RECENT_ALERT_LIMIT,
    ) -> None:
        self._connections = connections
        self._installer = installer
        self._repository = repository
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._recent_audit_limit = recent_audit_limit
        self._recent_alert_limit = recent_alert_limit
        self._sinks = list(sinks or [])
        self._hub: Optional[BroadcastHub] = hub
        self._hub_ready = False
        hub = self.init_hub()
        self._detector = detector if detector is not None else SuspiciousActivityDetector()
        self._dispatcher = Dispatcher(
            repository=repository,
            hub=hub,
            detector=self._detector,
            deduplicator=deduplicator,
            logger=logging.getLogger("audit_stream.application.dispatcher"),
            metrics=metrics,
        )
        self._listener = NotificationListener(
            provider=connections,
            channel=channel,
            logger=logging.getLogger("audit_stream.application.listener"),
            metrics=metrics,
        )

    @property
    def hub(self) -> BroadcastHub:
        return self.init_hub()

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def listener(self) -> NotificationListener:
        return self._listener

    @property
    def is_configured(self) -> bool:
        return self._connections.is_configured

    def init_hub(self) -> BroadcastHub:
        """Create the hub and attach configured sinks once; later calls return the same hub."""
        if self._hub is None:
            self._hub = BroadcastHub(metrics=self._metrics)
        if not self._hub_ready:
            for sink in self._sinks:
                self._hub.connect(sink)
            self._hub_ready = True
        return self._hub

    async def configure(self, config: ConnectionConfig) -> None:
        """
        Point the pipeline at config: connect, install capture infrastructure, then listen.
        Raises ConnectFailure or SetupFailure; the pipeline stays unsubscribed in that case.
        """
        if self._connections.config != config and self._listener.is_subscribed:
            await self._listener.unsubscribe()
        await self._connections.configure(config)
        await self._installer.ensure_infrastructure()
        await self._listener.subscribe(self._dispatcher.on_raw_event)
        self._logger.info("pipeline_configured", extra=config.redacted())

    async def start_listening(self) -> None:
        """Subscribe on the already configured store. Raises NotConnected if there is none."""
        await self._listener.subscribe(self._dispatcher.on_raw_event)

    async def drain(self) -> None:
        await self._listener.drain()

    async def list_recent_audit_records(self, limit: Optional[int] = None) -> List[AuditRecord]:
        limit = self._clamp(limit, self._recent_audit_limit)
        if not self._connections.is_configured:
            return []
        try:
            return await self._repository.list_recent_audit_records(limit)
        except ApplicationError as e:
            self._logger.warning("recent_audit_records_unavailable", extra={"error": e.message})
            return []

    async def list_recent_alerts(self, limit: Optional[int] = None) -> List[SuspicionAlert]:
        limit = self._clamp(limit, self._recent_alert_limit)
        if not self._connections.is_configured:
            return []
        try:
            return await self._repository.list_recent_alerts(limit)
        except ApplicationError as e:
            self._logger.warning("recent_alerts_unavailable", extra={"error": e.message})
            return []

    async def describe_schema(self) -> Dict[str, Any]:
        if not self._connections.is_configured:
            raise NotConnected("No store configured")
        return await self._installer.describe()

    def status(self) -> Dict[str, Any]:
        config = self._connections.config
        return {
            "configured": self._connections.is_configured,
            "listening": self._listener.is_subscribed,
            "store": config.redacted() if config is not None else None,
            "subscribers": self.hub.subscriber_count,
            "metrics": self._metrics.export_metrics() if self._metrics is not None else None,
        }

    async def shutdown(self) -> None:
        await self._listener.unsubscribe()
        await self._connections.disconnect()
        for sink in self._sinks:
            self.hub.disconnect(sink)
            close = getattr(sink, "close", None)
            if close is not None:
                try:
                    await close()
                except Exception as e:
                    self._logger.warning("sink_close_failed", extra={"error": str(e)})
        self._logger.info("pipeline_shutdown")

    @staticmethod
    def _clamp(limit: Optional[int], cap: int) -> int:
        if limit is None or limit <= 0:
            return cap
        return min(limit, cap)

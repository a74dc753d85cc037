# audit_stream/core/container.py

"""Pipeline wiring: builds an AuditPipeline from settings, for PostgreSQL or the in-memory store."""

from dataclasses import dataclass
from typing import Optional

from audit_stream.application.detector import ActivityWindow, SuspiciousActivityDetector
from audit_stream.application.dispatcher import Deduplicator
from audit_stream.application.pipeline import AuditPipeline
from audit_stream.config.settings import AppSettings
from audit_stream.domain.models.audit import ConnectionConfig
from audit_stream.infrastructure.database.audit_repository_db import DbAuditRepository
from audit_stream.infrastructure.database.capture import ChangeCaptureEmitter
from audit_stream.infrastructure.database.connection import ConnectionManager
from audit_stream.infrastructure.database.schema_installer import SchemaInstaller
from audit_stream.infrastructure.memory.audit_repository_memory import InMemoryAuditRepository
from audit_stream.infrastructure.memory.entity_store import InMemoryEntityStore, InMemorySchemaInstaller
from audit_stream.infrastructure.memory.notification_bus import InMemoryNotificationBus
from audit_stream.infrastructure.messaging.rabbitmq_publisher import RabbitMQBroadcastSink
from audit_stream.observability.metrics import MetricsCollector


def _detector(settings: AppSettings) -> SuspiciousActivityDetector:
    return SuspiciousActivityDetector(
        rapid_delete_window_ms=settings.rapid_delete_window_ms,
        window=ActivityWindow(capacity=settings.activity_window_capacity),
    )


def _deduplicator(settings: AppSettings) -> Deduplicator:
    return Deduplicator(
        capacity=settings.dedup_capacity,
        horizon_seconds=settings.dedup_horizon_seconds,
    )


def _metrics(settings: AppSettings) -> Optional[MetricsCollector]:
    return MetricsCollector() if settings.enable_metrics else None


def initial_store_config(settings: AppSettings) -> Optional[ConnectionConfig]:
    if not settings.has_initial_store:
        return None
    return ConnectionConfig(
        host=settings.store_host,
        port=settings.store_port,
        database=settings.store_database,
        user=settings.store_user,
        password=settings.store_password or "",
    )


def build_pipeline(settings: AppSettings) -> AuditPipeline:
    """PostgreSQL pipeline: triggers + pg_notify, asyncpg LISTEN, AuditLog/SuspiciousActivity tables."""
    connections = ConnectionManager(actor_setting=settings.actor_setting)
    emitter = ChangeCaptureEmitter(
        channel=settings.notification_channel,
        actor_setting=settings.actor_setting,
    )
    installer = SchemaInstaller(connections, emitter, watched_entities=settings.watched_entities)
    sinks = []
    if settings.rabbitmq_url:
        sinks.append(RabbitMQBroadcastSink(settings.rabbitmq_url, settings.rabbitmq_exchange))
    return AuditPipeline(
        connections=connections,
        installer=installer,
        repository=DbAuditRepository(connections),
        channel=settings.notification_channel,
        detector=_detector(settings),
        deduplicator=_deduplicator(settings),
        sinks=sinks,
        metrics=_metrics(settings),
        recent_audit_limit=settings.recent_audit_limit,
        recent_alert_limit=settings.recent_alert_limit,
    )


@dataclass
class InMemoryStack:
    pipeline: AuditPipeline
    store: InMemoryEntityStore
    bus: InMemoryNotificationBus
    repository: InMemoryAuditRepository
    emitter: ChangeCaptureEmitter


def build_in_memory_pipeline(settings: AppSettings, configured: bool = False) -> InMemoryStack:
    """Same pipeline over the in-memory store and bus. configured=False mirrors a fresh process."""
    bus = InMemoryNotificationBus(configured=configured)
    store = InMemoryEntityStore()
    repository = InMemoryAuditRepository()
    emitter = ChangeCaptureEmitter(
        channel=settings.notification_channel,
        actor_setting=settings.actor_setting,
        notify=bus.notify,
    )
    installer = InMemorySchemaInstaller(store, emitter, settings.watched_entities)
    pipeline = AuditPipeline(
        connections=bus,
        installer=installer,
        repository=repository,
        channel=settings.notification_channel,
        detector=_detector(settings),
        deduplicator=_deduplicator(settings),
        metrics=_metrics(settings),
        recent_audit_limit=settings.recent_audit_limit,
        recent_alert_limit=settings.recent_alert_limit,
    )
    return InMemoryStack(pipeline=pipeline, store=store, bus=bus, repository=repository, emitter=emitter)

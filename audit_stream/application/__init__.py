# Application layer: services that orchestrate domain and infrastructure.

from audit_stream.application.audit_repository import AuditRepository
from audit_stream.application.exceptions import (
    ApplicationError,
    ConnectFailure,
    NotConnected,
    NotificationDecodeFailure,
    QueryFailure,
    SetupFailure,
)
from audit_stream.application.pipeline import AuditPipeline

__all__ = [
    "AuditPipeline",
    "AuditRepository",
    "ApplicationError",
    "ConnectFailure",
    "NotConnected",
    "NotificationDecodeFailure",
    "QueryFailure",
    "SetupFailure",
]

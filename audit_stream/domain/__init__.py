"""Domain layer: models, schemas, validators, exceptions. Pure business logic only."""

from audit_stream.domain.exceptions import (
    DomainError,
    DomainValidationError,
    InvalidImageError,
    UnknownOperationError,
)
from audit_stream.domain.models import (
    DEFAULT_ACTOR,
    ActorContext,
    AuditRecord,
    ConnectionConfig,
    Operation,
    Severity,
    SuspicionAlert,
)
from audit_stream.domain.schemas import (
    AuditEventPayload,
    ChangeNotification,
    ConnectionConfigRequest,
    SuspicionAlertPayload,
)
from audit_stream.domain.validators import (
    validate_image_json_serializable,
    validate_images,
    validate_operation,
)

__all__ = [
    "DEFAULT_ACTOR",
    "ActorContext",
    "AuditEventPayload",
    "AuditRecord",
    "ChangeNotification",
    "ConnectionConfig",
    "ConnectionConfigRequest",
    "DomainError",
    "DomainValidationError",
    "InvalidImageError",
    "Operation",
    "Severity",
    "SuspicionAlert",
    "SuspicionAlertPayload",
    "UnknownOperationError",
    "validate_image_json_serializable",
    "validate_images",
    "validate_operation",
]

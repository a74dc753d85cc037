"""Pydantic schemas for the notification wire format and the API/stream payloads. No DB or infrastructure."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from audit_stream.domain.exceptions import DomainValidationError
from audit_stream.domain.models.audit import (
    DEFAULT_ACTOR,
    AuditRecord,
    ConnectionConfig,
    Operation,
    Severity,
    SuspicionAlert,
)
from audit_stream.domain.validators.change_validator import validate_images, validate_operation


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ConnectionConfigRequest(BaseModel):
    """Request schema for pointing the pipeline at a store."""

    host: str = Field(..., min_length=1)
    port: int = Field(5432, ge=1, le=65535)
    database: str = Field(..., min_length=1)
    user: str = Field(..., min_length=1)
    password: str = ""

    def to_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
        )


# ---------------------------------------------------------------------------
# Wire schema (change notification emitted by the capture hook)
# ---------------------------------------------------------------------------

class ChangeNotification(BaseModel):
    """
    Decoded change notification. Keys on the wire follow the capture function:
    table_name, operation, user_name, old_data, new_data, timestamp.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    entity_name: str = Field(..., alias="table_name", min_length=1)
    operation: Operation
    actor_name: str = Field(DEFAULT_ACTOR, alias="user_name")
    before_image: Optional[Dict[str, Any]] = Field(None, alias="old_data")
    after_image: Optional[Dict[str, Any]] = Field(None, alias="new_data")
    occurred_at: datetime = Field(..., alias="timestamp")

    @field_validator("operation", mode="before")
    @classmethod
    def operation_must_be_known(cls, v: Any) -> Operation:
        try:
            return validate_operation(v)
        except DomainValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("actor_name", mode="before")
    @classmethod
    def actor_defaults_to_system(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            return DEFAULT_ACTOR
        return str(v)

    @model_validator(mode="after")
    def images_match_operation(self) -> "ChangeNotification":
        try:
            validate_images(self.operation, self.before_image, self.after_image)
        except DomainValidationError as e:
            raise ValueError(e.message) from e
        return self

    def to_record(self) -> AuditRecord:
        return AuditRecord(
            entity_name=self.entity_name,
            operation=self.operation,
            actor_name=self.actor_name,
            occurred_at=self.occurred_at,
            before_image=self.before_image,
            after_image=self.after_image,
        )


# ---------------------------------------------------------------------------
# Response / stream schemas
# ---------------------------------------------------------------------------

class AuditEventPayload(BaseModel):
    """`audit_event` stream message and GET /logs item."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[int] = None
    entity_name: str
    operation: Operation
    actor_name: str
    before_image: Optional[Dict[str, Any]] = None
    after_image: Optional[Dict[str, Any]] = None
    occurred_at: datetime

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditEventPayload":
        return cls(
            id=record.id,
            entity_name=record.entity_name,
            operation=record.operation,
            actor_name=record.actor_name,
            before_image=record.before_image,
            after_image=record.after_image,
            occurred_at=record.occurred_at,
        )

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SuspicionAlertPayload(BaseModel):
    """`suspicion_alert` stream message and GET /suspicious item."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[int] = None
    related_audit_record_id: Optional[int] = None
    message: str
    severity: Severity
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime

    @classmethod
    def from_alert(cls, alert: SuspicionAlert) -> "SuspicionAlertPayload":
        return cls(
            id=alert.id,
            related_audit_record_id=alert.related_audit_record_id,
            message=alert.message,
            severity=alert.severity,
            details=alert.details,
            occurred_at=alert.occurred_at,
        )

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def audit_records_to_payloads(records: List[AuditRecord]) -> List[Dict[str, Any]]:
    return [AuditEventPayload.from_record(r).to_message() for r in records]


def alerts_to_payloads(alerts: List[SuspicionAlert]) -> List[Dict[str, Any]]:
    return [SuspicionAlertPayload.from_alert(a).to_message() for a in alerts]

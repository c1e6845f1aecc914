"""Audit event schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType(str, Enum):
    """Kinds of events written to the process log."""

    SESSION_START = "SESSION_START"
    BATCH_START = "BATCH_START"
    USER_PROCESSING_START = "USER_PROCESSING_START"
    USER_SKIPPED = "USER_SKIPPED"
    USER_SUCCESS = "USER_SUCCESS"
    USER_UPDATED = "USER_UPDATED"
    USER_ERROR = "USER_ERROR"
    BATCH_COMPLETE = "BATCH_COMPLETE"
    SESSION_COMPLETE = "SESSION_COMPLETE"


class Severity(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """One append-only audit event."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    event_type: AuditEventType
    message: str
    severity: Severity = Severity.INFO
    batch_id: str | None = None
    batch_number: int | None = None
    identity: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)

    processing_status: str | None = None
    score: int | None = None
    duration_ms: int | None = None
    evaluation_ok: bool | None = None
    persisted: bool | None = None
    error_message: str | None = None
    persistence_error: str | None = None
    evaluator_model: str | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class AuditEventOut(AuditEvent):
    """Audit event as read back from the process log."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int

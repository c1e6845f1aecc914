"""HTTP request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from batcheval.schemas.audit import AuditEventOut
from batcheval.schemas.evaluation import CategoryScore


class StartSessionRequest(BaseModel):
    """POST /v1/sessions request."""

    start_offset: int | None = Field(default=None, ge=1)


class StartSessionResponse(BaseModel):
    """POST /v1/sessions response."""

    session_id: str
    start_offset: int | None = None
    status: str = "started"


class BatchSummary(BaseModel):
    """Aggregates for one batch, built from its audit events."""

    batch_id: str
    batch_number: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    items: int = 0
    success: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    average_score: float | None = None
    duration_ms: int = 0


class SessionSummary(BaseModel):
    """Aggregates for one session, built from its audit events."""

    session_id: str
    started_at: datetime | None = None
    ended_at: datetime | None = None
    completed: bool = False
    total_batches: int = 0
    items: int = 0
    success: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    average_score: float | None = None
    duration_ms: int = 0
    warning_count: int = 0
    error_count: int = 0
    batches: list[BatchSummary] = Field(default_factory=list)


class SessionEvents(BaseModel):
    """GET /v1/sessions/{id}/events response."""

    session_id: str
    events: list[AuditEventOut] = Field(default_factory=list)


class OutcomeOut(BaseModel):
    """GET /v1/outcomes/{identity} response."""

    model_config = ConfigDict(from_attributes=True)

    record_id: int
    identity: str
    user_id: str | None = None
    case_id: int | None = None
    aggregate_score: int
    category_scores: list[CategoryScore] = Field(default_factory=list)
    overall_feedback: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    status: str
    error_detail: str | None = None
    batch_id: str | None = None
    evaluator_model: str | None = None
    payload_hash: str | None = None
    processed_at: datetime

"""Repository functions for submissions, outcomes and process logs."""

from datetime import datetime, timezone

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from batcheval.models import OutcomeRecord, ProcessLog, Submission
from batcheval.schemas.audit import AuditEvent, AuditEventType
from batcheval.schemas.evaluation import OutcomeData
from batcheval.schemas.submission import STAGE_FIELDS, SubmissionIn


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def fetch_submissions_in_range(db: AsyncSession, lower: int, upper: int) -> list[Submission]:
    """Submissions with lower <= sequence_id <= upper, ascending."""
    result = await db.execute(
        select(Submission)
        .where(Submission.sequence_id >= lower)
        .where(Submission.sequence_id <= upper)
        .order_by(Submission.sequence_id.asc())
    )
    return list(result.scalars().all())


async def upsert_submission(db: AsyncSession, data: SubmissionIn) -> tuple[Submission, bool]:
    """Insert or refresh a submission keyed by identity. Returns (row, created)."""
    result = await db.execute(select(Submission).where(Submission.identity == data.identity))
    row = result.scalar_one_or_none()
    values = {name: getattr(data, name) for name in STAGE_FIELDS}
    values.update(
        sequence_id=data.sequence_id,
        user_id=data.user_id,
        case_id=data.case_id,
        selected_case_id=data.selected_case_id,
    )
    now = _now()
    if row is None:
        row = Submission(identity=data.identity, created_at=now, updated_at=now, **values)
        db.add(row)
        await db.flush()
        return row, True
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = now
    await db.flush()
    return row, False


async def get_latest_outcome(db: AsyncSession, identity: str) -> OutcomeRecord | None:
    """
    Most recent outcome for identity. A success record wins over any
    error record, since it is the authoritative one.
    """
    result = await db.execute(
        select(OutcomeRecord)
        .where(OutcomeRecord.identity == identity)
        .order_by(
            case((OutcomeRecord.status == "success", 0), else_=1),
            OutcomeRecord.processed_at.desc(),
            OutcomeRecord.record_id.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


def _outcome_values(data: OutcomeData) -> dict:
    return {
        "identity": data.identity,
        "user_id": data.user_id,
        "case_id": data.case_id,
        "aggregate_score": data.aggregate_score,
        "category_scores": [c.model_dump() for c in data.category_scores],
        "overall_feedback": data.overall_feedback,
        "recommendations": list(data.recommendations),
        "status": data.status.value,
        "error_detail": data.error_detail,
        "batch_id": data.batch_id,
        "evaluator_model": data.evaluator_model,
        "payload_hash": data.payload_hash,
        "processed_at": data.processed_at,
    }


async def create_outcome(db: AsyncSession, data: OutcomeData) -> OutcomeRecord:
    """Create an outcome record."""
    record = OutcomeRecord(**_outcome_values(data))
    db.add(record)
    await db.flush()
    return record


async def update_outcome(db: AsyncSession, record_id: int, data: OutcomeData) -> OutcomeRecord | None:
    """Overwrite an outcome record in place. Returns None if it does not exist."""
    record = await db.get(OutcomeRecord, record_id)
    if record is None:
        return None
    for key, value in _outcome_values(data).items():
        setattr(record, key, value)
    await db.flush()
    return record


async def append_process_log(db: AsyncSession, event: AuditEvent) -> ProcessLog:
    """Append one audit event."""
    row = ProcessLog(
        session_id=event.session_id,
        batch_id=event.batch_id,
        batch_number=event.batch_number,
        identity=event.identity,
        event_type=event.event_type.value,
        severity=event.severity.value,
        message=event.message,
        detail=event.detail,
        processing_status=event.processing_status,
        score=event.score,
        duration_ms=event.duration_ms,
        evaluation_ok=event.evaluation_ok,
        persisted=event.persisted,
        error_message=event.error_message,
        persistence_error=event.persistence_error,
        evaluator_model=event.evaluator_model,
        started_at=event.started_at,
        completed_at=event.completed_at,
        created_at=event.created_at,
    )
    db.add(row)
    await db.flush()
    return row


async def list_session_events(
    db: AsyncSession,
    session_id: str,
    event_type: AuditEventType | None = None,
    identity: str | None = None,
) -> list[ProcessLog]:
    """Audit events of a session in creation order."""
    query = select(ProcessLog).where(ProcessLog.session_id == session_id)
    if event_type is not None:
        query = query.where(ProcessLog.event_type == event_type.value)
    if identity is not None:
        query = query.where(ProcessLog.identity == identity)
    result = await db.execute(query.order_by(ProcessLog.created_at.asc(), ProcessLog.id.asc()))
    return list(result.scalars().all())


async def get_latest_session_complete(db: AsyncSession) -> ProcessLog | None:
    """The most recent SESSION_COMPLETE event, if any."""
    result = await db.execute(
        select(ProcessLog)
        .where(ProcessLog.event_type == AuditEventType.SESSION_COMPLETE.value)
        .order_by(ProcessLog.created_at.desc(), ProcessLog.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()

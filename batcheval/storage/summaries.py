"""Session and batch summaries computed from process_logs rows."""

from collections.abc import Sequence

from batcheval.models import ProcessLog
from batcheval.schemas.api import BatchSummary, SessionSummary
from batcheval.schemas.audit import AuditEventType, Severity
from batcheval.schemas.evaluation import ItemStatus

# Events that close out one item; each counts once.
ITEM_OUTCOME_EVENTS = {
    AuditEventType.USER_SUCCESS.value,
    AuditEventType.USER_UPDATED.value,
    AuditEventType.USER_SKIPPED.value,
    AuditEventType.USER_ERROR.value,
}

_SCORED = {ItemStatus.SUCCESS.value, ItemStatus.UPDATED.value}


def _average(scores: list[int]) -> float | None:
    if not scores:
        return None
    return round(sum(scores) / len(scores), 2)


def _tally(summary: BatchSummary | SessionSummary, rows: list[ProcessLog]) -> None:
    scores = []
    for row in rows:
        if row.event_type not in ITEM_OUTCOME_EVENTS:
            continue
        summary.items += 1
        status = row.processing_status
        if status == ItemStatus.SUCCESS.value:
            summary.success += 1
        elif status == ItemStatus.UPDATED.value:
            summary.updated += 1
        elif status == ItemStatus.SKIPPED.value:
            summary.skipped += 1
        elif status == ItemStatus.ERROR.value:
            summary.errored += 1
        if status in _SCORED and row.score is not None:
            scores.append(row.score)
        summary.duration_ms += row.duration_ms or 0
    summary.average_score = _average(scores)


def build_batch_summary(batch_id: str, rows: list[ProcessLog]) -> BatchSummary:
    summary = BatchSummary(
        batch_id=batch_id,
        batch_number=next((r.batch_number for r in rows if r.batch_number is not None), None),
        started_at=min(r.created_at for r in rows),
        ended_at=max(r.created_at for r in rows),
    )
    _tally(summary, rows)
    complete = [r for r in rows if r.event_type == AuditEventType.BATCH_COMPLETE.value]
    if complete and complete[-1].duration_ms is not None:
        summary.duration_ms = complete[-1].duration_ms
    return summary


def build_session_summary(session_id: str, rows: Sequence[ProcessLog]) -> SessionSummary:
    """
    Aggregate one session's events the way the session_summary and
    batch_summary views do: item counts by processing status, average score
    over scored items, and warning/error counts by severity. Rows must be in
    creation order.
    """
    rows = list(rows)
    summary = SessionSummary(session_id=session_id)
    if not rows:
        return summary

    summary.started_at = min(r.created_at for r in rows)
    summary.ended_at = max(r.created_at for r in rows)
    summary.completed = any(r.event_type == AuditEventType.SESSION_COMPLETE.value for r in rows)
    summary.warning_count = sum(1 for r in rows if r.severity == Severity.WARN.value)
    summary.error_count = sum(1 for r in rows if r.severity == Severity.ERROR.value)
    _tally(summary, rows)
    complete = [r for r in rows if r.event_type == AuditEventType.SESSION_COMPLETE.value]
    if complete and complete[-1].duration_ms is not None:
        summary.duration_ms = complete[-1].duration_ms

    by_batch: dict[str, list[ProcessLog]] = {}
    for row in rows:
        if row.batch_id is not None:
            by_batch.setdefault(row.batch_id, []).append(row)
    summary.batches = [build_batch_summary(batch_id, batch_rows) for batch_id, batch_rows in by_batch.items()]
    summary.total_batches = len(summary.batches)
    return summary

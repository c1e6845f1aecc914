"""SQL-backed implementations of the pipeline contracts.

Every call opens its own short-lived session and commits its own writes, so
each external call the orchestrator makes settles before the next one.
"""

import logging

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from batcheval.engine.contracts import AuditSink, CursorStore, DedupIndex, WorkSource
from batcheval.models import Submission
from batcheval.schemas.audit import AuditEvent
from batcheval.schemas.evaluation import DedupResult, OutcomeData, OutcomeStatus
from batcheval.schemas.submission import STAGE_FIELDS, SubmissionPayload, WorkItem
from batcheval.storage.repositories import (
    append_process_log,
    create_outcome,
    fetch_submissions_in_range,
    get_latest_outcome,
    get_latest_session_complete,
    update_outcome,
)

logger = logging.getLogger(__name__)


def to_work_item(row: Submission) -> WorkItem:
    """Validate a submissions row into a WorkItem."""
    fields = {name: getattr(row, name) for name in STAGE_FIELDS}
    payload = SubmissionPayload.model_validate(
        {
            **fields,
            "user_id": row.user_id,
            "case_id": row.case_id,
            "selected_case_id": row.selected_case_id,
        }
    )
    return WorkItem(identity=row.identity, sequence_id=row.sequence_id, payload=payload)


class SqlWorkSource(WorkSource):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def fetch_range(self, lower: int, upper: int) -> list[WorkItem]:
        async with self.session_maker() as db:
            rows = await fetch_submissions_in_range(db, lower, upper)
        items = []
        for row in rows:
            try:
                items.append(to_work_item(row))
            except ValidationError as e:
                logger.warning(f"Dropping submission {row.id} (sequence {row.sequence_id}): {e}")
        return items


class SqlDedupIndex(DedupIndex):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def lookup(self, identity: str) -> DedupResult:
        async with self.session_maker() as db:
            record = await get_latest_outcome(db, identity)
        if record is None:
            return DedupResult(exists=False)
        return DedupResult(
            exists=True,
            status=OutcomeStatus(record.status),
            prior_score=record.aggregate_score,
            record_id=record.record_id,
            processed_at=record.processed_at,
        )

    async def insert(self, outcome: OutcomeData) -> int:
        async with self.session_maker() as db:
            record = await create_outcome(db, outcome)
            await db.commit()
            return record.record_id

    async def update(self, record_id: int, outcome: OutcomeData) -> None:
        async with self.session_maker() as db:
            record = await update_outcome(db, record_id, outcome)
            if record is None:
                raise LookupError(f"Outcome record {record_id} not found")
            await db.commit()


class SqlAuditSink(AuditSink):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def append(self, event: AuditEvent) -> bool:
        try:
            async with self.session_maker() as db:
                await append_process_log(db, event)
                await db.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to write {event.event_type.value} to process_logs: {e}")
            return False


class SqlCursorStore(CursorStore):
    """Reads next_cursor back from the latest SESSION_COMPLETE event."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def load(self) -> int | None:
        async with self.session_maker() as db:
            row = await get_latest_session_complete(db)
        if row is None:
            return None
        cursor = (row.detail or {}).get("next_cursor")
        return int(cursor) if cursor is not None else None

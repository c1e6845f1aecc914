"""
Resumable batch evaluation orchestrator.

Drives one session: assemble a batch, evaluate and persist each item in
sequence order, log every step to the audit sink, pace, and chain into the
next batch until the work source is exhausted.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from batcheval.config import Settings, settings
from batcheval.engine.assembly import AssembledBatch, BatchAssembler, ItemPlan, PlannedItem
from batcheval.engine.contracts import (
    AuditSink,
    CursorStore,
    DedupIndex,
    Evaluator,
    ProgressCache,
    WorkSource,
)
from batcheval.engine.errors import SessionInProgressError
from batcheval.engine.scoring import DEFAULT_RUBRIC, Rubric, check_bounds, reconcile_aggregate
from batcheval.schemas.audit import AuditEvent, AuditEventType, Severity
from batcheval.schemas.evaluation import (
    BatchReport,
    DedupResult,
    ItemResult,
    ItemStatus,
    OutcomeData,
    OutcomeStatus,
    SessionReport,
)
from batcheval.utils.canonical import payload_hash

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[], Awaitable[None] | None]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    SESSION_STARTING = "session_starting"
    BATCH_ASSEMBLING = "batch_assembling"
    BATCH_PROCESSING = "batch_processing"
    BATCH_PACING = "batch_pacing"
    SESSION_COMPLETING = "session_completing"


@dataclass
class PipelineConfig:
    """Batch sizes, pacing and tolerance for one orchestrator."""

    target_size: int = 20
    window_size: int = 20
    probe_bound: int = 20
    empty_probe_limit: int = 3
    initial_cursor: int = 1
    item_delay: float = 1.0
    batch_delay: float = 2.0
    score_tolerance: float = 1.0

    def __post_init__(self) -> None:
        if self.initial_cursor < 0:
            raise ValueError("initial_cursor must be non-negative")
        if self.item_delay < 0 or self.batch_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.score_tolerance < 0:
            raise ValueError("score_tolerance must be non-negative")

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "PipelineConfig":
        return cls(
            target_size=s.batch_target_size,
            window_size=s.probe_window_size,
            probe_bound=s.probe_bound,
            empty_probe_limit=s.empty_probe_limit,
            initial_cursor=s.initial_cursor,
            item_delay=s.item_delay_seconds,
            batch_delay=s.batch_delay_seconds,
            score_tolerance=s.score_tolerance,
        )


@dataclass
class SessionState:
    """Mutable state of the running session, threaded through every step."""

    session_id: str
    cursor: int
    report: SessionReport
    started_at: datetime
    started_clock: float
    batch_number: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


class Orchestrator:
    """Runs evaluation sessions, one at a time."""

    def __init__(
        self,
        work_source: WorkSource,
        dedup_index: DedupIndex,
        evaluator: Evaluator,
        audit_sink: AuditSink,
        progress_cache: ProgressCache | None = None,
        cursor_store: CursorStore | None = None,
        config: PipelineConfig | None = None,
        rubric: Rubric = DEFAULT_RUBRIC,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or PipelineConfig()
        self.dedup_index = dedup_index
        self.evaluator = evaluator
        self.audit_sink = audit_sink
        self.progress_cache = progress_cache
        self.cursor_store = cursor_store
        self.rubric = rubric
        self._sleep = sleep
        self.assembler = BatchAssembler(
            work_source,
            dedup_index,
            target_size=self.config.target_size,
            window_size=self.config.window_size,
            probe_bound=self.config.probe_bound,
            empty_probe_limit=self.config.empty_probe_limit,
        )
        self._state = OrchestratorState.IDLE

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def _transition(self, state: OrchestratorState) -> None:
        logger.debug(f"Orchestrator {self._state.value} -> {state.value}")
        self._state = state

    async def start_session(
        self,
        on_complete: CompletionCallback | None = None,
        start_offset: int | None = None,
        session_id: str | None = None,
    ) -> SessionReport:
        """
        Run one session to exhaustion of the work source.

        Raises EvaluatorConfigError before anything is processed if the
        evaluator is unusable. on_complete is called exactly once after
        SESSION_COMPLETE has been logged.
        """
        if self._state != OrchestratorState.IDLE:
            raise SessionInProgressError(f"Session already running ({self._state.value})")
        self.evaluator.check_ready()

        self._transition(OrchestratorState.SESSION_STARTING)
        try:
            session = await self._open_session(start_offset, session_id)
            while True:
                self._transition(OrchestratorState.BATCH_ASSEMBLING)
                assembled = await self.assembler.assemble(session.cursor)
                session.cursor = assembled.next_cursor
                if assembled.scanned == 0:
                    break

                self._transition(OrchestratorState.BATCH_PROCESSING)
                await self._process_batch(session, assembled)
                if not assembled.has_more:
                    break

                self._transition(OrchestratorState.BATCH_PACING)
                await self._sleep(self.config.batch_delay)

            self._transition(OrchestratorState.SESSION_COMPLETING)
            report = await self._complete_session(session)
        finally:
            self._transition(OrchestratorState.IDLE)

        if on_complete is not None:
            result = on_complete()
            if inspect.isawaitable(result):
                await result
        return report

    async def _open_session(self, start_offset: int | None, session_id: str | None) -> SessionState:
        cursor = start_offset
        if cursor is None and self.cursor_store is not None:
            cursor = await self.cursor_store.load()
        if cursor is None:
            cursor = self.config.initial_cursor

        session_id = session_id or new_id("session")
        session = SessionState(
            session_id=session_id,
            cursor=cursor,
            report=SessionReport(session_id=session_id, start_cursor=cursor, next_cursor=cursor),
            started_at=_now(),
            started_clock=time.monotonic(),
        )
        logger.info(f"Starting session {session_id} at cursor {cursor}")
        await self._emit(
            AuditEvent(
                session_id=session_id,
                event_type=AuditEventType.SESSION_START,
                message=f"Starting batch evaluation session at cursor {cursor}",
                detail={
                    "start_cursor": cursor,
                    "target_size": self.config.target_size,
                    "window_size": self.config.window_size,
                    "probe_bound": self.config.probe_bound,
                    "score_tolerance": self.config.score_tolerance,
                },
                evaluator_model=self.evaluator.model_name,
                started_at=session.started_at,
            )
        )
        return session

    async def _process_batch(self, session: SessionState, assembled: AssembledBatch) -> BatchReport:
        session.batch_number += 1
        batch = BatchReport(
            batch_id=new_id("batch"),
            batch_number=session.batch_number,
            scanned=assembled.scanned,
            assembly_skipped=len(assembled.skipped),
        )
        started_clock = time.monotonic()
        included = assembled.included
        retries = sum(1 for e in included if e.plan == ItemPlan.UPDATE)

        logger.info(
            f"Batch {batch.batch_number} ({batch.batch_id}): {len(included)} to evaluate, "
            f"{batch.assembly_skipped} already evaluated"
        )
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                event_type=AuditEventType.BATCH_START,
                message=(
                    f"Starting batch {batch.batch_number} with {len(included)} users "
                    f"({len(included) - retries} new, {retries} retry)"
                ),
                detail={
                    "identities": [e.item.identity for e in included],
                    "scanned": assembled.scanned,
                    "skipped": batch.assembly_skipped,
                    "new": len(included) - retries,
                    "retry": retries,
                    "windows_probed": assembled.windows_probed,
                    "cursor_from": assembled.start_cursor,
                    "cursor_to": assembled.next_cursor,
                },
                started_at=_now(),
            )
        )

        remaining = len(included)
        for entry in assembled.entries:
            if entry.plan == ItemPlan.SKIP:
                await self._record_prior_success(session, batch, entry)
                continue
            await self._process_item(session, batch, entry)
            remaining -= 1
            if remaining > 0:
                await self._sleep(self.config.item_delay)

        batch.duration_ms = _elapsed_ms(started_clock)
        session.report.batches.append(batch)
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                event_type=AuditEventType.BATCH_COMPLETE,
                message=(
                    f"Completed batch {batch.batch_number} - {batch.inserted} success, "
                    f"{batch.updated} updated, {batch.skipped} skipped, {batch.errored} errors"
                ),
                detail={
                    "inserted": batch.inserted,
                    "updated": batch.updated,
                    "skipped": batch.skipped,
                    "errored": batch.errored,
                    "scanned": batch.scanned,
                    "processed": batch.processed,
                    "has_more": assembled.has_more,
                },
                duration_ms=batch.duration_ms,
                completed_at=_now(),
            )
        )
        return batch

    async def _record_prior_success(self, session: SessionState, batch: BatchReport, entry: PlannedItem) -> None:
        batch.skipped += 1
        session.report.results.append(
            ItemResult(
                identity=entry.item.identity,
                sequence_id=entry.item.sequence_id,
                status=ItemStatus.SKIPPED,
                score=entry.prior_score,
                record_id=entry.record_id,
                finished_at=_now(),
            )
        )
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                identity=entry.item.identity,
                event_type=AuditEventType.USER_SKIPPED,
                message=f"Skipped {entry.item.identity} - evaluation already exists",
                processing_status=ItemStatus.SKIPPED.value,
                score=entry.prior_score,
                detail={"reason": "already_evaluated", "record_id": entry.record_id},
                completed_at=_now(),
            )
        )

    async def _process_item(self, session: SessionState, batch: BatchReport, entry: PlannedItem) -> ItemResult:
        item = entry.item
        started_at = _now()
        started_clock = time.monotonic()

        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                identity=item.identity,
                event_type=AuditEventType.USER_PROCESSING_START,
                message=f"Starting evaluation for {item.identity}",
                detail={
                    "sequence_id": item.sequence_id,
                    "case_id": item.payload.case_id,
                    "plan": entry.plan.value,
                    "lookup_failed": entry.lookup_failed,
                },
                started_at=started_at,
            )
        )

        plan, record_id = entry.plan, entry.record_id
        current = await self._recheck(item.identity)
        if current is not None:
            if current.is_authoritative:
                return await self._skip_recent(session, batch, entry, current, started_at, started_clock)
            if current.is_retry:
                plan, record_id = ItemPlan.UPDATE, current.record_id
            elif not current.exists:
                plan, record_id = ItemPlan.INSERT, None

        try:
            evaluation = await self.evaluator.evaluate(item)
            aggregate, reconciled = reconcile_aggregate(evaluation, self.config.score_tolerance)
            check_bounds(evaluation, aggregate, self.rubric)
        except Exception as e:
            return await self._record_failure(session, batch, entry, plan, record_id, e, started_at, started_clock)

        outcome = OutcomeData(
            identity=item.identity,
            user_id=item.payload.user_id,
            case_id=item.payload.case_id,
            aggregate_score=aggregate,
            category_scores=evaluation.categories,
            overall_feedback=evaluation.overall_feedback,
            recommendations=evaluation.recommendations,
            status=OutcomeStatus.SUCCESS,
            batch_id=batch.batch_id,
            evaluator_model=self.evaluator.model_name,
            payload_hash=payload_hash(item.payload),
            processed_at=_now(),
        )
        persisted, persistence_error, record_id = await self._persist(plan, record_id, outcome)
        self._remember(item.identity, aggregate)

        if plan == ItemPlan.UPDATE:
            status, event_type = ItemStatus.UPDATED, AuditEventType.USER_UPDATED
            batch.updated += 1
        else:
            status, event_type = ItemStatus.SUCCESS, AuditEventType.USER_SUCCESS
            batch.inserted += 1

        duration_ms = _elapsed_ms(started_clock)
        result = ItemResult(
            identity=item.identity,
            sequence_id=item.sequence_id,
            status=status,
            score=aggregate,
            persisted=persisted,
            record_id=record_id,
            finished_at=_now(),
        )
        session.report.results.append(result)
        logger.info(f"Processed {item.identity}: {status.value} with score {aggregate} (persisted={persisted})")

        feedback = evaluation.overall_feedback or ""
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                identity=item.identity,
                event_type=event_type,
                severity=Severity.INFO if persisted else Severity.WARN,
                message=f"Successfully processed {item.identity} with score {aggregate}",
                processing_status=status.value,
                score=aggregate,
                duration_ms=duration_ms,
                evaluation_ok=True,
                persisted=persisted,
                persistence_error=persistence_error,
                evaluator_model=self.evaluator.model_name,
                detail={
                    "record_id": record_id,
                    "reported_aggregate": evaluation.aggregate,
                    "category_sum": evaluation.category_total,
                    "reconciled": reconciled,
                    "categories": {c.name: c.score for c in evaluation.categories},
                    "overall_feedback": feedback[:200] + ("..." if len(feedback) > 200 else ""),
                    "recommendations_count": len(evaluation.recommendations),
                },
                started_at=started_at,
                completed_at=result.finished_at,
            )
        )
        return result

    async def _recheck(self, identity: str) -> DedupResult | None:
        try:
            return await self.dedup_index.lookup(identity)
        except Exception as e:
            logger.warning(f"Duplicate re-check failed for {identity}, keeping plan: {e}")
            return None

    async def _skip_recent(
        self,
        session: SessionState,
        batch: BatchReport,
        entry: PlannedItem,
        current: DedupResult,
        started_at: datetime,
        started_clock: float,
    ) -> ItemResult:
        batch.skipped += 1
        result = ItemResult(
            identity=entry.item.identity,
            sequence_id=entry.item.sequence_id,
            status=ItemStatus.SKIPPED,
            score=current.prior_score,
            record_id=current.record_id,
            finished_at=_now(),
        )
        session.report.results.append(result)
        logger.info(f"Skipping {entry.item.identity} - evaluated since batch was assembled")
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                identity=entry.item.identity,
                event_type=AuditEventType.USER_SKIPPED,
                message=f"Skipped {entry.item.identity} - evaluated since batch was assembled",
                processing_status=ItemStatus.SKIPPED.value,
                score=current.prior_score,
                duration_ms=_elapsed_ms(started_clock),
                detail={
                    "reason": "evaluated_since_assembly",
                    "record_id": current.record_id,
                    "existing_processed_at": current.processed_at.isoformat() if current.processed_at else None,
                },
                started_at=started_at,
                completed_at=result.finished_at,
            )
        )
        return result

    async def _record_failure(
        self,
        session: SessionState,
        batch: BatchReport,
        entry: PlannedItem,
        plan: ItemPlan,
        record_id: int | None,
        error: Exception,
        started_at: datetime,
        started_clock: float,
    ) -> ItemResult:
        item = entry.item
        message = str(error) or type(error).__name__
        logger.error(f"Failed to evaluate {item.identity}: {message}")

        outcome = OutcomeData(
            identity=item.identity,
            user_id=item.payload.user_id,
            case_id=item.payload.case_id,
            aggregate_score=0,
            status=OutcomeStatus.ERROR,
            error_detail=message,
            batch_id=batch.batch_id,
            evaluator_model=self.evaluator.model_name,
            payload_hash=payload_hash(item.payload),
            processed_at=_now(),
        )
        persisted, persistence_error, record_id = await self._persist(plan, record_id, outcome)
        batch.errored += 1

        result = ItemResult(
            identity=item.identity,
            sequence_id=item.sequence_id,
            status=ItemStatus.ERROR,
            score=0,
            persisted=persisted,
            error=message,
            record_id=record_id,
            finished_at=_now(),
        )
        session.report.results.append(result)
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                batch_id=batch.batch_id,
                batch_number=batch.batch_number,
                identity=item.identity,
                event_type=AuditEventType.USER_ERROR,
                severity=Severity.ERROR,
                message=f"Failed to process {item.identity}: {message}",
                processing_status=ItemStatus.ERROR.value,
                score=0,
                duration_ms=_elapsed_ms(started_clock),
                evaluation_ok=False,
                persisted=persisted,
                error_message=message,
                persistence_error=persistence_error,
                evaluator_model=self.evaluator.model_name,
                detail={"error_type": type(error).__name__, "plan": plan.value, "record_id": record_id},
                started_at=started_at,
                completed_at=result.finished_at,
            )
        )
        return result

    async def _persist(
        self, plan: ItemPlan, record_id: int | None, outcome: OutcomeData
    ) -> tuple[bool, str | None, int | None]:
        """Insert or update; returns (persisted, error, record_id) and never raises."""
        try:
            if plan == ItemPlan.UPDATE and record_id is not None:
                await self.dedup_index.update(record_id, outcome)
                return True, None, record_id
            inserted_id = await self.dedup_index.insert(outcome)
            return True, None, inserted_id
        except Exception as e:
            logger.error(f"Saving {outcome.status.value} outcome for {outcome.identity} failed: {e}")
            return False, str(e) or type(e).__name__, record_id

    def _remember(self, identity: str, score: int) -> None:
        if self.progress_cache is None:
            return
        try:
            self.progress_cache.record(identity, score)
        except Exception as e:
            logger.warning(f"Progress cache write failed for {identity}: {e}")

    async def _complete_session(self, session: SessionState) -> SessionReport:
        report = session.report
        report.next_cursor = session.cursor
        report.duration_ms = _elapsed_ms(session.started_clock)
        average = report.average_score()

        logger.info(
            f"Session {session.session_id} complete: {report.inserted} success, {report.updated} updated, "
            f"{report.skipped} skipped, {report.errored} errors across {len(report.batches)} batches"
        )
        await self._emit(
            AuditEvent(
                session_id=session.session_id,
                event_type=AuditEventType.SESSION_COMPLETE,
                message=(
                    f"Session completed - processed {report.total} users: {report.inserted} successful, "
                    f"{report.updated} updated, {report.skipped} skipped, {report.errored} errors"
                ),
                detail={
                    **report.counts(),
                    "average_score": average,
                    "total_batches": len(report.batches),
                    "start_cursor": report.start_cursor,
                    "next_cursor": report.next_cursor,
                },
                duration_ms=report.duration_ms,
                started_at=session.started_at,
                completed_at=_now(),
            )
        )
        return report

    async def _emit(self, event: AuditEvent) -> None:
        try:
            ok = await self.audit_sink.append(event)
        except Exception as e:
            logger.error(f"Audit sink raised on {event.event_type.value}: {e}")
            return
        if not ok:
            logger.error(
                f"Audit write failed: {event.event_type.value} "
                f"session={event.session_id} identity={event.identity}"
            )

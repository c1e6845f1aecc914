"""Session endpoints: start a run, read its audit trail and summary."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from batcheval.database import get_db
from batcheval.engine.errors import BatchEvalError, EvaluatorConfigError
from batcheval.engine.orchestrator import Orchestrator, OrchestratorState, new_id
from batcheval.schemas.api import SessionEvents, SessionSummary, StartSessionRequest, StartSessionResponse
from batcheval.schemas.audit import AuditEventOut, AuditEventType
from batcheval.service import get_orchestrator
from batcheval.storage.repositories import list_session_events
from batcheval.storage.summaries import build_session_summary

logger = logging.getLogger(__name__)

router = APIRouter()


async def run_session(orchestrator: Orchestrator, session_id: str, start_offset: int | None) -> None:
    """Background task body; failures end up in the log, not the response."""
    try:
        report = await orchestrator.start_session(start_offset=start_offset, session_id=session_id)
    except BatchEvalError as e:
        logger.error(f"Session {session_id} did not run: {e}")
        return
    except Exception:
        logger.exception(f"Session {session_id} aborted")
        return
    logger.info(f"Session {session_id} finished: {report.counts()}")


@router.post(
    "/sessions",
    response_model=StartSessionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_session(
    background_tasks: BackgroundTasks,
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
    body: StartSessionRequest | None = None,
):
    """
    Start an evaluation session in the background.
    Without start_offset the session resumes where the last one stopped.
    """
    if orchestrator.state != OrchestratorState.IDLE:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An evaluation session is already running",
        )
    try:
        orchestrator.evaluator.check_ready()
    except EvaluatorConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )

    start_offset = body.start_offset if body else None
    session_id = new_id("session")
    background_tasks.add_task(run_session, orchestrator, session_id, start_offset)
    return StartSessionResponse(session_id=session_id, start_offset=start_offset)


@router.get("/sessions/{session_id}/events", response_model=SessionEvents)
async def get_session_events(
    session_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    event_type: AuditEventType | None = Query(default=None),
    identity: str | None = Query(default=None),
):
    """Audit events of a session in the order they were written."""
    rows = await list_session_events(db, session_id, event_type=event_type, identity=identity)
    return SessionEvents(
        session_id=session_id,
        events=[AuditEventOut.model_validate(row) for row in rows],
    )


@router.get("/sessions/{session_id}/summary", response_model=SessionSummary)
async def get_session_summary(
    session_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Totals and per-batch breakdown for a session."""
    rows = await list_session_events(db, session_id)
    if not rows:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return build_session_summary(session_id, rows)

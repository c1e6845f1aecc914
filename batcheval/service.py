"""Wiring of the orchestrator to the SQL adapters, LLM evaluator and local cache."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from batcheval.config import Settings, settings
from batcheval.database import async_session_maker
from batcheval.engine.evaluator import LLMEvaluator
from batcheval.engine.orchestrator import Orchestrator, PipelineConfig
from batcheval.storage.adapters import SqlAuditSink, SqlCursorStore, SqlDedupIndex, SqlWorkSource
from batcheval.storage.progress_cache import JsonProgressCache

_orchestrator: Orchestrator | None = None


def build_orchestrator(
    session_maker: async_sessionmaker[AsyncSession] = async_session_maker,
    s: Settings = settings,
) -> Orchestrator:
    return Orchestrator(
        work_source=SqlWorkSource(session_maker),
        dedup_index=SqlDedupIndex(session_maker),
        evaluator=LLMEvaluator.from_settings(s),
        audit_sink=SqlAuditSink(session_maker),
        progress_cache=JsonProgressCache(s.progress_cache_path) if s.progress_cache_path else None,
        cursor_store=SqlCursorStore(session_maker),
        config=PipelineConfig.from_settings(s),
    )


def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator; one session at a time runs through it."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator

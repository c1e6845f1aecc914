"""Tests for the session orchestrator against in-memory collaborators."""

import pytest

from batcheval.engine.errors import EvaluatorConfigError, EvaluatorError, SessionInProgressError
from batcheval.engine.orchestrator import Orchestrator, OrchestratorState, PipelineConfig
from batcheval.schemas.audit import AuditEventType, Severity
from batcheval.schemas.evaluation import ItemStatus, OutcomeStatus
from batcheval.storage.progress_cache import InMemoryProgressCache
from conftest import (
    FakeAuditSink,
    FakeCursorStore,
    FakeEvaluator,
    FakeWorkSource,
    make_item,
    make_outcome,
    make_result,
)

A, B, C = "a@example.com", "b@example.com", "c@example.com"


def _orchestrator(items, dedup, audit, sleep, evaluator=None, config=None, **kwargs):
    return Orchestrator(
        work_source=FakeWorkSource(items),
        dedup_index=dedup,
        evaluator=evaluator or FakeEvaluator(),
        audit_sink=audit,
        config=config or PipelineConfig(),
        sleep=sleep,
        **kwargs,
    )


def _seed_scenario(dedup):
    """A new, B done with 50, C previously failed."""
    dedup.seed(make_outcome(B, OutcomeStatus.SUCCESS, 50))
    error_id = dedup.seed(make_outcome(C, OutcomeStatus.ERROR))
    return [make_item(A, 1), make_item(B, 2), make_item(C, 3)], error_id


def _by_identity(report):
    return {r.identity: r for r in report.results}


@pytest.mark.asyncio
async def test_new_done_and_failed_identities(dedup, audit, sleep):
    """B is skipped at 50, A inserted, C updated in place to success."""
    items, error_id = _seed_scenario(dedup)
    evaluator = FakeEvaluator({A: make_result(70), C: make_result(60)})
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator)

    report = await orchestrator.start_session()

    results = _by_identity(report)
    assert results[A].status == ItemStatus.SUCCESS
    assert results[A].score == 60  # 70 reconciled to the category sum
    assert results[B].status == ItemStatus.SKIPPED
    assert results[B].score == 50
    assert results[C].status == ItemStatus.UPDATED
    assert results[C].record_id == error_id

    assert evaluator.calls == [A, C]
    assert list(dedup.for_identity(C)) == [error_id]
    assert dedup.records[error_id].status == OutcomeStatus.SUCCESS
    assert dedup.records[error_id].aggregate_score == 60
    b_records = dedup.for_identity(B)
    assert [o.aggregate_score for o in b_records.values()] == [50]
    assert (report.inserted, report.updated, report.skipped, report.errored) == (1, 1, 1, 0)


@pytest.mark.asyncio
async def test_evaluator_failure_is_isolated(dedup, audit, sleep):
    """A fails; B and C, later in sequence, are unaffected."""
    items, error_id = _seed_scenario(dedup)
    evaluator = FakeEvaluator({A: EvaluatorError("evaluator timeout")})
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator)

    report = await orchestrator.start_session()

    results = _by_identity(report)
    assert results[A].status == ItemStatus.ERROR
    assert "evaluator timeout" in results[A].error
    assert results[B].status == ItemStatus.SKIPPED
    assert results[C].status == ItemStatus.UPDATED
    assert dedup.records[error_id].status == OutcomeStatus.SUCCESS

    (a_record,) = dedup.for_identity(A).values()
    assert a_record.status == OutcomeStatus.ERROR
    assert a_record.error_detail == "evaluator timeout"

    error_events = [e for e in audit.events if e.event_type == AuditEventType.USER_ERROR]
    assert len(error_events) == 1
    assert error_events[0].severity == Severity.ERROR
    assert error_events[0].evaluation_ok is False
    assert error_events[0].persisted is True


@pytest.mark.asyncio
async def test_skips_do_not_fill_the_batch(dedup, audit, sleep):
    """Target 5, window of 20 with 18 done + 2 new: 2 processed, 20 scanned."""
    items = []
    for i in range(1, 21):
        identity = f"u{i}@example.com"
        items.append(make_item(identity, i))
        if i not in (4, 17):
            dedup.seed(make_outcome(identity, OutcomeStatus.SUCCESS, 75))
    evaluator = FakeEvaluator()
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator, PipelineConfig(target_size=5))

    report = await orchestrator.start_session()

    (batch,) = report.batches
    assert batch.scanned == 20
    assert batch.processed == 2
    assert batch.skipped == 18
    assert batch.inserted == 2
    assert evaluator.calls == ["u4@example.com", "u17@example.com"]


@pytest.mark.asyncio
async def test_totals_cover_every_presented_item(dedup, audit, sleep):
    """success + updated + skipped + errored == items presented."""
    items, _ = _seed_scenario(dedup)
    items += [make_item(f"x{i}@example.com", 3 + i) for i in range(1, 31)]
    evaluator = FakeEvaluator({"x5@example.com": RuntimeError("boom")})
    config = PipelineConfig(target_size=7, window_size=10)
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator, config)

    report = await orchestrator.start_session()

    assert report.total == len(items)
    assert report.scanned == len(items)
    assert report.errored == 1
    assert len(report.results) == len(items)
    assert len({r.identity for r in report.results}) == len(items)


@pytest.mark.asyncio
async def test_batches_chain_until_exhausted(dedup, audit, sleep):
    items = [make_item(f"u{i}@example.com", i) for i in range(1, 26)]
    evaluator = FakeEvaluator()
    config = PipelineConfig(target_size=10, item_delay=0.5, batch_delay=3.0)
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator, config)

    report = await orchestrator.start_session()

    assert [b.inserted for b in report.batches] == [10, 10, 5]
    assert [b.batch_number for b in report.batches] == [1, 2, 3]
    assert evaluator.calls == [f"u{i}@example.com" for i in range(1, 26)]
    assert report.next_cursor == 41
    # No item delay after the last item of a batch; batch delay only between batches.
    assert sleep.delays.count(3.0) == 2
    assert sleep.delays.count(0.5) == 9 + 9 + 4


@pytest.mark.asyncio
async def test_event_order(dedup, audit, sleep):
    items, _ = _seed_scenario(dedup)
    orchestrator = _orchestrator(items, dedup, audit, sleep)

    await orchestrator.start_session()

    assert audit.types() == [
        "SESSION_START",
        "BATCH_START",
        "USER_PROCESSING_START",
        "USER_SUCCESS",
        "USER_SKIPPED",
        "USER_PROCESSING_START",
        "USER_UPDATED",
        "BATCH_COMPLETE",
        "SESSION_COMPLETE",
    ]
    assert len({e.session_id for e in audit.events}) == 1
    batch_ids = {e.batch_id for e in audit.events[1:-1]}
    assert len(batch_ids) == 1 and None not in batch_ids


@pytest.mark.asyncio
async def test_session_complete_reports_aggregates(dedup, audit, sleep):
    items, _ = _seed_scenario(dedup)
    orchestrator = _orchestrator(items, dedup, audit, sleep)

    report = await orchestrator.start_session()

    complete = audit.events[-1]
    assert complete.event_type == AuditEventType.SESSION_COMPLETE
    assert complete.detail["inserted"] == 1
    assert complete.detail["updated"] == 1
    assert complete.detail["skipped"] == 1
    assert complete.detail["errored"] == 0
    assert complete.detail["total_batches"] == 1
    assert complete.detail["next_cursor"] == report.next_cursor == 21
    # Mean of 60 (A), 50 (B skipped), 60 (C)
    assert complete.detail["average_score"] == pytest.approx(56.67)


@pytest.mark.asyncio
async def test_reconciled_aggregate_is_persisted(dedup, audit, sleep):
    evaluator = FakeEvaluator({A: make_result(aggregate=90)})
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep, evaluator)

    await orchestrator.start_session()

    (record,) = dedup.for_identity(A).values()
    assert record.aggregate_score == 60
    success = next(e for e in audit.events if e.event_type == AuditEventType.USER_SUCCESS)
    assert success.detail["reported_aggregate"] == 90
    assert success.detail["reconciled"] is True


@pytest.mark.asyncio
async def test_out_of_range_score_is_an_evaluator_failure(dedup, audit, sleep):
    result = make_result(aggregate=12, categories={"technology": 12})
    evaluator = FakeEvaluator({A: result})
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep, evaluator)

    report = await orchestrator.start_session()

    assert report.results[0].status == ItemStatus.ERROR
    (record,) = dedup.for_identity(A).values()
    assert record.status == OutcomeStatus.ERROR


@pytest.mark.asyncio
async def test_persistence_failure_still_surfaces_result(dedup, audit, sleep):
    dedup.fail_writes = True
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep)

    report = await orchestrator.start_session()

    (result,) = report.results
    assert result.status == ItemStatus.SUCCESS
    assert result.score == 60
    assert result.persisted is False
    success = next(e for e in audit.events if e.event_type == AuditEventType.USER_SUCCESS)
    assert success.severity == Severity.WARN
    assert success.evaluation_ok is True
    assert success.persisted is False
    assert "write rejected" in success.persistence_error


@pytest.mark.asyncio
async def test_audit_failures_do_not_change_results(dedup, sleep):
    items, _ = _seed_scenario(dedup)
    rejecting = _orchestrator(items, dedup, FakeAuditSink(accept=False), sleep)
    report = await rejecting.start_session()
    assert [r.status for r in report.results] == [ItemStatus.SUCCESS, ItemStatus.SKIPPED, ItemStatus.UPDATED]

    exploding = _orchestrator(
        [make_item("d@example.com", 4)], dedup, FakeAuditSink(explode=True), sleep
    )
    report = await exploding.start_session()
    assert [r.status for r in report.results] == [ItemStatus.SUCCESS]


@pytest.mark.asyncio
async def test_completion_callback_fires_once(dedup, audit, sleep):
    calls = []
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep)

    await orchestrator.start_session(on_complete=lambda: calls.append("done"))

    assert calls == ["done"]


@pytest.mark.asyncio
async def test_async_completion_callback(dedup, audit, sleep):
    calls = []

    async def on_complete():
        calls.append(audit.types()[-1])

    orchestrator = _orchestrator([], dedup, audit, sleep)
    await orchestrator.start_session(on_complete=on_complete)

    assert calls == ["SESSION_COMPLETE"]


@pytest.mark.asyncio
async def test_empty_source_completes_without_batches(dedup, audit, sleep):
    orchestrator = _orchestrator([], dedup, audit, sleep)

    report = await orchestrator.start_session()

    assert report.batches == []
    assert report.total == 0
    assert audit.types() == ["SESSION_START", "SESSION_COMPLETE"]
    assert orchestrator.state == OrchestratorState.IDLE


@pytest.mark.asyncio
async def test_missing_evaluator_config_is_fatal_before_any_event(dedup, audit, sleep):
    calls = []
    evaluator = FakeEvaluator(ready=False)
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep, evaluator)

    with pytest.raises(EvaluatorConfigError):
        await orchestrator.start_session(on_complete=lambda: calls.append(1))

    assert audit.events == []
    assert calls == []
    assert dedup.lookups == []
    assert orchestrator.state == OrchestratorState.IDLE


@pytest.mark.asyncio
async def test_second_session_rejected_while_running(dedup, audit, sleep):
    seen = []

    class ReentrantEvaluator(FakeEvaluator):
        async def evaluate(self, item):
            try:
                await orchestrator.start_session()
            except SessionInProgressError as e:
                seen.append(e)
            return await super().evaluate(item)

    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep, ReentrantEvaluator())
    await orchestrator.start_session()

    assert len(seen) == 1
    assert orchestrator.state == OrchestratorState.IDLE


@pytest.mark.asyncio
async def test_identity_evaluated_since_assembly_is_skipped(dedup, audit, sleep):
    """The pre-evaluation re-check catches work done by someone else."""

    class RacingEvaluator(FakeEvaluator):
        async def evaluate(self, item):
            if item.identity == A:
                dedup.seed(make_outcome(B, OutcomeStatus.SUCCESS, 88))
            return await super().evaluate(item)

    evaluator = RacingEvaluator()
    orchestrator = _orchestrator([make_item(A, 1), make_item(B, 2)], dedup, audit, sleep, evaluator)

    report = await orchestrator.start_session()

    assert evaluator.calls == [A]
    results = _by_identity(report)
    assert results[B].status == ItemStatus.SKIPPED
    assert results[B].score == 88
    skipped = next(e for e in audit.events if e.event_type == AuditEventType.USER_SKIPPED)
    assert skipped.detail["reason"] == "evaluated_since_assembly"


@pytest.mark.asyncio
async def test_error_record_found_on_recheck_is_updated(dedup, audit, sleep):
    """A planned insert switches to update-by-id instead of adding a row."""

    class RacingEvaluator(FakeEvaluator):
        async def evaluate(self, item):
            if item.identity == A:
                self.error_id = dedup.seed(make_outcome(B, OutcomeStatus.ERROR))
            return await super().evaluate(item)

    evaluator = RacingEvaluator()
    orchestrator = _orchestrator([make_item(A, 1), make_item(B, 2)], dedup, audit, sleep, evaluator)

    report = await orchestrator.start_session()

    assert _by_identity(report)[B].status == ItemStatus.UPDATED
    assert list(dedup.for_identity(B)) == [evaluator.error_id]
    assert dedup.updates == [evaluator.error_id]


@pytest.mark.asyncio
async def test_recheck_failure_keeps_plan(dedup, audit, sleep):
    """Lookup failures never block an item."""
    dedup.fail_lookup_for.add(A)
    orchestrator = _orchestrator([make_item(A, 1)], dedup, audit, sleep)

    report = await orchestrator.start_session()

    assert report.results[0].status == ItemStatus.SUCCESS
    assert len(dedup.for_identity(A)) == 1


@pytest.mark.asyncio
async def test_progress_cache_records_successes_only(dedup, audit, sleep):
    items, _ = _seed_scenario(dedup)
    items.append(make_item("d@example.com", 4))
    cache = InMemoryProgressCache()
    evaluator = FakeEvaluator({"d@example.com": RuntimeError("bad reply")})
    orchestrator = _orchestrator(items, dedup, audit, sleep, evaluator, progress_cache=cache)

    await orchestrator.start_session()

    assert [(e["identity"], e["score"]) for e in cache.completed()] == [(A, 60), (C, 60)]


@pytest.mark.asyncio
async def test_cursor_resolution(dedup, audit, sleep):
    """Explicit offset beats the stored cursor, which beats the default."""
    source = FakeWorkSource([])
    orchestrator = Orchestrator(
        source,
        dedup,
        FakeEvaluator(),
        audit,
        cursor_store=FakeCursorStore(21),
        config=PipelineConfig(initial_cursor=1),
        sleep=sleep,
    )

    report = await orchestrator.start_session()
    assert source.calls[0][0] == 21
    assert report.start_cursor == 21

    source.calls.clear()
    report = await orchestrator.start_session(start_offset=7)
    assert source.calls[0][0] == 7
    assert report.next_cursor == 7


@pytest.mark.asyncio
async def test_work_source_failure_propagates(dedup, audit, sleep):
    class BrokenSource(FakeWorkSource):
        async def fetch_range(self, lower, upper):
            raise ConnectionError("submissions unavailable")

    calls = []
    orchestrator = Orchestrator(BrokenSource(), dedup, FakeEvaluator(), audit, sleep=sleep)

    with pytest.raises(ConnectionError):
        await orchestrator.start_session(on_complete=lambda: calls.append(1))

    assert calls == []
    assert orchestrator.state == OrchestratorState.IDLE


def test_pipeline_config_validation():
    with pytest.raises(ValueError):
        PipelineConfig(item_delay=-1)
    with pytest.raises(ValueError):
        PipelineConfig(score_tolerance=-0.5)

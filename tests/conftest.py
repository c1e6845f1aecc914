"""In-memory stand-ins for the pipeline's external collaborators."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from batcheval.database import Base
from batcheval.engine.contracts import AuditSink, CursorStore, DedupIndex, Evaluator, WorkSource
from batcheval.engine.errors import EvaluatorConfigError
from batcheval.models import OutcomeRecord, ProcessLog, Submission  # noqa: F401
from batcheval.schemas.audit import AuditEvent
from batcheval.schemas.evaluation import (
    CategoryScore,
    DedupResult,
    EvaluatorResult,
    OutcomeData,
    OutcomeStatus,
)
from batcheval.schemas.submission import SubmissionPayload, WorkItem

# Sums to 60 and stays inside every category maximum.
CATEGORY_SCORES = {
    "idea": 10,
    "problem": 10,
    "technology": 5,
    "collaboration": 5,
    "creativity": 10,
    "scale": 5,
    "impact": 10,
    "pitch": 5,
}


def make_item(identity: str, sequence_id: int, case_id: int = 1) -> WorkItem:
    return WorkItem(
        identity=identity,
        sequence_id=sequence_id,
        payload=SubmissionPayload(
            user_id=f"user-{sequence_id}",
            case_id=case_id,
            idea_statement=f"I want to solve waste for {identity}",
        ),
    )


def make_result(aggregate: int = 60, categories: dict[str, int] | None = None) -> EvaluatorResult:
    categories = CATEGORY_SCORES if categories is None else categories
    return EvaluatorResult(
        aggregate=aggregate,
        categories=[CategoryScore(name=k, score=v, status="good") for k, v in categories.items()],
        overall_feedback="Solid idea with a clear problem statement.",
        recommendations=["Talk to users", "Prototype early"],
    )


def make_outcome(identity: str, status: OutcomeStatus, score: int = 0) -> OutcomeData:
    return OutcomeData(
        identity=identity,
        aggregate_score=score,
        status=status,
        error_detail="previous failure" if status == OutcomeStatus.ERROR else None,
        processed_at=datetime.now(timezone.utc),
    )


class FakeWorkSource(WorkSource):
    def __init__(self, items: list[WorkItem] | None = None):
        self.items = list(items or [])
        self.calls: list[tuple[int, int]] = []

    async def fetch_range(self, lower: int, upper: int) -> list[WorkItem]:
        self.calls.append((lower, upper))
        return sorted(
            (i for i in self.items if lower <= i.sequence_id <= upper),
            key=lambda i: i.sequence_id,
        )


class FakeDedupIndex(DedupIndex):
    def __init__(self):
        self.records: dict[int, OutcomeData] = {}
        self.lookups: list[str] = []
        self.updates: list[int] = []
        self.fail_lookup_for: set[str] = set()
        self.fail_writes = False
        self._next_id = 1

    def seed(self, outcome: OutcomeData) -> int:
        record_id = self._next_id
        self._next_id += 1
        self.records[record_id] = outcome
        return record_id

    def for_identity(self, identity: str) -> dict[int, OutcomeData]:
        return {rid: o for rid, o in self.records.items() if o.identity == identity}

    async def lookup(self, identity: str) -> DedupResult:
        self.lookups.append(identity)
        if identity in self.fail_lookup_for:
            raise ConnectionError("dedup index unavailable")
        found = self.for_identity(identity)
        if not found:
            return DedupResult(exists=False)
        successes = [rid for rid, o in found.items() if o.status == OutcomeStatus.SUCCESS]
        record_id = max(successes) if successes else max(found)
        record = found[record_id]
        return DedupResult(
            exists=True,
            status=record.status,
            prior_score=record.aggregate_score,
            record_id=record_id,
            processed_at=record.processed_at,
        )

    async def insert(self, outcome: OutcomeData) -> int:
        if self.fail_writes:
            raise ConnectionError("write rejected")
        return self.seed(outcome)

    async def update(self, record_id: int, outcome: OutcomeData) -> None:
        if self.fail_writes:
            raise ConnectionError("write rejected")
        if record_id not in self.records:
            raise LookupError(f"Outcome record {record_id} not found")
        self.updates.append(record_id)
        self.records[record_id] = outcome


class FakeEvaluator(Evaluator):
    def __init__(self, results: dict[str, EvaluatorResult | Exception] | None = None, ready: bool = True):
        self.results = dict(results or {})
        self.ready = ready
        self.calls: list[str] = []

    @property
    def model_name(self) -> str:
        return "fake-model"

    def check_ready(self) -> None:
        if not self.ready:
            raise EvaluatorConfigError("Evaluator API key is not configured")

    async def evaluate(self, item: WorkItem) -> EvaluatorResult:
        self.calls.append(item.identity)
        outcome = self.results.get(item.identity, make_result())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAuditSink(AuditSink):
    def __init__(self, accept: bool = True, explode: bool = False):
        self.accept = accept
        self.explode = explode
        self.events: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> bool:
        if self.explode:
            raise RuntimeError("audit store down")
        self.events.append(event)
        return self.accept

    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


class FakeCursorStore(CursorStore):
    def __init__(self, cursor: int | None = None):
        self.cursor = cursor

    async def load(self) -> int | None:
        return self.cursor


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def dedup():
    return FakeDedupIndex()


@pytest.fixture
def audit():
    return FakeAuditSink()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

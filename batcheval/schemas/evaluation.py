"""Evaluation and outcome schemas."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OutcomeStatus(str, Enum):
    """Persisted outcome status."""

    SUCCESS = "success"
    ERROR = "error"


class ItemStatus(str, Enum):
    """Caller-visible status of one item in a session."""

    SUCCESS = "success"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


class CategoryScore(BaseModel):
    """Score for one rubric category."""

    name: str
    score: int = Field(ge=0)
    status: str = "needs_improvement"
    rationale: str = ""


class EvaluatorResult(BaseModel):
    """Structured score returned by the evaluator."""

    aggregate: int
    categories: list[CategoryScore] = Field(default_factory=list)
    overall_feedback: str | None = None
    recommendations: list[str] = Field(default_factory=list)

    @property
    def category_total(self) -> int:
        return sum(c.score for c in self.categories)


class DedupResult(BaseModel):
    """Most recent outcome known for an identity."""

    exists: bool = False
    status: OutcomeStatus | None = None
    prior_score: int | None = None
    record_id: int | None = None
    processed_at: datetime | None = None

    @property
    def is_authoritative(self) -> bool:
        return self.exists and self.status == OutcomeStatus.SUCCESS

    @property
    def is_retry(self) -> bool:
        return self.exists and self.status == OutcomeStatus.ERROR


class OutcomeData(BaseModel):
    """Values written to the outcome store for one identity."""

    identity: str
    user_id: str | None = None
    case_id: int | None = None
    aggregate_score: int = 0
    category_scores: list[CategoryScore] = Field(default_factory=list)
    overall_feedback: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    status: OutcomeStatus
    error_detail: str | None = None
    batch_id: str | None = None
    evaluator_model: str | None = None
    payload_hash: str | None = None
    processed_at: datetime


class ItemResult(BaseModel):
    """Per-item result shown to the caller."""

    identity: str
    sequence_id: int
    status: ItemStatus
    score: int | None = None
    persisted: bool | None = None
    error: str | None = None
    record_id: int | None = None
    finished_at: datetime


class BatchReport(BaseModel):
    """Counts for one assembled batch."""

    batch_id: str
    batch_number: int
    scanned: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    assembly_skipped: int = 0
    duration_ms: int = 0

    @property
    def processed(self) -> int:
        """Items that went through the per-item loop."""
        return self.scanned - self.assembly_skipped


class SessionReport(BaseModel):
    """Aggregates for a whole session across chained batches."""

    session_id: str
    start_cursor: int
    next_cursor: int
    batches: list[BatchReport] = Field(default_factory=list)
    results: list[ItemResult] = Field(default_factory=list)
    duration_ms: int = 0

    def _count(self, field: str) -> int:
        return sum(getattr(b, field) for b in self.batches)

    @property
    def inserted(self) -> int:
        return self._count("inserted")

    @property
    def updated(self) -> int:
        return self._count("updated")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def errored(self) -> int:
        return self._count("errored")

    @property
    def scanned(self) -> int:
        return self._count("scanned")

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped + self.errored

    def average_score(self) -> float | None:
        """Mean score over success, updated and skipped results."""
        scores = [
            r.score
            for r in self.results
            if r.status != ItemStatus.ERROR and r.score is not None
        ]
        if not scores:
            return None
        return round(sum(scores) / len(scores), 2)

    def counts(self) -> dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errored": self.errored,
            "scanned": self.scanned,
            "total": self.total,
        }

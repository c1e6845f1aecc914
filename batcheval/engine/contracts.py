"""Interfaces the orchestrator consumes.

Each external collaborator is reached through one of these classes so the
pipeline can run against the SQL adapters in ``batcheval.storage`` or
against in-memory fakes.
"""

from abc import ABC, abstractmethod

from batcheval.schemas.audit import AuditEvent
from batcheval.schemas.evaluation import DedupResult, EvaluatorResult, OutcomeData
from batcheval.schemas.submission import WorkItem


class WorkSource(ABC):
    """Ordered submission store paged by sequence id."""

    @abstractmethod
    async def fetch_range(self, lower: int, upper: int) -> list[WorkItem]:
        """Items with lower <= sequence_id <= upper, ascending."""


class DedupIndex(ABC):
    """Point lookups and writes of outcome records keyed by identity."""

    @abstractmethod
    async def lookup(self, identity: str) -> DedupResult:
        """Most recent outcome for identity."""

    @abstractmethod
    async def insert(self, outcome: OutcomeData) -> int:
        """Create a record and return its id."""

    @abstractmethod
    async def update(self, record_id: int, outcome: OutcomeData) -> None:
        """Overwrite an existing record in place."""


class Evaluator(ABC):
    """Opaque scoring oracle."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier stored alongside each outcome."""

    def check_ready(self) -> None:
        """Raise EvaluatorConfigError if the evaluator cannot be called."""

    @abstractmethod
    async def evaluate(self, item: WorkItem) -> EvaluatorResult:
        """Score one submission, raising on failure."""


class AuditSink(ABC):
    """Append-only event log."""

    @abstractmethod
    async def append(self, event: AuditEvent) -> bool:
        """Write one event. Returns False instead of raising on failure."""


class ProgressCache(ABC):
    """Best-effort, non-authoritative record of completed identities."""

    @abstractmethod
    def record(self, identity: str, score: int) -> None:
        """Remember that identity finished with score."""

    @abstractmethod
    def completed(self) -> list[dict]:
        """Everything recorded so far."""


class CursorStore(ABC):
    """Where the previous session stopped scanning."""

    @abstractmethod
    async def load(self) -> int | None:
        """Next sequence id to scan, or None if no session has completed."""

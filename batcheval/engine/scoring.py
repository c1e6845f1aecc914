"""Score validation and aggregate reconciliation."""

import logging
from dataclasses import dataclass, field

from batcheval.engine.errors import EvaluatorOutputError
from batcheval.schemas.evaluation import EvaluatorResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rubric:
    """Category names with their maximum scores."""

    categories: dict[str, int] = field(default_factory=dict)

    @property
    def max_total(self) -> int:
        return sum(self.categories.values())


DEFAULT_RUBRIC = Rubric(
    categories={
        "idea": 15,
        "problem": 15,
        "technology": 10,
        "collaboration": 10,
        "creativity": 15,
        "scale": 10,
        "impact": 15,
        "pitch": 10,
    }
)


def reconcile_aggregate(result: EvaluatorResult, tolerance: float) -> tuple[int, bool]:
    """
    Return (aggregate, reconciled).

    The evaluator's own total is kept only while it stays within tolerance of
    the category sum; otherwise the sum wins.
    """
    if not result.categories:
        return result.aggregate, False
    total = result.category_total
    if abs(result.aggregate - total) > tolerance:
        logger.info(
            f"Reported aggregate {result.aggregate} differs from category sum {total}; using sum"
        )
        return total, True
    return result.aggregate, False


def check_bounds(result: EvaluatorResult, aggregate: int, rubric: Rubric = DEFAULT_RUBRIC) -> None:
    """Raise EvaluatorOutputError when a score falls outside the rubric."""
    for category in result.categories:
        limit = rubric.categories.get(category.name)
        if limit is not None and category.score > limit:
            raise EvaluatorOutputError(
                f"Category '{category.name}' scored {category.score}, max is {limit}"
            )
    if rubric.categories and not 0 <= aggregate <= rubric.max_total:
        raise EvaluatorOutputError(
            f"Aggregate score {aggregate} outside 0..{rubric.max_total}"
        )

"""Batch assembly - page through the work source and filter against prior outcomes."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from batcheval.engine.contracts import DedupIndex, WorkSource
from batcheval.schemas.submission import WorkItem

logger = logging.getLogger(__name__)


class ItemPlan(str, Enum):
    """What the processing loop should do with a scanned item."""

    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


@dataclass
class PlannedItem:
    """A scanned item and the outcome it was classified with."""

    item: WorkItem
    plan: ItemPlan
    record_id: int | None = None
    prior_score: int | None = None
    lookup_failed: bool = False


@dataclass
class AssembledBatch:
    """Result of one assembly pass, in ascending sequence order."""

    start_cursor: int
    next_cursor: int
    entries: list[PlannedItem] = field(default_factory=list)
    windows_probed: int = 0
    exhausted: bool = False

    @property
    def included(self) -> list[PlannedItem]:
        return [e for e in self.entries if e.plan != ItemPlan.SKIP]

    @property
    def skipped(self) -> list[PlannedItem]:
        return [e for e in self.entries if e.plan == ItemPlan.SKIP]

    @property
    def scanned(self) -> int:
        return len(self.entries)

    @property
    def has_more(self) -> bool:
        return not self.exhausted


class BatchAssembler:
    """
    Collect up to ``target_size`` items that still need evaluation.

    Windows of ``window_size`` sequence ids are probed from the cursor. Probing
    stops when the target is met, after ``probe_bound`` windows, or once
    ``empty_probe_limit`` consecutive windows come back empty (exhaustion).
    The cursor moves over the span actually scanned; a trailing run of empty
    windows is left unconsumed so rows appended later are picked up.
    """

    def __init__(
        self,
        work_source: WorkSource,
        dedup_index: DedupIndex,
        target_size: int = 20,
        window_size: int = 20,
        probe_bound: int = 20,
        empty_probe_limit: int = 3,
    ):
        if target_size <= 0:
            raise ValueError("target_size must be positive")
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        if probe_bound <= 0:
            raise ValueError("probe_bound must be positive")
        if empty_probe_limit <= 0:
            raise ValueError("empty_probe_limit must be positive")
        self.work_source = work_source
        self.dedup_index = dedup_index
        self.target_size = target_size
        self.window_size = window_size
        self.probe_bound = probe_bound
        self.empty_probe_limit = min(empty_probe_limit, probe_bound)

    async def assemble(self, cursor: int) -> AssembledBatch:
        batch = AssembledBatch(start_cursor=cursor, next_cursor=cursor)
        position = cursor
        empty_run = 0
        included = 0

        while batch.windows_probed < self.probe_bound:
            lower = position
            upper = position + self.window_size - 1
            items = await self.work_source.fetch_range(lower, upper)
            batch.windows_probed += 1
            position = upper + 1

            if not items:
                empty_run += 1
                logger.debug(f"Window {lower}-{upper} empty ({empty_run}/{self.empty_probe_limit})")
                if empty_run >= self.empty_probe_limit:
                    batch.exhausted = True
                    break
                continue
            empty_run = 0

            target_met = False
            for item in sorted(items, key=lambda i: i.sequence_id):
                if not lower <= item.sequence_id <= upper:
                    logger.warning(
                        f"Ignoring {item.identity}: sequence_id {item.sequence_id} outside {lower}-{upper}"
                    )
                    continue
                planned = await self._classify(item)
                batch.entries.append(planned)
                if planned.plan != ItemPlan.SKIP:
                    included += 1
                if included >= self.target_size:
                    batch.next_cursor = item.sequence_id + 1
                    target_met = True
                    break

            logger.info(
                f"Window {lower}-{upper}: {len(items)} found, "
                f"collected {included}/{self.target_size}"
            )
            if target_met:
                break
            batch.next_cursor = position

        logger.info(
            f"Assembled {included} items ({batch.scanned - included} skipped) from "
            f"{batch.windows_probed} windows; cursor {cursor} -> {batch.next_cursor}"
            f"{' (exhausted)' if batch.exhausted else ''}"
        )
        return batch

    async def _classify(self, item: WorkItem) -> PlannedItem:
        try:
            found = await self.dedup_index.lookup(item.identity)
        except Exception as e:
            logger.warning(f"Duplicate check failed for {item.identity}, treating as new: {e}")
            return PlannedItem(item=item, plan=ItemPlan.INSERT, lookup_failed=True)

        if found.is_authoritative:
            logger.debug(f"Skipping {item.identity} - already evaluated ({found.prior_score})")
            return PlannedItem(
                item=item,
                plan=ItemPlan.SKIP,
                record_id=found.record_id,
                prior_score=found.prior_score,
            )
        if found.is_retry:
            logger.debug(f"Including {item.identity} - previous attempt failed, will update")
            return PlannedItem(item=item, plan=ItemPlan.UPDATE, record_id=found.record_id)
        return PlannedItem(item=item, plan=ItemPlan.INSERT)

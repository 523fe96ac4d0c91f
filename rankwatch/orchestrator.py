"""
Batch orchestrator: drives a work list in fixed-size slices under a
processing budget, tolerating per-item failure.

Run states: Idle -> Slicing -> Draining -> Done.  A slice is only started
while the budget allows it; inside a slice each item is checked again
before it starts (after any pending 429/5xx cooldown), but an item that is
already running always finishes.
Records produced by a slice are flushed in one call once the slice ends,
so a slice is the unit of durability.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from .budget import ProcessingBudget, Sleep, timeout_aware_delay
from .errors import ConfigurationError, HttpStatusError, ScrapingError, classify_error
from .models import ItemFailure, ItemOutcome, RunSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProcessFn = Callable[[T], Awaitable[Optional[List[R]]]]
FlushFn = Callable[[List[R]], Awaitable[int]]
FailureHook = Callable[[T, ScrapingError], Awaitable[None]]
GoneHook = Callable[[T], Awaitable[None]]


class BatchOrchestrator(Generic[T, R]):
    """Sequential, budget-aware batch driver."""

    def __init__(
        self,
        budget: ProcessingBudget,
        *,
        slice_size: int = 10,
        cooldown: float = 5.0,
        slice_pause: float = 0.0,
        sleep: Sleep = asyncio.sleep,
        item_key: Callable[[T], str] = str,
        on_failure: Optional[FailureHook] = None,
        on_gone: Optional[GoneHook] = None,
        name: str = "batch",
    ) -> None:
        if slice_size < 1:
            raise ValueError("slice_size must be at least 1")
        self.budget = budget
        self.slice_size = slice_size
        self.cooldown = cooldown
        self.slice_pause = slice_pause
        self.name = name
        self._sleep = sleep
        self._item_key = item_key
        self._on_failure = on_failure
        self._on_gone = on_gone
        self.state = "idle"

    async def run(
        self,
        items: Sequence[T],
        process: ProcessFn,
        flush: FlushFn,
    ) -> RunSummary:
        summary = RunSummary(total_count=len(items))
        if not items:
            self.state = "done"
            summary.execution_time_ms = self.budget.elapsed_ms()
            return summary

        self.state = "slicing"
        pending_cooldown = 0.0
        slices = [items[i:i + self.slice_size] for i in range(0, len(items), self.slice_size)]
        logger.info(f"[{self.name}] {len(items)} items in {len(slices)} slices of {self.slice_size}")

        for index, chunk in enumerate(slices, start=1):
            if not self.budget.should_continue():
                logger.info(
                    f"[{self.name}] Budget exhausted before slice {index}; "
                    f"{summary.processed_count}/{summary.total_count} processed"
                )
                break

            produced: List[R] = []
            budget_hit = False
            for item in chunk:
                if pending_cooldown:
                    slept = await timeout_aware_delay(pending_cooldown, self.budget, self._sleep)
                    logger.debug(f"[{self.name}] Rate-limit cooldown {slept:.1f}s")
                    pending_cooldown = 0.0

                if not self.budget.should_continue():
                    budget_hit = True
                    break

                outcome, records, error = await self._process_one(item, process)
                self._record(summary, item, outcome, error)
                if records:
                    produced.extend(records)
                if isinstance(error, HttpStatusError) and error.needs_cooldown:
                    pending_cooldown = max(self.cooldown, error.retry_after or 0.0)

            self.state = "draining"
            if produced:
                summary.saved_count += await self._flush(produced, flush, index)
            logger.info(
                f"[{self.name}] Slice {index}/{len(slices)} done: "
                f"{summary.processed_count} processed, {summary.saved_count} saved"
            )

            if budget_hit:
                logger.info(f"[{self.name}] Budget exhausted inside slice {index}; stopping")
                break

            self.state = "slicing"
            if index < len(slices) and self.slice_pause > 0:
                await timeout_aware_delay(self.slice_pause, self.budget, self._sleep)

        self.state = "done"
        summary.skipped_count = summary.total_count - summary.processed_count - summary.failed_count
        summary.execution_time_ms = self.budget.elapsed_ms()
        logger.info(
            f"[{self.name}] Run finished: {summary.processed_count}/{summary.total_count} processed, "
            f"{summary.saved_count} saved, {summary.failed_count} failed, "
            f"{summary.skipped_count} skipped in {summary.execution_time_ms}ms"
        )
        return summary

    async def _process_one(
        self, item: T, process: ProcessFn
    ) -> Tuple[ItemOutcome, List[R], Optional[ScrapingError]]:
        key = self._item_key(item)
        try:
            records = await process(item)
        except ConfigurationError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, HttpStatusError) and error.is_gone:
                logger.info(f"[{self.name}] {key} no longer exists upstream")
                await self._notify(self._on_gone, item)
                return ItemOutcome.GONE, [], error
            if error.retryable:
                logger.warning(f"[{self.name}] {key} failed (retryable {error.code}): {error.message}")
                outcome = ItemOutcome.FAILED_RETRYABLE
            else:
                logger.error(f"[{self.name}] {key} failed ({error.code}): {error.message}")
                outcome = ItemOutcome.FAILED_TERMINAL
            await self._notify(self._on_failure, item, error)
            return outcome, [], error

        return ItemOutcome.SUCCEEDED, list(records or []), None

    def _record(
        self,
        summary: RunSummary,
        item: T,
        outcome: ItemOutcome,
        error: Optional[ScrapingError],
    ) -> None:
        if outcome in (ItemOutcome.SUCCEEDED, ItemOutcome.GONE):
            summary.processed_count += 1
            if outcome is ItemOutcome.GONE:
                summary.gone_count += 1
            return
        summary.failed_count += 1
        if error is not None:
            summary.failures.append(
                ItemFailure(
                    key=self._item_key(item),
                    code=error.code,
                    retryable=error.retryable,
                    message=error.message,
                )
            )

    async def _notify(self, hook, item: T, *args) -> None:
        if hook is None:
            return
        try:
            await hook(item, *args)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Outcome hook for {self._item_key(item)} failed: {e}")

    async def _flush(self, records: List[R], flush: FlushFn, index: int) -> int:
        try:
            return await flush(records)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Writing slice {index} ({len(records)} records) failed: {e}", exc_info=True)
            return 0

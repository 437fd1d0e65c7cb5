"""Bounded fan-out over per-user operations with shared run counters."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Lock
from typing import TypeVar

from loguru import logger

from .models import ItemOutcome, RunStats

DEFAULT_CONCURRENCY = 10
MAX_RECORDED_ERRORS = 50

T = TypeVar("T")

ItemOperation = Callable[[T], "ItemOutcome | bool | None"]
Accumulator = Callable[[T, ItemOutcome], None]


def resolve_concurrency(value: object, *, stage: str = "", default: int = DEFAULT_CONCURRENCY) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    logger.warning("Invalid concurrency {!r} for stage '{}', using default {}", value, stage, default)
    return default


def _classify(result: ItemOutcome | bool | None) -> ItemOutcome | None:
    if isinstance(result, ItemOutcome):
        return result
    if result is False:
        return None
    return ItemOutcome.SUCCEEDED


def run_bounded(
    items: Iterable[T],
    operation: ItemOperation,
    *,
    concurrency: int,
    stage: str,
    accumulate: Accumulator | None = None,
) -> RunStats:
    """Run `operation` for every item with at most `concurrency` in flight.

    The operation reports its outcome by returning an `ItemOutcome`; returning
    `False` or raising counts as a failure. `accumulate` receives every
    non-failed item under the counter lock, so it may mutate shared results.
    Blocks until every item has finished.
    """
    work = list(items)
    stats = RunStats(stage=stage)
    if not work:
        logger.info("Stage '{}' has no items to process", stage)
        return stats

    cap = resolve_concurrency(concurrency, stage=stage)
    counter_lock = Lock()

    def _record(item: T, outcome: ItemOutcome | None, error: str | None) -> None:
        with counter_lock:
            stats.processed += 1
            if outcome is None:
                stats.failed += 1
                if error and len(stats.errors) < MAX_RECORDED_ERRORS:
                    stats.errors.append(f"{item}: {error}")
                return
            if outcome is ItemOutcome.SKIPPED:
                stats.skipped += 1
            else:
                stats.succeeded += 1
            if accumulate is not None:
                accumulate(item, outcome)

    def _run_one(item: T) -> None:
        try:
            outcome = _classify(operation(item))
        except Exception as exc:
            logger.error("Stage '{}' item {} failed: {}", stage, item, exc)
            _record(item, None, str(exc))
            return
        if outcome is None:
            _record(item, None, "operation reported failure")
            return
        _record(item, outcome, None)

    logger.info("Stage '{}' starting: items={} concurrency={}", stage, len(work), cap)
    with ThreadPoolExecutor(max_workers=min(cap, len(work)), thread_name_prefix=f"pushrec-{stage}") as executor:
        futures = [executor.submit(_run_one, item) for item in work]
        for fut in as_completed(futures):
            fut.result()

    logger.info("Stage finished: {}", stats.summary())
    return stats

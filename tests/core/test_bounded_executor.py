import time
from threading import Lock

from src.pushrec.core.bounded_executor import (
    DEFAULT_CONCURRENCY,
    MAX_RECORDED_ERRORS,
    resolve_concurrency,
    run_bounded,
)
from src.pushrec.core.models import ItemOutcome


def test_run_bounded_never_exceeds_concurrency_cap():
    lock = Lock()
    state = {"active": 0, "peak": 0}

    def _op(_item: int) -> ItemOutcome:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with lock:
            state["active"] -= 1
        return ItemOutcome.SUCCEEDED

    stats = run_bounded(range(20), _op, concurrency=3, stage="profile")
    assert state["peak"] <= 3
    assert stats.processed == 20
    assert stats.succeeded == 20


def test_run_bounded_counts_outcomes_and_failures():
    def _op(item: int):
        if item % 4 == 0:
            raise RuntimeError(f"boom {item}")
        if item % 4 == 1:
            return ItemOutcome.SKIPPED
        if item % 4 == 2:
            return False
        return ItemOutcome.SUCCEEDED

    stats = run_bounded(range(8), _op, concurrency=2, stage="push")
    assert stats.stage == "push"
    assert stats.processed == 8
    assert stats.failed == 4
    assert stats.skipped == 2
    assert stats.succeeded == 2
    assert stats.processed == stats.succeeded + stats.failed + stats.skipped
    assert any("boom 0" in err for err in stats.errors)


def test_run_bounded_true_result_counts_as_success():
    stats = run_bounded(["a", "b"], lambda _cid: True, concurrency=5, stage="push")
    assert stats.succeeded == 2
    assert stats.failed == 0


def test_run_bounded_accumulate_sees_non_failed_items_only():
    collected: list[tuple[str, ItemOutcome]] = []

    def _op(cid: str):
        if cid == "bad":
            raise ValueError("nope")
        return ItemOutcome.SKIPPED if cid == "old" else ItemOutcome.SUCCEEDED

    stats = run_bounded(
        ["new", "old", "bad"],
        _op,
        concurrency=3,
        stage="profile",
        accumulate=lambda cid, outcome: collected.append((cid, outcome)),
    )
    assert stats.failed == 1
    assert sorted(collected) == [("new", ItemOutcome.SUCCEEDED), ("old", ItemOutcome.SKIPPED)]


def test_run_bounded_empty_input_returns_zero_stats():
    calls = {"n": 0}

    def _op(_item):
        calls["n"] += 1
        return ItemOutcome.SUCCEEDED

    stats = run_bounded([], _op, concurrency=3, stage="recommendation")
    assert stats.processed == 0
    assert calls["n"] == 0


def test_run_bounded_caps_recorded_errors():
    def _op(_item):
        raise RuntimeError("fail")

    stats = run_bounded(range(MAX_RECORDED_ERRORS + 10), _op, concurrency=8, stage="push")
    assert stats.failed == MAX_RECORDED_ERRORS + 10
    assert len(stats.errors) == MAX_RECORDED_ERRORS


def test_run_bounded_invalid_concurrency_uses_default():
    stats = run_bounded(range(3), lambda _i: ItemOutcome.SUCCEEDED, concurrency=0, stage="profile")
    assert stats.succeeded == 3


def test_resolve_concurrency_defaults():
    assert resolve_concurrency(4, stage="x") == 4
    assert resolve_concurrency(0, stage="x") == DEFAULT_CONCURRENCY
    assert resolve_concurrency(-2, stage="x") == DEFAULT_CONCURRENCY
    assert resolve_concurrency("8", stage="x") == DEFAULT_CONCURRENCY
    assert resolve_concurrency(True, stage="x") == DEFAULT_CONCURRENCY
    assert resolve_concurrency(None, stage="x", default=5) == 5

import time
from datetime import UTC, datetime, timedelta
from threading import Event

import pytest

from src.pushrec.core.scheduler import (
    DEFAULT_CHECK_INTERVAL_SEC,
    DEFAULT_INTERVAL_SEC,
    MODE_DAILY,
    MODE_INTERVAL,
    Scheduler,
    SchedulerSettings,
    next_daily_run,
    scheduler_settings,
    validate_hour_minute,
)

T0 = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_next_daily_run_today_and_rollover():
    assert next_daily_run(T0, 9, 0) == datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
    assert next_daily_run(T0, 8, 0) == datetime(2024, 5, 2, 8, 0, tzinfo=UTC)
    # Exact match is not "after now".
    at_nine = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
    assert next_daily_run(at_nine, 9, 0) == datetime(2024, 5, 2, 9, 0, tzinfo=UTC)


def test_next_daily_run_crosses_month_boundary():
    late = datetime(2024, 1, 31, 23, 59, tzinfo=UTC)
    assert next_daily_run(late, 9, 0) == datetime(2024, 2, 1, 9, 0, tzinfo=UTC)


def test_validate_hour_minute_replaces_invalid_values():
    assert validate_hour_minute(25, 61) == (9, 0)
    assert validate_hour_minute(-1, 30, default_hour=6) == (6, 30)
    assert validate_hour_minute(23, 59) == (23, 59)
    assert validate_hour_minute("7", 0, default_hour=99) == (9, 0)


def test_scheduler_settings_defaults_and_overrides():
    cfg = scheduler_settings({})
    assert cfg.enabled is False
    assert cfg.mode == MODE_DAILY
    assert (cfg.hour, cfg.minute) == (9, 0)
    assert cfg.interval_sec == DEFAULT_INTERVAL_SEC
    assert cfg.check_interval_sec == DEFAULT_CHECK_INTERVAL_SEC

    cfg = scheduler_settings(
        {
            "scheduler": {
                "enabled": True,
                "mode": "INTERVAL",
                "interval_sec": 0,
                "check_interval_sec": 5,
                "hour": 30,
                "default_hour": 7,
                "timezone": "Asia/Shanghai",
            }
        }
    )
    assert cfg.enabled is True
    assert cfg.mode == MODE_INTERVAL
    assert cfg.interval_sec == DEFAULT_INTERVAL_SEC
    assert cfg.check_interval_sec == 5
    assert cfg.hour == 7
    assert cfg.timezone == "Asia/Shanghai"


def test_scheduler_settings_unknown_mode_falls_back_to_daily():
    assert scheduler_settings({"scheduler": {"mode": "cron"}}).mode == MODE_DAILY
    assert scheduler_settings({"scheduler": {"mode": "debug"}}).mode == MODE_INTERVAL


def test_initial_next_run_daily_and_interval():
    daily = Scheduler(lambda: {"ok": True}, SchedulerSettings(hour=9, minute=0), clock=_Clock(T0))
    assert daily.task().next_run == datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    interval = Scheduler(
        lambda: {"ok": True},
        SchedulerSettings(mode=MODE_INTERVAL, interval_sec=600),
        clock=_Clock(T0),
    )
    assert interval.task().next_run == T0 + timedelta(seconds=600)


def test_tick_before_due_does_not_dispatch():
    calls = {"n": 0}

    def _workflow():
        calls["n"] += 1
        return {"ok": True}

    scheduler = Scheduler(_workflow, SchedulerSettings(hour=9, minute=0), clock=_Clock(T0))
    out = scheduler.tick(T0 + timedelta(minutes=10))
    assert out["dispatched"] == []
    assert calls["n"] == 0


def test_tick_dispatches_and_reschedules_next_day():
    done = Event()

    def _workflow():
        done.set()
        return {"ok": True, "candidates": 2}

    scheduler = Scheduler(_workflow, SchedulerSettings(hour=9, minute=0), clock=_Clock(T0))
    due = datetime(2024, 5, 1, 9, 0, 30, tzinfo=UTC)
    out = scheduler.tick(due)
    assert out["dispatched"] == ["profile_generation_workflow"]
    assert done.wait(timeout=2.0)
    assert _wait_until(lambda: not scheduler.task().running)

    task = scheduler.task()
    assert task.last_run == due
    assert task.next_run == datetime(2024, 5, 2, 9, 0, tzinfo=UTC)
    assert scheduler.status()["last_result"] == {"ok": True, "candidates": 2}


def test_tick_does_not_overlap_running_workflow():
    release = Event()
    started = Event()
    calls = {"n": 0}

    def _workflow():
        calls["n"] += 1
        started.set()
        release.wait(timeout=2.0)
        return {"ok": True}

    scheduler = Scheduler(
        _workflow,
        SchedulerSettings(mode=MODE_INTERVAL, interval_sec=60),
        clock=_Clock(T0),
    )
    first_due = T0 + timedelta(seconds=60)
    assert scheduler.tick(first_due)["dispatched"] == ["profile_generation_workflow"]
    assert started.wait(timeout=2.0)
    assert scheduler.task().running is True

    # Way past due, but the previous run still holds the slot.
    assert scheduler.tick(first_due + timedelta(hours=1))["dispatched"] == []
    assert calls["n"] == 1

    release.set()
    assert _wait_until(lambda: not scheduler.task().running)
    assert scheduler.task().next_run == first_due + timedelta(seconds=60)


def test_failed_workflow_clears_running_and_reschedules():
    def _workflow():
        raise RuntimeError("db offline")

    scheduler = Scheduler(
        _workflow,
        SchedulerSettings(mode=MODE_INTERVAL, interval_sec=300),
        clock=_Clock(T0),
    )
    due = T0 + timedelta(seconds=300)
    scheduler.tick(due)
    assert _wait_until(lambda: scheduler.task().last_run is not None)

    task = scheduler.task()
    assert task.running is False
    assert task.last_run == due
    assert task.next_run == due + timedelta(seconds=300)
    assert scheduler.status()["last_result"] == {"ok": False, "error": "db offline"}


def test_start_stop_background_loop():
    scheduler = Scheduler(
        lambda: {"ok": True},
        SchedulerSettings(mode=MODE_INTERVAL, interval_sec=3600, check_interval_sec=1),
        clock=_Clock(T0),
    )
    first = scheduler.start()
    assert first["ok"] is True
    assert first["already_running"] is False
    assert scheduler.start()["already_running"] is True
    assert scheduler.is_running() is True

    out = scheduler.stop()
    assert out["running"] is False
    assert scheduler.is_running() is False


@pytest.mark.parametrize("mode", [MODE_DAILY, MODE_INTERVAL])
def test_status_reports_task_descriptor(mode: str):
    scheduler = Scheduler(lambda: {"ok": True}, SchedulerSettings(mode=mode), clock=_Clock(T0))
    status = scheduler.status()
    assert status["ok"] is True
    assert status["mode"] == mode
    assert status["running"] is False
    assert len(status["tasks"]) == 1
    assert status["tasks"][0]["kind"] == "profile_generation_workflow"
    assert status["tasks"][0]["next_run"] is not None
    assert status["tasks"][0]["running"] is False

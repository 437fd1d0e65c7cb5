"""Timer-driven scheduler that triggers the profile workflow without overlap."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Event, RLock, Thread
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from .config_loader import get_section, positive_int
from .models import TaskDescriptor, TaskKind

MODE_DAILY = "daily"
MODE_INTERVAL = "interval"
DEFAULT_INTERVAL_SEC = 1800
DEFAULT_CHECK_INTERVAL_SEC = 60
DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0


@dataclass(slots=True)
class SchedulerSettings:
    enabled: bool = False
    mode: str = MODE_DAILY
    hour: int = DEFAULT_HOUR
    minute: int = DEFAULT_MINUTE
    interval_sec: int = DEFAULT_INTERVAL_SEC
    check_interval_sec: int = DEFAULT_CHECK_INTERVAL_SEC
    timezone: str | None = None


def _in_range(value: Any, low: int, high: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and low <= value <= high


def validate_hour_minute(hour: Any, minute: Any, *, default_hour: Any = DEFAULT_HOUR, default_minute: Any = DEFAULT_MINUTE) -> tuple[int, int]:
    """Replace out-of-range values with the configured defaults, warning instead of failing."""
    fallback_hour = default_hour if _in_range(default_hour, 0, 23) else DEFAULT_HOUR
    fallback_minute = default_minute if _in_range(default_minute, 0, 59) else DEFAULT_MINUTE
    if not _in_range(hour, 0, 23):
        logger.warning("Invalid schedule hour {!r}, using default {}", hour, fallback_hour)
        hour = fallback_hour
    if not _in_range(minute, 0, 59):
        logger.warning("Invalid schedule minute {!r}, using default {}", minute, fallback_minute)
        minute = fallback_minute
    return int(hour), int(minute)


def scheduler_settings(config: dict[str, Any] | None = None) -> SchedulerSettings:
    section = get_section("scheduler", config)
    mode = str(section.get("mode") or MODE_DAILY).strip().lower()
    if mode == "debug":
        mode = MODE_INTERVAL
    if mode not in {MODE_DAILY, MODE_INTERVAL}:
        logger.warning("Unknown scheduler mode {!r}, using '{}'", mode, MODE_DAILY)
        mode = MODE_DAILY
    hour, minute = validate_hour_minute(
        section.get("hour", DEFAULT_HOUR),
        section.get("minute", DEFAULT_MINUTE),
        default_hour=section.get("default_hour", DEFAULT_HOUR),
        default_minute=section.get("default_minute", DEFAULT_MINUTE),
    )
    interval = section.get("interval_sec")
    if interval is not None and positive_int(interval, 0) == 0:
        logger.warning("Invalid interval_sec {!r}, using default {}", interval, DEFAULT_INTERVAL_SEC)
    check = section.get("check_interval_sec")
    if check is not None and positive_int(check, 0) == 0:
        logger.warning("Invalid check_interval_sec {!r}, using default {}", check, DEFAULT_CHECK_INTERVAL_SEC)
    tz = section.get("timezone")
    return SchedulerSettings(
        enabled=bool(section.get("enabled", False)),
        mode=mode,
        hour=hour,
        minute=minute,
        interval_sec=positive_int(interval, DEFAULT_INTERVAL_SEC),
        check_interval_sec=positive_int(check, DEFAULT_CHECK_INTERVAL_SEC),
        timezone=tz.strip() if isinstance(tz, str) and tz.strip() else None,
    )


def next_daily_run(now: datetime, hour: int, minute: int) -> datetime:
    """Next `hour:minute` strictly after `now`, in `now`'s timezone."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_interval_run(baseline: datetime, interval_sec: int) -> datetime:
    return baseline + timedelta(seconds=interval_sec if interval_sec > 0 else DEFAULT_INTERVAL_SEC)


def _resolve_zone(name: str | None) -> ZoneInfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown scheduler timezone {!r}, using system local time", name)
        return None


class Scheduler:
    """Single background tick loop owning one descriptor per task kind."""

    def __init__(
        self,
        workflow: Callable[[], Any],
        settings: SchedulerSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._workflow = workflow
        self._settings = settings or scheduler_settings()
        zone = _resolve_zone(self._settings.timezone)
        self._clock = clock or (lambda: datetime.now(tz=zone) if zone else datetime.now().astimezone())
        self._lock = RLock()
        self._stop_event = Event()
        self._loop_thread: Thread | None = None
        self._active_threads: dict[TaskKind, Thread] = {}
        self._last_result: dict[str, Any] | None = None
        self._tasks: dict[TaskKind, TaskDescriptor] = {
            TaskKind.PROFILE_GENERATION_WORKFLOW: self._initial_descriptor(self._clock()),
        }

    @property
    def settings(self) -> SchedulerSettings:
        return self._settings

    def _describe(self) -> str:
        if self._settings.mode == MODE_INTERVAL:
            return f"Profile, recommendation and push workflow every {self._settings.interval_sec}s"
        return f"Profile, recommendation and push workflow daily at {self._settings.hour:02d}:{self._settings.minute:02d}"

    def compute_next_run(self, baseline: datetime) -> datetime:
        if self._settings.mode == MODE_INTERVAL:
            return next_interval_run(baseline, self._settings.interval_sec)
        return next_daily_run(baseline, self._settings.hour, self._settings.minute)

    def _initial_descriptor(self, now: datetime) -> TaskDescriptor:
        next_run = self.compute_next_run(now)
        logger.info("Scheduler mode={} first run at {}", self._settings.mode, next_run.isoformat())
        return TaskDescriptor(
            kind=TaskKind.PROFILE_GENERATION_WORKFLOW,
            description=self._describe(),
            next_run=next_run,
        )

    def start(self) -> dict[str, Any]:
        with self._lock:
            if self._loop_thread is not None and self._loop_thread.is_alive():
                return {"ok": True, "running": True, "already_running": True}
            self._stop_event.clear()
            self._loop_thread = Thread(target=self._run_loop, daemon=True, name="pushrec-scheduler")
            self._loop_thread.start()
        logger.info("Scheduler started: {}", self._describe())
        return {"ok": True, "running": True, "already_running": False}

    def stop(self) -> dict[str, Any]:
        with self._lock:
            thread = self._loop_thread
            self._stop_event.set()
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)
        with self._lock:
            self._loop_thread = None
        logger.info("Scheduler stopped")
        return {"ok": True, "running": False}

    def is_running(self) -> bool:
        with self._lock:
            return self._loop_thread is not None and self._loop_thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as exc:
                logger.exception("Scheduler tick failed: {}", exc)
            self._stop_event.wait(timeout=max(1, self._settings.check_interval_sec))

    def tick(self, now: datetime | None = None) -> dict[str, Any]:
        """Dispatch every due, idle task; returns the kinds started on this tick."""
        current = now or self._clock()
        started: list[tuple[TaskKind, Thread]] = []
        with self._lock:
            for kind, task in self._tasks.items():
                if task.running or task.next_run is None or current < task.next_run:
                    continue
                task.running = True
                thread = Thread(
                    target=self._execute,
                    args=(kind, current),
                    daemon=True,
                    name=f"pushrec-{kind.value}",
                )
                self._active_threads[kind] = thread
                started.append((kind, thread))
        for kind, thread in started:
            logger.info("Dispatching {}", kind.value)
            thread.start()
        return {"ok": True, "dispatched": [kind.value for kind, _ in started]}

    def _execute(self, kind: TaskKind, dispatched_at: datetime) -> None:
        try:
            result = self._workflow()
            payload = result if isinstance(result, dict) else result.to_dict()
            with self._lock:
                self._last_result = payload
            logger.info("{} finished ok={}", kind.value, payload.get("ok"))
        except Exception as exc:
            logger.exception("{} failed: {}", kind.value, exc)
            with self._lock:
                self._last_result = {"ok": False, "error": str(exc)}
        finally:
            with self._lock:
                task = self._tasks[kind]
                task.running = False
                task.last_run = dispatched_at
                task.next_run = self.compute_next_run(dispatched_at)
                self._active_threads.pop(kind, None)
                next_run = task.next_run
            logger.info("{} next run at {}", kind.value, next_run.isoformat())

    def join_active(self, timeout: float | None = None) -> None:
        with self._lock:
            threads = list(self._active_threads.values())
        for thread in threads:
            if thread.is_alive():
                thread.join(timeout=timeout)

    def task(self, kind: TaskKind = TaskKind.PROFILE_GENERATION_WORKFLOW) -> TaskDescriptor:
        with self._lock:
            src = self._tasks[kind]
            return TaskDescriptor(
                kind=src.kind,
                description=src.description,
                last_run=src.last_run,
                next_run=src.next_run,
                running=src.running,
            )

    def status(self) -> dict[str, Any]:
        with self._lock:
            tasks = [task.to_dict() for task in self._tasks.values()]
            last_result = self._last_result
        return {
            "ok": True,
            "running": self.is_running(),
            "enabled_in_config": self._settings.enabled,
            "mode": self._settings.mode,
            "check_interval_sec": self._settings.check_interval_sec,
            "tasks": tasks,
            "last_result": last_result,
        }

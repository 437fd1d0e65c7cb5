"""Shared runtime ownership facade for daemon/app entrypoints."""

from __future__ import annotations

from threading import Lock, RLock
from typing import Any

from loguru import logger

from src.pushrec.core.backend import DefaultBackend
from src.pushrec.core.config_loader import load_config_or_empty
from src.pushrec.core.log_setup import configure_logging, log_settings
from src.pushrec.core.pipeline import PipelineCoordinator, pipeline_settings
from src.pushrec.core.scheduler import Scheduler, scheduler_settings


class RuntimeService:
    """Single authority for runtime lifecycle + app-facing operations."""

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self._lock = RLock()
        # Manual triggers and the scheduler share one workflow at a time.
        self._workflow_lock = Lock()
        self._config = config
        self._coordinator: PipelineCoordinator | None = None
        self._scheduler: Scheduler | None = None
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None

    def _resolved_config(self) -> dict[str, Any]:
        if self._config is None:
            self._config = load_config_or_empty()
        return self._config

    @property
    def coordinator(self) -> PipelineCoordinator:
        with self._lock:
            if self._coordinator is None:
                config = self._resolved_config()
                self._coordinator = PipelineCoordinator(
                    DefaultBackend.from_config(config),
                    pipeline_settings(config),
                )
            return self._coordinator

    @property
    def scheduler(self) -> Scheduler:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = Scheduler(self._run_scheduled_workflow, scheduler_settings(self._resolved_config()))
            return self._scheduler

    def start(self, *, start_scheduler_if_enabled: bool = True, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            already_started = self._started
            self._started = True
            self._last_start_source = source
        if not already_started:
            configure_logging(log_settings(self._resolved_config()))

        scheduler_started = False
        if start_scheduler_if_enabled:
            scheduler = self.scheduler
            if scheduler.settings.enabled and not scheduler.is_running():
                out = scheduler.start()
                scheduler_started = bool(out.get("ok")) and bool(out.get("running"))

        logger.info("Runtime started by {} (scheduler_started={})", source, scheduler_started)
        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
            "scheduler_started": scheduler_started,
        }

    def stop(
        self,
        *,
        stop_scheduler: bool = True,
        source: str = "runtime",
        drain_timeout_sec: float | None = None,
    ) -> dict[str, Any]:
        """Stop the tick loop; with `drain_timeout_sec`, also wait for a dispatched workflow."""
        scheduler_stopped = False
        with self._lock:
            scheduler = self._scheduler
        if stop_scheduler and scheduler is not None and scheduler.is_running():
            scheduler_stopped = bool(scheduler.stop().get("ok"))
        workflow_in_flight = False
        if scheduler is not None and drain_timeout_sec is not None:
            scheduler.join_active(timeout=max(0.0, drain_timeout_sec))
            workflow_in_flight = scheduler.task().running
            if workflow_in_flight:
                logger.warning("Scheduled workflow still running after {}s drain", drain_timeout_sec)

        with self._lock:
            self._started = False
            self._last_stop_source = source
        logger.info("Runtime stopped by {}", source)
        return {
            "ok": True,
            "source": "runtime_service",
            "stopped": True,
            "stop_source": source,
            "scheduler_stopped": scheduler_stopped,
            "workflow_in_flight": workflow_in_flight,
        }

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "source": "runtime_service",
            "runtime": {
                "started": self._started,
                "last_start_source": self._last_start_source,
                "last_stop_source": self._last_stop_source,
            },
            "scheduler": self.scheduler_status(),
        }

    def _run_scheduled_workflow(self) -> dict[str, Any]:
        # Scheduled runs wait out a manual run instead of being dropped.
        with self._workflow_lock:
            return self.coordinator.run_full_workflow().to_dict()

    def run_full_workflow_once(self) -> dict[str, Any]:
        if not self._workflow_lock.acquire(blocking=False):
            logger.warning("Workflow already running; skipping this trigger")
            return {"ok": False, "reason": "workflow_running", "error": "A workflow run is already in progress."}
        try:
            return self.coordinator.run_full_workflow().to_dict()
        finally:
            self._workflow_lock.release()

    def scheduler_status(self) -> dict[str, Any]:
        return self.scheduler.status()

    def scheduler_start(self) -> dict[str, Any]:
        return self.scheduler.start()

    def scheduler_stop(self) -> dict[str, Any]:
        return self.scheduler.stop()

    def get_profile(self, *, cid: str) -> dict[str, Any]:
        return self.coordinator.get_profile(cid)

    def generate_profile(self, *, cid: str, force: bool = False) -> dict[str, Any]:
        return self.coordinator.generate_profile_for_user(cid, force=force)

    def generate_all_profiles(self) -> dict[str, Any]:
        return self.coordinator.generate_profiles_for_all()

    def get_recommendations(self, *, cid: str) -> dict[str, Any]:
        return self.coordinator.get_recommendations(cid)

    def generate_recommendations(self, *, cid: str) -> dict[str, Any]:
        return self.coordinator.generate_recommendations_for_user(cid)

    def refresh_recommendations(self, *, cid: str) -> dict[str, Any]:
        return self.coordinator.refresh_user_recommendations(cid)

    def generate_all_recommendations(self) -> dict[str, Any]:
        return self.coordinator.generate_recommendations_for_all()

    def push_user(self, *, cid: str) -> dict[str, Any]:
        return self.coordinator.push_for_user(cid)

    def push_all(self) -> dict[str, Any]:
        return self.coordinator.push_everyone()


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE

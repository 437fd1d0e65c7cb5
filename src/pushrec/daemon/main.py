"""Daemon entrypoint: scheduler + local API, or a single workflow run."""

from __future__ import annotations

import argparse
import json
import signal
from threading import Event
from typing import Any

from loguru import logger

from src.pushrec.runtime.service import get_runtime_service

DEFAULT_DRAIN_SEC = 30.0


def _install_signal_handlers(stop_event: Event) -> None:
    def _handler(signum, _frame) -> None:  # type: ignore[no-untyped-def]
        logger.info("Received signal {}, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _shutdown(runtime: Any, drain_sec: float) -> dict[str, Any]:
    """Stop the scheduler and give a dispatched workflow `drain_sec` to finish."""
    out = runtime.stop(source="daemon", drain_timeout_sec=drain_sec)
    if out.get("workflow_in_flight"):
        logger.warning("Exiting with a scheduled workflow still in flight")
    return out


def run_once() -> int:
    runtime = get_runtime_service()
    runtime.start(start_scheduler_if_enabled=False, source="daemon_once")
    try:
        result = runtime.run_full_workflow_once()
    finally:
        runtime.stop(source="daemon_once")
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result.get("ok") else 1


def run_daemon(
    *,
    with_app: bool = True,
    host: str = "127.0.0.1",
    port: int = 8000,
    tick_sec: float = 0.5,
    drain_sec: float = DEFAULT_DRAIN_SEC,
    stop_event: Event | None = None,
) -> int:
    runtime = get_runtime_service()
    runtime.start(start_scheduler_if_enabled=True, source="daemon")

    if with_app:
        try:
            import uvicorn
        except ImportError as exc:  # pragma: no cover - dependency error guard
            runtime.stop(source="daemon")
            raise RuntimeError("uvicorn is required for daemon app mode") from exc

        try:
            uvicorn.run("app.main:app", host=host, port=port, reload=False)
        finally:
            _shutdown(runtime, drain_sec)
        return 0

    signal_event = stop_event or Event()
    _install_signal_handlers(signal_event)
    try:
        while not signal_event.is_set():
            signal_event.wait(timeout=max(0.05, tick_sec))
    finally:
        _shutdown(runtime, drain_sec)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the push recommendation daemon.")
    parser.add_argument("--host", default="127.0.0.1", help="Local bind host for app mode.")
    parser.add_argument("--port", type=int, default=8000, help="Local bind port for app mode.")
    parser.add_argument(
        "--no-app",
        action="store_true",
        help="Run the scheduler loop without launching the local API server.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the full profile/recommendation/push workflow once and exit.",
    )
    parser.add_argument(
        "--tick-sec",
        type=float,
        default=0.5,
        help="Idle loop poll interval when running without app.",
    )
    parser.add_argument(
        "--drain-sec",
        type=float,
        default=DEFAULT_DRAIN_SEC,
        help="On shutdown, wait this long for a scheduled workflow already in progress.",
    )
    args = parser.parse_args(argv)
    if args.once:
        return run_once()
    return run_daemon(
        with_app=not args.no_app,
        host=args.host,
        port=args.port,
        tick_sec=max(0.05, float(args.tick_sec)),
        drain_sec=max(0.0, float(args.drain_sec)),
    )


if __name__ == "__main__":
    raise SystemExit(main())

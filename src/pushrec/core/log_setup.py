"""Loguru sink configuration driven by the `log` config block."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from .config_loader import _repo_root, get_section, non_empty_str

_VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
_VALID_OUTPUTS = {"stdout", "file", "both"}


@dataclass(slots=True)
class LogSettings:
    level: str = "INFO"
    output: str = "stdout"
    file_path: str = "logs/pushrec.log"
    rotation: str = "50 MB"
    retention: str = "14 days"
    serialize: bool = False


def log_settings(config: dict[str, Any] | None = None) -> LogSettings:
    section = get_section("log", config)
    level = non_empty_str(section.get("level"), "INFO").upper()
    output = non_empty_str(section.get("output"), "stdout").lower()
    return LogSettings(
        level=level if level in _VALID_LEVELS else "INFO",
        output=output if output in _VALID_OUTPUTS else "stdout",
        file_path=non_empty_str(section.get("file_path"), "logs/pushrec.log"),
        rotation=non_empty_str(section.get("rotation"), "50 MB"),
        retention=non_empty_str(section.get("retention"), "14 days"),
        serialize=bool(section.get("serialize", False)),
    )


def configure_logging(settings: LogSettings | None = None) -> list[int]:
    """Replace loguru sinks with the configured ones; returns the new sink ids."""
    cfg = settings or log_settings()
    logger.remove()
    sink_ids: list[int] = []
    if cfg.output in {"stdout", "both"}:
        sink_ids.append(logger.add(sys.stdout, level=cfg.level, serialize=cfg.serialize))
    if cfg.output in {"file", "both"}:
        path = Path(cfg.file_path)
        if not path.is_absolute():
            path = _repo_root() / path
        path.parent.mkdir(parents=True, exist_ok=True)
        sink_ids.append(
            logger.add(
                str(path),
                level=cfg.level,
                rotation=cfg.rotation,
                retention=cfg.retention,
                serialize=cfg.serialize,
                enqueue=True,
            )
        )
    logger.debug("Logging configured: level={} output={}", cfg.level, cfg.output)
    return sink_ids

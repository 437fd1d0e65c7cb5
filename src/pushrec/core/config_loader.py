"""Load and query pushrec JSON config files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("config/config.json")
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}

# Secrets may live outside the config file; env values win when set.
SECRET_ENV_VARS: dict[tuple[str, str], tuple[str, ...]] = {
    ("rag", "api_key"): ("RAG_API_KEY",),
    ("llm", "api_key"): ("LLM_API_KEY", "SILICONFLOW_API_KEY"),
    ("push", "api_key"): ("EXTERNAL_API_KEY",),
}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `PUSHREC_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("PUSHREC_CONFIG_PATH")
    candidate = Path(raw_path) if raw_path else DEFAULT_CONFIG_PATH
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def load_config_or_empty() -> dict[str, Any]:
    """Return the active config, or `{}` when it is missing or unreadable."""
    try:
        return load_config()
    except (FileNotFoundError, ValueError):
        return {}


def get_section(name: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return one top-level config block with secret env overrides applied."""
    payload = config if config is not None else load_config_or_empty()
    raw = payload.get(name) if isinstance(payload, dict) else None
    section = dict(raw) if isinstance(raw, dict) else {}
    for (section_name, key), env_names in SECRET_ENV_VARS.items():
        if section_name != name:
            continue
        for env_name in env_names:
            value = os.getenv(env_name)
            if value:
                section[key] = value
                break
    return section


def positive_int(value: Any, default: int) -> int:
    return int(value) if isinstance(value, int) and not isinstance(value, bool) and value > 0 else default


def positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value > 0 else default


def non_empty_str(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default

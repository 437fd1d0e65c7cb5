"""OpenAI-compatible chat-completions client used for profile inference."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass, field
from time import sleep
from typing import Any
from urllib.error import HTTPError, URLError

from loguru import logger

from src.pushrec.core.config_loader import get_section, non_empty_str, positive_int

from .http_json import post_json

DEFAULT_RETRY_BACKOFF_SCHEDULE_SEC = (1.0, 3.0, 5.0)
RETRYABLE_HTTP_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(slots=True)
class LlmSettings:
    base_url: str = "https://api.siliconflow.cn"
    api_key: str = ""
    model: str = "Qwen/Qwen2.5-7B-Instruct"
    max_token_length: int = 8000
    max_concurrency: int = 5
    timeout_sec: int = 60
    retry_backoff_schedule_sec: list[float] = field(
        default_factory=lambda: list(DEFAULT_RETRY_BACKOFF_SCHEDULE_SEC)
    )

    @property
    def chat_url(self) -> str:
        return self.base_url.rstrip("/") + "/v1/chat/completions"


def _coerce_retry_schedule_sec(raw: Any) -> list[float]:
    if not isinstance(raw, list):
        return [float(val) for val in DEFAULT_RETRY_BACKOFF_SCHEDULE_SEC]
    out = [float(val) for val in raw if isinstance(val, (int, float)) and float(val) >= 0]
    return out or [float(val) for val in DEFAULT_RETRY_BACKOFF_SCHEDULE_SEC]


def llm_settings(config: dict[str, Any] | None = None) -> LlmSettings:
    section = get_section("llm", config)
    api_key = section.get("api_key")
    return LlmSettings(
        base_url=non_empty_str(section.get("base_url"), "https://api.siliconflow.cn"),
        api_key=api_key.strip() if isinstance(api_key, str) else "",
        model=non_empty_str(section.get("model"), "Qwen/Qwen2.5-7B-Instruct"),
        max_token_length=positive_int(section.get("max_token_length"), 8000),
        max_concurrency=positive_int(section.get("max_concurrency"), 5),
        timeout_sec=positive_int(section.get("timeout_sec"), 60),
        retry_backoff_schedule_sec=_coerce_retry_schedule_sec(section.get("retry_backoff_schedule_sec")),
    )


def _http_code_from_text(text: str) -> int | None:
    match = re.search(r"\bHTTP\s+(\d{3})\b", text)
    return int(match.group(1)) if match else None


def is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, HTTPError):
        return int(exc.code) in RETRYABLE_HTTP_CODES
    if isinstance(exc, URLError):
        reason = getattr(exc, "reason", None)
        if isinstance(reason, (socket.gaierror, TimeoutError, OSError)):
            return True
        if isinstance(reason, str):
            low = reason.lower()
            return "timed out" in low or "temporary failure" in low or "name resolution" in low
        return True
    if isinstance(exc, TimeoutError):
        return True
    code = _http_code_from_text(str(exc))
    if code is not None:
        return code in RETRYABLE_HTTP_CODES
    cause = exc.__cause__
    return isinstance(cause, Exception) and is_retryable_error(cause)


class LlmClient:
    """Single-prompt completion calls with transient-error retry."""

    def __init__(self, settings: LlmSettings | None = None) -> None:
        self._settings = settings or llm_settings()

    @property
    def settings(self) -> LlmSettings:
        return self._settings

    def _complete_once(self, prompt: str) -> str:
        _, body = post_json(
            self._settings.chat_url,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
            payload={"model": self._settings.model, "messages": [{"role": "user", "content": prompt}]},
            timeout_sec=self._settings.timeout_sec,
        )
        choices = body.get("choices") if isinstance(body, dict) else None
        first = choices[0] if isinstance(choices, list) and choices else None
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("LLM response contained no message content.")
        return content

    def complete(self, prompt: str) -> str:
        if not self._settings.api_key:
            raise RuntimeError("LLM API key missing.")
        schedule = self._settings.retry_backoff_schedule_sec
        attempts = len(schedule) + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._complete_once(prompt)
            except Exception as exc:
                if attempt >= attempts or not is_retryable_error(exc):
                    raise
                delay = schedule[min(attempt - 1, len(schedule) - 1)]
                logger.warning("LLM call attempt {} failed ({}), retrying in {}s", attempt, exc, delay)
                if delay > 0:
                    sleep(delay)
        raise RuntimeError("LLM retry loop exited unexpectedly.")

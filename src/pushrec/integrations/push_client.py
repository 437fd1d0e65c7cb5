"""Outbound tag-push client with timestamp-signed headers."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from src.pushrec.core.config_loader import get_section, positive_float
from src.pushrec.core.models import RecommendationItem

from .http_json import post_json


@dataclass(slots=True)
class PushSettings:
    url: str = ""
    api_key: str = ""
    timeout_sec: float = 10.0


def push_settings(config: dict[str, Any] | None = None) -> PushSettings:
    section = get_section("push", config)
    url = section.get("url")
    api_key = section.get("api_key")
    return PushSettings(
        url=url.strip() if isinstance(url, str) else "",
        api_key=api_key.strip() if isinstance(api_key, str) else "",
        timeout_sec=positive_float(section.get("timeout_sec"), 10.0),
    )


def authorization_header(api_key: str, timestamp_ms: str) -> str:
    """md5 hex of the api key followed by the last four digits of the timestamp."""
    return hashlib.md5((api_key + timestamp_ms[-4:]).encode("utf-8")).hexdigest()


def build_push_payload(cid: str | None, items: list[RecommendationItem]) -> dict[str, Any]:
    payload: dict[str, Any] = {"tags": [{"title": item.title, "content": item.content} for item in items]}
    if cid:
        payload["cid"] = cid
    return payload


class PushClient:
    def __init__(self, settings: PushSettings | None = None) -> None:
        self._settings = settings or push_settings()

    @property
    def settings(self) -> PushSettings:
        return self._settings

    def _headers(self) -> dict[str, str]:
        timestamp_ms = str(int(time.time() * 1000))
        return {
            "timestamp": timestamp_ms,
            "apiKey": self._settings.api_key,
            "Authorization": authorization_header(self._settings.api_key, timestamp_ms),
        }

    def push(self, cid: str | None, items: list[RecommendationItem]) -> bool:
        """Deliver one push; `cid=None` broadcasts. Returns delivery success."""
        target = cid or "<broadcast>"
        if not self._settings.url:
            logger.error("Push url is not configured; dropping push for {}", target)
            return False
        if not self._settings.api_key:
            logger.warning("Push api key is empty; request for {} will likely be rejected", target)

        try:
            status, body = post_json(
                self._settings.url,
                headers=self._headers(),
                payload=build_push_payload(cid, items),
                timeout_sec=self._settings.timeout_sec,
            )
        except (RuntimeError, ValueError, OSError) as exc:
            logger.error("Push request for {} failed: {}", target, exc)
            return False

        if status != 200:
            logger.error("Push for {} returned HTTP {}", target, status)
            return False
        if not isinstance(body, dict) or body.get("success") is not True or body.get("errCode") != 200:
            err_code = body.get("errCode") if isinstance(body, dict) else None
            msg = body.get("msg") if isinstance(body, dict) else None
            logger.error("Push for {} rejected: errCode={} msg={}", target, err_code, msg)
            return False

        logger.info("Pushed {} items to {}", len(items), target)
        return True

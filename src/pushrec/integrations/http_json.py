"""Small urllib JSON POST helper shared by outbound clients."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, urlopen


def _error_detail(body: str, fallback: str) -> str:
    detail = body.strip() or fallback
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return detail
    if isinstance(parsed, dict):
        err = parsed.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("code") or detail)
        if isinstance(err, str):
            return err
        if isinstance(parsed.get("message"), str):
            return parsed["message"]
    return detail


def post_json(
    url: str,
    *,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout_sec: float,
) -> tuple[int, Any]:
    """POST `payload` and return `(status, parsed_body)`.

    Non-2xx responses raise `RuntimeError("HTTP <code>: <detail>")`.
    """
    req = Request(
        url,
        data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urlopen(req, timeout=timeout_sec) as response:
            status = int(getattr(response, "status", 200))
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"HTTP {exc.code}: {_error_detail(body, str(exc))}") from exc

    if not body.strip():
        return status, None
    try:
        return status, json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Response from {url} is not valid JSON.") from exc

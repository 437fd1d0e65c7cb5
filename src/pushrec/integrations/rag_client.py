"""Knowledge-base retrieval client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from src.pushrec.core.config_loader import get_section, positive_float, positive_int
from src.pushrec.core.models import RecommendationItem
from src.pushrec.core.text_utils import remove_markdown_headers

from .http_json import post_json

RAG_SOURCE = "rag"


@dataclass(slots=True)
class RagSettings:
    url: str = ""
    api_key: str = ""
    kb_ids: list[str] = field(default_factory=list)
    top_k: int = 5
    threshold: float = 0.3
    timeout_sec: float = 15.0


def rag_settings(config: dict[str, Any] | None = None) -> RagSettings:
    section = get_section("rag", config)
    url = section.get("url")
    api_key = section.get("api_key")
    kb_ids = section.get("kb_ids")
    threshold = section.get("threshold")
    return RagSettings(
        url=url.strip() if isinstance(url, str) else "",
        api_key=api_key.strip() if isinstance(api_key, str) else "",
        kb_ids=[str(v) for v in kb_ids if isinstance(v, (str, int))] if isinstance(kb_ids, list) else [],
        top_k=positive_int(section.get("top_k"), 5),
        threshold=float(threshold) if isinstance(threshold, (int, float)) and 0 <= threshold <= 1 else 0.3,
        timeout_sec=positive_float(section.get("timeout_sec"), 15.0),
    )


def parse_rag_results(body: Any) -> list[RecommendationItem]:
    """Convert a `{code, message, data.results}` body into recommendation items."""
    if not isinstance(body, dict):
        raise ValueError("RAG response must be a JSON object.")
    code = body.get("code")
    if code != 0:
        raise RuntimeError(f"RAG error {code}: {body.get('message') or 'unknown error'}")

    data = body.get("data")
    results = data.get("results") if isinstance(data, dict) else None
    items: list[RecommendationItem] = []
    for row in results if isinstance(results, list) else []:
        if not isinstance(row, dict):
            continue
        title = remove_markdown_headers(str(row.get("title") or ""))
        content = remove_markdown_headers(str(row.get("content") or ""))
        if not title or not content:
            logger.debug("Skipping empty RAG result document_id={}", row.get("document_id"))
            continue
        score = row.get("score")
        doc_id = row.get("document_id")
        items.append(
            RecommendationItem(
                source=RAG_SOURCE,
                title=title,
                content=content,
                ref_id=str(doc_id) if doc_id not in (None, "") else None,
                score=float(score) if isinstance(score, (int, float)) else None,
            )
        )
    return items


class RagClient:
    def __init__(self, settings: RagSettings | None = None) -> None:
        self._settings = settings or rag_settings()

    @property
    def settings(self) -> RagSettings:
        return self._settings

    def search(self, query: str, top_k: int | None = None) -> list[RecommendationItem]:
        if not self._settings.url:
            raise RuntimeError("RAG url is not configured.")
        payload = {
            "knowledge_ids": self._settings.kb_ids,
            "query": query,
            "threshold": self._settings.threshold,
            "top_k": top_k if isinstance(top_k, int) and top_k > 0 else self._settings.top_k,
        }
        _, body = post_json(
            self._settings.url,
            headers={"Accept": "application/json", "Authorization": f"Bearer {self._settings.api_key}"},
            payload=payload,
            timeout_sec=self._settings.timeout_sec,
        )
        items = parse_rag_results(body)
        logger.debug("RAG query '{}' returned {} items", query, len(items))
        return items

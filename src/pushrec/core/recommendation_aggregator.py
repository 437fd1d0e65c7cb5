"""Deduplicate, rank and bound recommendation candidates."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from .models import Profile, RecommendationItem

KNOWLEDGE_BASE_SOURCE = "knowledge_base"

SearchFn = Callable[[str, int], list[RecommendationItem]]


def _score(item: RecommendationItem) -> float:
    return item.score if item.score is not None else 0.0


def aggregate(
    items_a: list[RecommendationItem],
    items_b: list[RecommendationItem],
    top_n: int,
) -> list[RecommendationItem]:
    """Merge two candidate lists keyed by (source, ref_id, title), best score wins."""
    best: dict[tuple[str, str, str], RecommendationItem] = {}
    for item in [*items_a, *items_b]:
        key = (item.source, item.ref_id or "", item.title)
        current = best.get(key)
        if current is None or _score(item) > _score(current):
            best[key] = item
    ranked = sorted(best.values(), key=_score, reverse=True)
    if top_n > 0:
        return ranked[:top_n]
    return ranked


def search_by_keywords(keywords: list[str], top_k: int, search: SearchFn) -> list[RecommendationItem]:
    """Accumulate knowledge-base hits keyword by keyword until `top_k` is reached.

    Keywords are walked in the given order; blank and repeated keywords are
    skipped, a failing search only drops that keyword, and results are
    deduplicated by (ref_id, title) across the whole call.
    """
    results: list[RecommendationItem] = []
    if top_k <= 0:
        return results

    seen_keywords: set[str] = set()
    seen_items: set[tuple[str, str]] = set()
    for raw_keyword in keywords:
        keyword = raw_keyword.strip() if isinstance(raw_keyword, str) else ""
        if not keyword or keyword in seen_keywords:
            continue
        seen_keywords.add(keyword)

        try:
            hits = search(keyword, top_k)
        except Exception as exc:
            logger.warning("Knowledge base search failed for keyword '{}': {}", keyword, exc)
            continue

        for hit in hits:
            key = (hit.ref_id or "", hit.title)
            if key in seen_items:
                continue
            seen_items.add(key)
            hit.source = KNOWLEDGE_BASE_SOURCE
            hit.search_keyword = keyword
            results.append(hit)

        logger.debug("Keyword '{}' returned {} hits, accumulated {}", keyword, len(hits), len(results))
        if len(results) >= top_k:
            break

    return results[:top_k]


def extract_profile_keywords(profile: Profile) -> list[str]:
    """Search terms in weighted-keyword order, falling back to interests."""
    if profile.weighted_keywords:
        ordered = sorted(profile.weighted_keywords, key=lambda item: item.weight, reverse=True)
        return [item.keyword for item in ordered]
    return list(profile.interests)

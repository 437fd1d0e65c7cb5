"""Merge an existing profile with a freshly inferred one without losing signal."""

from __future__ import annotations

from datetime import datetime

from .models import Profile, WeightedKeyword, higher_activity_level, utc_now

MIN_SYNTHESIZED_WEIGHT = 0.1


def decay_weight(index: int) -> float:
    """Position-based weight for interests promoted to keywords: 0.9, 0.8, ... floored at 0.1."""
    return max(MIN_SYNTHESIZED_WEIGHT, round(0.9 - 0.1 * index, 6))


def keywords_from_interests(interests: list[str]) -> list[WeightedKeyword]:
    return [WeightedKeyword(keyword=interest, weight=decay_weight(i)) for i, interest in enumerate(interests)]


def interests_from_keywords(weighted: list[WeightedKeyword]) -> list[str]:
    ordered = sorted(weighted, key=lambda item: item.weight, reverse=True)
    return [item.keyword for item in ordered]


def _union_interests(old: list[str], new: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in [*old, *new]:
        if not value.strip() or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _union_keywords(old: list[WeightedKeyword], new: list[WeightedKeyword]) -> list[WeightedKeyword]:
    best: dict[str, float] = {}
    for item in [*old, *new]:
        current = best.get(item.keyword)
        if current is None or item.weight > current:
            best[item.keyword] = item.weight
    merged = [WeightedKeyword(keyword=k, weight=w) for k, w in best.items()]
    merged.sort(key=lambda item: item.weight, reverse=True)
    return merged


def backfill_consistency(interests: list[str], weighted: list[WeightedKeyword]) -> tuple[list[str], list[WeightedKeyword]]:
    """Synthesize whichever of interests / weighted keywords is empty from the other."""
    if interests and not weighted:
        return interests, keywords_from_interests(interests)
    if weighted and not interests:
        return interests_from_keywords(weighted), weighted
    return interests, weighted


def merge_profiles(old: Profile | None, new: Profile, *, now: datetime | None = None) -> Profile:
    """Combine `old` and `new`; pure, never downgrades activity or drops keywords."""
    if old is None:
        return new

    interests = _union_interests(old.interests, new.interests)
    weighted = _union_keywords(old.weighted_keywords, new.weighted_keywords)
    interests, weighted = backfill_consistency(interests, weighted)

    extra = dict(old.extra)
    extra.update(new.extra)

    return Profile(
        cid=new.cid or old.cid,
        interests=interests,
        weighted_keywords=weighted,
        activity_level=higher_activity_level(old.activity_level, new.activity_level),
        user_type=new.user_type if new.user_type else old.user_type,
        extra=extra,
        updated_at=now or utc_now(),
    )

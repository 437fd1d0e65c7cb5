"""Core schemas shared by the scheduler, pipeline and storage layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

ActivityLevel = Literal["minimal", "low", "medium", "high"]
RecommendationSource = Literal["group_summary", "rag", "knowledge_base"]

ACTIVITY_ORDER: dict[str, int] = {"minimal": 0, "low": 1, "medium": 2, "high": 3}
DEFAULT_ACTIVITY_LEVEL = "low"

# Keys owned by typed Profile fields; everything else lands in `extra`.
PROFILE_FIELDS = frozenset({"cid", "interests", "weighted_keywords", "activity_level", "user_type", "updated_at"})


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def parse_iso(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def normalize_activity_level(value: Any) -> str:
    if isinstance(value, str):
        low = value.strip().lower()
        if low in ACTIVITY_ORDER:
            return low
    return DEFAULT_ACTIVITY_LEVEL


def higher_activity_level(left: str, right: str) -> str:
    a = normalize_activity_level(left)
    b = normalize_activity_level(right)
    return a if ACTIVITY_ORDER[a] >= ACTIVITY_ORDER[b] else b


def _coerce_weight(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, min(1.0, float(value)))


class TaskKind(str, Enum):
    PROFILE_GENERATION_WORKFLOW = "profile_generation_workflow"


class ItemOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"


@dataclass(slots=True)
class WeightedKeyword:
    keyword: str
    weight: float

    def to_dict(self) -> dict[str, Any]:
        return {"keyword": self.keyword, "weight": self.weight}

    @classmethod
    def from_dict(cls, payload: Any) -> "WeightedKeyword | None":
        if not isinstance(payload, dict):
            return None
        keyword = payload.get("keyword")
        if not isinstance(keyword, str) or not keyword.strip():
            return None
        return cls(keyword=keyword.strip(), weight=_coerce_weight(payload.get("weight")))


@dataclass(slots=True)
class Profile:
    """Inferred interest summary for one user."""

    cid: str
    interests: list[str] = field(default_factory=list)
    weighted_keywords: list[WeightedKeyword] = field(default_factory=list)
    activity_level: str = DEFAULT_ACTIVITY_LEVEL
    user_type: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @property
    def keywords(self) -> list[str]:
        return [item.keyword for item in self.weighted_keywords]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "interests": list(self.interests),
                "weighted_keywords": [item.to_dict() for item in self.weighted_keywords],
                "activity_level": self.activity_level,
                "user_type": self.user_type,
                "updated_at": iso(self.updated_at) if self.updated_at else None,
            }
        )
        return payload

    @classmethod
    def from_dict(cls, cid: str, payload: dict[str, Any]) -> "Profile":
        raw_interests = payload.get("interests")
        interests = [v for v in raw_interests if isinstance(v, str)] if isinstance(raw_interests, list) else []

        weighted: list[WeightedKeyword] = []
        raw_weighted = payload.get("weighted_keywords")
        if isinstance(raw_weighted, list):
            for entry in raw_weighted:
                parsed = WeightedKeyword.from_dict(entry)
                if parsed is not None:
                    weighted.append(parsed)

        user_type = payload.get("user_type")
        return cls(
            cid=cid,
            interests=interests,
            weighted_keywords=weighted,
            activity_level=normalize_activity_level(payload.get("activity_level")),
            user_type=user_type.strip() if isinstance(user_type, str) else "",
            extra={k: v for k, v in payload.items() if k not in PROFILE_FIELDS},
            updated_at=parse_iso(payload.get("updated_at")),
        )


@dataclass(slots=True)
class RecommendationItem:
    source: str
    title: str
    content: str
    ref_id: str | None = None
    score: float | None = None
    search_keyword: str | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"source": self.source, "title": self.title, "content": self.content}
        if self.ref_id is not None:
            payload["ref_id"] = self.ref_id
        if self.score is not None:
            payload["score"] = self.score
        if self.search_keyword is not None:
            payload["search_keyword"] = self.search_keyword
        if self.url is not None:
            payload["url"] = self.url
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> "RecommendationItem | None":
        if not isinstance(payload, dict):
            return None
        score = payload.get("score")
        ref_id = payload.get("ref_id")
        keyword = payload.get("search_keyword")
        url = payload.get("url")
        return cls(
            source=str(payload.get("source") or ""),
            title=str(payload.get("title") or ""),
            content=str(payload.get("content") or ""),
            ref_id=str(ref_id) if ref_id not in (None, "") else None,
            score=float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
            search_keyword=keyword if isinstance(keyword, str) and keyword else None,
            url=url if isinstance(url, str) and url else None,
        )


@dataclass(slots=True)
class RunStats:
    """Per-stage counters for one bounded fan-out."""

    stage: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }

    def summary(self) -> str:
        return (
            f"{self.stage}: processed={self.processed} succeeded={self.succeeded} "
            f"failed={self.failed} skipped={self.skipped}"
        )


@dataclass(slots=True)
class TaskDescriptor:
    kind: TaskKind
    description: str
    last_run: datetime | None = None
    next_run: datetime | None = None
    running: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "last_run": iso(self.last_run) if self.last_run else None,
            "next_run": iso(self.next_run) if self.next_run else None,
            "running": self.running,
        }


@dataclass(slots=True)
class SourceDataBundle:
    """Raw per-user signals gathered from community posts and group chats."""

    cid: str
    community_posts: list[str] = field(default_factory=list)
    group_messages: list[str] = field(default_factory=list)
    active_groups: list[str] = field(default_factory=list)
    group_interests: list[str] = field(default_factory=list)

    @property
    def has_community_data(self) -> bool:
        return bool(self.community_posts)

    @property
    def has_group_data(self) -> bool:
        return bool(self.group_messages) or bool(self.active_groups)

    @property
    def is_empty(self) -> bool:
        return not self.has_community_data and not self.has_group_data

"""Collaborator contract consumed by the pipeline, plus the sqlite/HTTP wiring."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from loguru import logger

from src.pushrec.integrations.llm_client import LlmClient, llm_settings
from src.pushrec.integrations.push_client import PushClient, push_settings
from src.pushrec.integrations.rag_client import RagClient, rag_settings

from .config_loader import get_section, non_empty_str
from .data_store import DEFAULT_DB_PATH, DataStore
from .models import Profile, RecommendationItem, SourceDataBundle
from .profile_inference import ProfileInferer

GROUP_SUMMARY_SOURCE = "group_summary"

# Topics recognised in group chat text when summarising a user's group interests.
GROUP_TOPIC_KEYWORDS = (
    "区块链", "无链", "dw20", "质押", "交易", "投资",
    "群聊", "钱包", "注册", "奖励", "推荐", "上所",
    "技术", "讨论", "问题", "解答", "官方群", "新手群",
)


class PipelineBackend(Protocol):
    def list_candidates(self, lookback_days: int) -> list[str]: ...

    def has_newer_source_data_than(self, cid: str, since: datetime) -> bool: ...

    def compute_raw_profile_signals(
        self, cid: str, lookback_days: int, since: datetime | None = None
    ) -> SourceDataBundle: ...

    def infer_profile(self, bundle: SourceDataBundle) -> Profile: ...

    def load_profile(self, cid: str) -> Profile | None: ...

    def save_profile(self, profile: Profile) -> None: ...

    def search_knowledge_base(self, keyword: str, top_k: int) -> list[RecommendationItem]: ...

    def load_cached_recommendations(self, cid: str) -> list[RecommendationItem] | None: ...

    def save_recommendations(self, cid: str, items: list[RecommendationItem], profile: Profile) -> None: ...

    def list_users_with_profiles(self) -> list[str]: ...

    def list_cached_recommendations(self) -> dict[str, list[RecommendationItem]]: ...

    def push_to_recipient(self, cid: str | None, items: list[RecommendationItem]) -> bool: ...

    def get_broadcast_fallback_content(self) -> list[RecommendationItem]: ...


def extract_group_topics(messages: list[str], titles: list[str]) -> list[str]:
    """Ordered, de-duplicated topics mentioned across a user's group messages."""
    seen: set[str] = set()
    topics: list[str] = []
    for idx, message in enumerate(messages):
        title = titles[idx] if idx < len(titles) else ""
        text = f"{message} {title}".lower()
        for topic in GROUP_TOPIC_KEYWORDS:
            if topic in text and topic not in seen:
                seen.add(topic)
                topics.append(topic)
    return topics


class DefaultBackend:
    """Backend over the local sqlite store and the RAG, LLM and push HTTP services."""

    def __init__(
        self,
        store: DataStore,
        *,
        rag: RagClient,
        push: PushClient,
        inferer: ProfileInferer,
    ) -> None:
        self._store = store
        self._rag = rag
        self._push = push
        self._inferer = inferer

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "DefaultBackend":
        llm_cfg = llm_settings(config)
        client = LlmClient(llm_cfg) if llm_cfg.api_key else None
        if client is None:
            logger.warning("LLM api key not configured; profiles will use the keyword heuristic")
        db_path = non_empty_str(get_section("store", config).get("db_path"), DEFAULT_DB_PATH)
        return cls(
            DataStore(db_path=db_path),
            rag=RagClient(rag_settings(config)),
            push=PushClient(push_settings(config)),
            inferer=ProfileInferer(
                client,
                max_token_length=llm_cfg.max_token_length,
                max_concurrency=llm_cfg.max_concurrency,
            ),
        )

    @property
    def store(self) -> DataStore:
        return self._store

    @property
    def rag_top_k(self) -> int:
        return self._rag.settings.top_k

    def list_candidates(self, lookback_days: int) -> list[str]:
        return self._store.list_candidates(lookback_days)

    def has_newer_source_data_than(self, cid: str, since: datetime) -> bool:
        return self._store.has_newer_data_than(cid, since)

    def compute_raw_profile_signals(
        self, cid: str, lookback_days: int, since: datetime | None = None
    ) -> SourceDataBundle:
        rows = self._store.load_source_rows(cid, lookback_days, since=since)
        return SourceDataBundle(
            cid=cid,
            community_posts=rows.posts,
            group_messages=rows.messages,
            active_groups=rows.groups,
            group_interests=extract_group_topics(rows.messages, rows.titles),
        )

    def infer_profile(self, bundle: SourceDataBundle) -> Profile:
        return self._inferer.infer(bundle)

    def load_profile(self, cid: str) -> Profile | None:
        return self._store.load_profile(cid)

    def save_profile(self, profile: Profile) -> None:
        self._store.save_profile(profile)

    def search_knowledge_base(self, keyword: str, top_k: int) -> list[RecommendationItem]:
        return self._rag.search(keyword, top_k)

    def load_cached_recommendations(self, cid: str) -> list[RecommendationItem] | None:
        return self._store.load_recommendations(cid)

    def save_recommendations(self, cid: str, items: list[RecommendationItem], profile: Profile) -> None:
        self._store.save_recommendations(cid, items, profile)

    def list_users_with_profiles(self) -> list[str]:
        return self._store.list_users_with_profiles()

    def list_cached_recommendations(self) -> dict[str, list[RecommendationItem]]:
        return self._store.list_cached_recommendations()

    def push_to_recipient(self, cid: str | None, items: list[RecommendationItem]) -> bool:
        ok = self._push.push(cid, items)
        if ok and cid:
            self._store.mark_pushed(cid)
        return ok

    def get_broadcast_fallback_content(self) -> list[RecommendationItem]:
        topics = self._store.hot_topics_for_day()
        return [
            RecommendationItem(source=GROUP_SUMMARY_SOURCE, title=topic["title"], content=topic["content"], score=1.0)
            for topic in topics
            if topic["title"] or topic["content"]
        ]

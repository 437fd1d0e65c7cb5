"""Profile inference from raw user signals: LLM first, heuristic fallback."""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

from loguru import logger

from .models import (
    Profile,
    SourceDataBundle,
    WeightedKeyword,
    higher_activity_level,
    utc_now,
)
from .profile_merge import backfill_consistency
from .text_utils import dedupe_strings, extract_json_object, split_text_by_tokens

DEFAULT_USER_TYPE = "新手"
UNDETERMINED_USER_TYPE = "无法确定"

# Topic vocabulary for the frequency heuristic.
HEURISTIC_KEYWORDS = (
    "区块链", "人工智能", "投资", "教育", "技术", "金融",
    "加密货币", "DW20", "无链", "数字货币", "创新",
    "比特币", "交易", "钱包", "质押", "挖矿", "去中心化",
    "智能合约", "NFT", "元宇宙", "Web3", "DAO",
)

STARTER_INTERESTS = ("区块链", "数字货币", "无链生态")
STARTER_KEYWORDS = (
    ("区块链入门", 0.9),
    ("数字货币基础", 0.85),
    ("无链生态", 0.8),
    ("DW20", 0.75),
    ("钱包使用", 0.7),
)

_PROMPT_HEADER = """请分析用户 {cid} 的行为数据，生成用户画像标签。

用户数据来源：
- 社区发帖数据：{post_count} 条
- 群聊消息数据：{message_count} 条
- 活跃群组：{groups}
- 群组兴趣：{group_interests}
"""

_PROMPT_FOOTER = """
请基于以上数据分析用户的兴趣偏好，生成便于知识库搜索的关键词标签，并为每个关键词分配 0-1 之间的权重，按权重从高到低排序。

请以JSON格式返回分析结果：
{
  "interests": ["兴趣1", "兴趣2"],
  "weighted_keywords": [{"keyword": "关键词1", "weight": 0.95}],
  "activity_level": "high/medium/low",
  "user_type": "投资者/技术爱好者/新手"
}"""


class CompletionClient(Protocol):
    def complete(self, prompt: str) -> str: ...


def determine_activity_level(bundle: SourceDataBundle) -> str:
    total = len(bundle.community_posts) + len(bundle.group_messages) + len(bundle.active_groups)
    if total > 10:
        return "high"
    if total > 3:
        return "medium"
    if total > 0:
        return "low"
    return "minimal"


def extract_vocabulary_keywords(text: str) -> list[str]:
    low = text.lower()
    return [kw for kw in HEURISTIC_KEYWORDS if kw.lower() in low]


def fallback_profile(bundle: SourceDataBundle) -> Profile:
    """Keyword-frequency profile used when model inference is unavailable."""
    frequency: dict[str, int] = {}
    for text in [*bundle.community_posts, *bundle.group_messages]:
        for kw in extract_vocabulary_keywords(text):
            frequency[kw] = frequency.get(kw, 0) + 1
    for interest in bundle.group_interests:
        if interest.strip():
            frequency[interest] = frequency.get(interest, 0) + 1

    max_freq = max([1, *frequency.values()])
    weighted = sorted(
        (WeightedKeyword(keyword=kw, weight=freq / max_freq) for kw, freq in frequency.items()),
        key=lambda item: item.weight,
        reverse=True,
    )
    return Profile(
        cid=bundle.cid,
        interests=[item.keyword for item in weighted],
        weighted_keywords=weighted,
        activity_level=determine_activity_level(bundle),
        user_type="",
        extra={
            "user_id": bundle.cid,
            "data_sources": {
                "community_posts": bundle.has_community_data,
                "group_activity": bundle.has_group_data,
            },
            "content_sources": {
                "community_posts_count": len(bundle.community_posts),
                "group_messages_count": len(bundle.group_messages),
                "active_groups": list(bundle.active_groups),
            },
            "inference": "heuristic",
        },
        updated_at=utc_now(),
    )


def build_prompt_segments(bundle: SourceDataBundle, max_token_length: int) -> list[str]:
    """Split the user's content into prompts that each fit half the model budget."""
    header = _PROMPT_HEADER.format(
        cid=bundle.cid,
        post_count=len(bundle.community_posts),
        message_count=len(bundle.group_messages),
        groups=", ".join(bundle.active_groups) or "无",
        group_interests=", ".join(bundle.group_interests) or "无",
    )
    content = "社区发帖内容：\n" + "\n---\n".join(bundle.community_posts)
    content += "\n群聊消息内容：\n" + "\n---\n".join(bundle.group_messages)
    blocks = split_text_by_tokens(content, max(1, max_token_length // 2))
    return [f"{header}\n{block}\n{_PROMPT_FOOTER}" for block in blocks]


def parse_segment_result(text: str) -> dict[str, Any]:
    parsed = json.loads(extract_json_object(text))
    if not isinstance(parsed, dict):
        raise ValueError("Model output is not a JSON object.")
    return parsed


def normalize_user_type(value: str) -> str:
    clean = value.strip()
    if not clean or clean == UNDETERMINED_USER_TYPE:
        return DEFAULT_USER_TYPE
    return clean


def combine_segment_results(cid: str, results: list[dict[str, Any]]) -> Profile:
    """Fold per-segment model outputs into one profile."""
    best: dict[str, float] = {}
    interests: list[str] = []
    activity = "low"
    user_type = ""
    for payload in results:
        partial = Profile.from_dict(cid, payload)
        for item in partial.weighted_keywords:
            if item.keyword not in best or item.weight > best[item.keyword]:
                best[item.keyword] = item.weight
        interests.extend(partial.interests)
        activity = higher_activity_level(activity, partial.activity_level)
        if not user_type and partial.user_type:
            user_type = partial.user_type

    weighted = sorted(
        (WeightedKeyword(keyword=k, weight=w) for k, w in best.items()),
        key=lambda item: item.weight,
        reverse=True,
    )
    merged_interests, weighted = backfill_consistency(dedupe_strings(interests), weighted)
    if not merged_interests and not weighted:
        merged_interests = list(STARTER_INTERESTS)
        weighted = [WeightedKeyword(keyword=k, weight=w) for k, w in STARTER_KEYWORDS]

    return Profile(
        cid=cid,
        interests=merged_interests,
        weighted_keywords=weighted,
        activity_level=activity,
        user_type=normalize_user_type(user_type),
        extra={"inference": "llm", "segments": len(results)},
        updated_at=utc_now(),
    )


class ProfileInferer:
    """Segment the prompt, infer in parallel, degrade to the heuristic on failure."""

    def __init__(
        self,
        client: CompletionClient | None,
        *,
        max_token_length: int = 8000,
        max_concurrency: int = 5,
    ) -> None:
        self._client = client
        self._max_token_length = max_token_length if max_token_length > 0 else 8000
        self._max_concurrency = max_concurrency if max_concurrency > 0 else 5

    def infer_with_model(self, bundle: SourceDataBundle) -> Profile:
        client = self._client
        if client is None:
            raise RuntimeError("No completion client configured.")

        def _infer_segment(prompt: str) -> dict[str, Any] | None:
            try:
                return parse_segment_result(client.complete(prompt))
            except Exception as exc:
                logger.warning("Profile segment inference failed for {}: {}", bundle.cid, exc)
                return None

        segments = build_prompt_segments(bundle, self._max_token_length)
        workers = min(self._max_concurrency, len(segments))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pushrec-llm") as executor:
            outputs = list(executor.map(_infer_segment, segments))
        results = [out for out in outputs if out is not None]
        if not results:
            raise RuntimeError(f"All {len(segments)} prompt segments failed for {bundle.cid}.")
        logger.info("Inferred profile for {} from {}/{} segments", bundle.cid, len(results), len(segments))
        return combine_segment_results(bundle.cid, results)

    def infer(self, bundle: SourceDataBundle) -> Profile:
        if self._client is None:
            return fallback_profile(bundle)
        try:
            return self.infer_with_model(bundle)
        except Exception as exc:
            logger.warning("Falling back to heuristic profile for {}: {}", bundle.cid, exc)
            return fallback_profile(bundle)

"""Core building blocks for the push recommendation service."""

from .bounded_executor import resolve_concurrency, run_bounded
from .config_loader import clear_config_cache, get_section, load_config, resolve_config_path
from .models import (
    ItemOutcome,
    Profile,
    RecommendationItem,
    RunStats,
    SourceDataBundle,
    TaskDescriptor,
    TaskKind,
    WeightedKeyword,
)
from .profile_merge import merge_profiles
from .recommendation_aggregator import aggregate, search_by_keywords

__all__ = [
    "ItemOutcome",
    "Profile",
    "RecommendationItem",
    "RunStats",
    "SourceDataBundle",
    "TaskDescriptor",
    "TaskKind",
    "WeightedKeyword",
    "aggregate",
    "clear_config_cache",
    "get_section",
    "load_config",
    "merge_profiles",
    "resolve_concurrency",
    "resolve_config_path",
    "run_bounded",
    "search_by_keywords",
]

"""Three-stage profile -> recommendation -> push workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from .backend import PipelineBackend
from .bounded_executor import DEFAULT_CONCURRENCY, run_bounded
from .config_loader import get_section, positive_int
from .models import ItemOutcome, Profile, RecommendationItem, RunStats, iso, utc_now
from .profile_merge import merge_profiles
from .recommendation_aggregator import extract_profile_keywords, search_by_keywords
from .text_utils import filter_special_symbols

STAGE_PROFILE = "profile"
STAGE_RECOMMENDATION = "recommendation"
STAGE_PUSH = "push"


@dataclass(slots=True)
class PipelineSettings:
    lookback_days: int = 7
    profile_concurrency: int = DEFAULT_CONCURRENCY
    recommendation_concurrency: int = DEFAULT_CONCURRENCY
    push_concurrency: int = DEFAULT_CONCURRENCY
    top_k: int = 5


def pipeline_settings(config: dict[str, Any] | None = None) -> PipelineSettings:
    section = get_section("pipeline", config)
    rag = get_section("rag", config)
    return PipelineSettings(
        lookback_days=positive_int(section.get("lookback_days"), 7),
        # Left raw so the executor can warn about invalid caps.
        profile_concurrency=section.get("profile_concurrency", DEFAULT_CONCURRENCY),
        recommendation_concurrency=section.get("recommendation_concurrency", DEFAULT_CONCURRENCY),
        push_concurrency=section.get("push_concurrency", DEFAULT_CONCURRENCY),
        top_k=positive_int(rag.get("top_k"), 5),
    )


@dataclass(slots=True)
class WorkflowResult:
    ok: bool
    started_at: datetime
    finished_at: datetime | None = None
    candidates: int = 0
    regenerated: int = 0
    stages: list[RunStats] = field(default_factory=list)
    broadcast_pushed: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "started_at": iso(self.started_at),
            "finished_at": iso(self.finished_at) if self.finished_at else None,
            "candidates": self.candidates,
            "regenerated": self.regenerated,
            "stages": [stage.to_dict() for stage in self.stages],
            "broadcast_pushed": self.broadcast_pushed,
            "error": self.error,
        }

    def summary(self) -> str:
        if not self.ok:
            return f"workflow failed: {self.error}"
        parts = [stage.summary() for stage in self.stages]
        return " | ".join([f"candidates={self.candidates}", *parts])


def _clean_item(item: RecommendationItem) -> RecommendationItem:
    item.title = filter_special_symbols(item.title)
    item.content = filter_special_symbols(item.content)
    return item


class PipelineCoordinator:
    """Runs the batch workflow and the per-user on-demand operations."""

    def __init__(self, backend: PipelineBackend, settings: PipelineSettings | None = None) -> None:
        self._backend = backend
        self._settings = settings or pipeline_settings()

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    # Per-item operations -------------------------------------------------

    def _refresh_profile(self, cid: str, *, force: bool = False) -> tuple[ItemOutcome, Profile | None]:
        old = self._backend.load_profile(cid)
        since = old.updated_at if old is not None else None
        if not force and old is not None and since is not None:
            if not self._backend.has_newer_source_data_than(cid, since):
                logger.debug("Profile for {} is current, skipping", cid)
                return ItemOutcome.SKIPPED, old

        bundle = self._backend.compute_raw_profile_signals(
            cid, self._settings.lookback_days, None if force else since
        )
        if bundle.is_empty:
            logger.debug("No source data for {}, skipping profile", cid)
            return ItemOutcome.SKIPPED, old

        fresh = self._backend.infer_profile(bundle)
        fresh.cid = cid
        merged = merge_profiles(old, fresh, now=utc_now())
        if merged.updated_at is None:
            merged.updated_at = utc_now()
        self._backend.save_profile(merged)
        logger.info("Profile updated for {}: {} keywords", cid, len(merged.weighted_keywords))
        return ItemOutcome.SUCCEEDED, merged

    def _build_recommendations(self, cid: str, profile: Profile | None = None) -> list[RecommendationItem]:
        source = profile or self._backend.load_profile(cid)
        if source is None:
            return []
        keywords = extract_profile_keywords(source)
        items = search_by_keywords(keywords, self._settings.top_k, self._backend.search_knowledge_base)
        if not items:
            logger.info("No knowledge base results for {}; keeping existing snapshot", cid)
            return []
        cleaned = [_clean_item(item) for item in items]
        self._backend.save_recommendations(cid, cleaned, source)
        logger.info("Saved {} recommendations for {}", len(cleaned), cid)
        return cleaned

    def _recommend_one(self, cid: str) -> ItemOutcome:
        return ItemOutcome.SUCCEEDED if self._build_recommendations(cid) else ItemOutcome.SKIPPED

    # Stages --------------------------------------------------------------

    def generate_profiles(self, cids: list[str], *, force: bool = False) -> tuple[RunStats, set[str]]:
        regenerated: set[str] = set()

        def _collect(cid: str, outcome: ItemOutcome) -> None:
            if outcome is ItemOutcome.SUCCEEDED:
                regenerated.add(cid)

        stats = run_bounded(
            cids,
            lambda cid: self._refresh_profile(cid, force=force)[0],
            concurrency=self._settings.profile_concurrency,
            stage=STAGE_PROFILE,
            accumulate=_collect,
        )
        return stats, regenerated

    def recommendation_targets(self, cids: list[str], regenerated: set[str]) -> list[str]:
        """Regenerated users plus any candidate without a usable cached snapshot."""
        targets: list[str] = []
        for cid in cids:
            if cid in regenerated:
                targets.append(cid)
                continue
            try:
                cached = self._backend.load_cached_recommendations(cid)
            except Exception as exc:
                logger.warning("Could not read cached recommendations for {}: {}", cid, exc)
                continue
            if not cached:
                targets.append(cid)
        return targets

    def generate_recommendations(self, cids: list[str]) -> RunStats:
        return run_bounded(
            cids,
            self._recommend_one,
            concurrency=self._settings.recommendation_concurrency,
            stage=STAGE_RECOMMENDATION,
        )

    def push_all(self) -> tuple[RunStats, bool | None]:
        """Push every cached snapshot, then one broadcast of fallback content."""
        snapshots = self._backend.list_cached_recommendations()
        top_k = self._settings.top_k
        stats = run_bounded(
            list(snapshots),
            lambda cid: self._backend.push_to_recipient(cid, snapshots[cid][:top_k]),
            concurrency=self._settings.push_concurrency,
            stage=STAGE_PUSH,
        )
        return stats, self.push_broadcast()

    def push_broadcast(self) -> bool | None:
        """Returns None when there is no fallback content to send."""
        try:
            fallback = self._backend.get_broadcast_fallback_content()[: self._settings.top_k]
        except Exception as exc:
            logger.error("Could not load broadcast content: {}", exc)
            return False
        if not fallback:
            logger.info("No broadcast content available")
            return None
        try:
            ok = self._backend.push_to_recipient(None, fallback)
        except Exception as exc:
            logger.error("Broadcast push failed: {}", exc)
            return False
        logger.info("Broadcast push of {} items ok={}", len(fallback), ok)
        return ok

    def run_full_workflow(self) -> WorkflowResult:
        result = WorkflowResult(ok=True, started_at=utc_now())
        try:
            candidates = self._backend.list_candidates(self._settings.lookback_days)
        except Exception as exc:
            logger.error("Failed to list candidates: {}", exc)
            result.ok = False
            result.error = f"list_candidates failed: {exc}"
            result.finished_at = utc_now()
            return result

        result.candidates = len(candidates)
        logger.info("Workflow started with {} candidates", len(candidates))

        profile_stats, regenerated = self.generate_profiles(candidates)
        result.stages.append(profile_stats)
        result.regenerated = len(regenerated)

        targets = self.recommendation_targets(candidates, regenerated)
        result.stages.append(self.generate_recommendations(targets))

        try:
            push_stats, broadcast = self.push_all()
            result.stages.append(push_stats)
            result.broadcast_pushed = broadcast
        except Exception as exc:
            logger.error("Push stage aborted: {}", exc)
            result.stages.append(RunStats(stage=STAGE_PUSH, errors=[str(exc)]))

        result.finished_at = utc_now()
        logger.info("Workflow finished: {}", result.summary())
        return result

    # On-demand operations ------------------------------------------------

    def get_profile(self, cid: str) -> dict[str, Any]:
        profile = self._backend.load_profile(cid)
        if profile is None:
            return {"ok": False, "reason": "no_profile", "error": f"No profile for {cid}."}
        return {"ok": True, "cid": cid, "profile": profile.to_dict()}

    def generate_profile_for_user(self, cid: str, *, force: bool = False) -> dict[str, Any]:
        try:
            outcome, profile = self._refresh_profile(cid, force=force)
        except Exception as exc:
            logger.error("Profile generation failed for {}: {}", cid, exc)
            return {"ok": False, "reason": "profile_error", "error": str(exc)}
        if profile is None:
            return {"ok": False, "reason": "no_data", "error": f"No source data for {cid}."}
        return {
            "ok": True,
            "cid": cid,
            "updated": outcome is ItemOutcome.SUCCEEDED,
            "profile": profile.to_dict(),
        }

    def generate_profiles_for_all(self) -> dict[str, Any]:
        try:
            candidates = self._backend.list_candidates(self._settings.lookback_days)
        except Exception as exc:
            return {"ok": False, "reason": "database_error", "error": str(exc)}
        stats, regenerated = self.generate_profiles(candidates)
        return {"ok": True, "stats": stats.to_dict(), "regenerated": sorted(regenerated)}

    def get_recommendations(self, cid: str) -> dict[str, Any]:
        cached = self._backend.load_cached_recommendations(cid)
        if not cached:
            return {"ok": False, "reason": "no_recommendations", "error": f"No recommendations for {cid}."}
        return {"ok": True, "cid": cid, "items": [item.to_dict() for item in cached]}

    def generate_recommendations_for_user(self, cid: str) -> dict[str, Any]:
        cached = self._backend.load_cached_recommendations(cid)
        if cached:
            return {"ok": True, "cid": cid, "cached": True, "items": [item.to_dict() for item in cached]}
        return self._regenerate_for_user(cid)

    def refresh_user_recommendations(self, cid: str) -> dict[str, Any]:
        refreshed = self.generate_profile_for_user(cid, force=True)
        if not refreshed.get("ok") and self._backend.load_profile(cid) is None:
            return refreshed
        return self._regenerate_for_user(cid)

    def _regenerate_for_user(self, cid: str) -> dict[str, Any]:
        profile = self._backend.load_profile(cid)
        if profile is None:
            return {"ok": False, "reason": "no_profile", "error": f"No profile for {cid}."}
        try:
            items = self._build_recommendations(cid, profile)
        except Exception as exc:
            logger.error("Recommendation generation failed for {}: {}", cid, exc)
            return {"ok": False, "reason": "recommendation_error", "error": str(exc)}
        if not items:
            return {"ok": False, "reason": "no_recommendations", "error": f"No recommendations found for {cid}."}
        return {"ok": True, "cid": cid, "cached": False, "items": [item.to_dict() for item in items]}

    def generate_recommendations_for_all(self) -> dict[str, Any]:
        try:
            users = self._backend.list_users_with_profiles()
        except Exception as exc:
            return {"ok": False, "reason": "database_error", "error": str(exc)}
        stats = self.generate_recommendations(users)
        return {"ok": True, "stats": stats.to_dict()}

    def push_for_user(self, cid: str) -> dict[str, Any]:
        cached = self._backend.load_cached_recommendations(cid)
        if not cached:
            return {"ok": False, "reason": "no_recommendations", "error": f"No recommendations for {cid}."}
        items = cached[: self._settings.top_k]
        if not self._backend.push_to_recipient(cid, items):
            return {"ok": False, "reason": "push_failed", "error": f"Push to {cid} failed."}
        return {"ok": True, "cid": cid, "pushed": len(items)}

    def push_everyone(self) -> dict[str, Any]:
        try:
            stats, broadcast = self.push_all()
        except Exception as exc:
            return {"ok": False, "reason": "database_error", "error": str(exc)}
        return {"ok": True, "stats": stats.to_dict(), "broadcast_pushed": broadcast}

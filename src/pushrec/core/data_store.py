"""SQLite-backed storage for source signals, profiles and recommendation snapshots."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from loguru import logger

from .config_loader import _repo_root, get_section, non_empty_str
from .models import Profile, RecommendationItem, iso, parse_iso, utc_now

DEFAULT_DB_PATH = "data/pushrec.db"


def resolve_db_path(path: str | None) -> Path:
    candidate = Path(path or DEFAULT_DB_PATH)
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def _db_path_from_config() -> Path:
    section = get_section("store")
    return resolve_db_path(non_empty_str(section.get("db_path"), DEFAULT_DB_PATH))


@dataclass(slots=True)
class SourceRows:
    """Raw rows gathered for one user inside a lookback window."""

    posts: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)


class DataStore:
    """Persist source data, profiles and per-user recommendation snapshots."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            self._db_path = _db_path_from_config()
        else:
            self._db_path = resolve_db_path(str(db_path))
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS user_profiles (
                    cid TEXT PRIMARY KEY,
                    profile_json TEXT NOT NULL,
                    keywords_json TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS recommendation_cache (
                    cid TEXT PRIMARY KEY,
                    recommendations_json TEXT NOT NULL,
                    profile_json TEXT,
                    item_count INTEGER NOT NULL DEFAULT 0,
                    generated_at TEXT NOT NULL,
                    pushed INTEGER NOT NULL DEFAULT 0 CHECK (pushed IN (0, 1)),
                    pushed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS group_chat_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sender_id TEXT NOT NULL,
                    group_name TEXT,
                    title TEXT,
                    content TEXT,
                    message_time TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_group_chat_messages_sender_time
                ON group_chat_messages(sender_id, message_time);

                CREATE TABLE IF NOT EXISTS community_posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    cid TEXT NOT NULL,
                    article_text TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_community_posts_cid_time
                ON community_posts(cid, created_at);

                CREATE TABLE IF NOT EXISTS group_chat_summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    group_id TEXT,
                    group_name TEXT,
                    summary_content TEXT,
                    hot_topics TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )

    # Source data ---------------------------------------------------------

    def record_group_message(
        self,
        *,
        sender_id: str,
        content: str,
        group_name: str | None = None,
        title: str | None = None,
        message_time: datetime | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO group_chat_messages(sender_id, group_name, title, content, message_time)
                VALUES (?, ?, ?, ?, ?);
                """,
                (sender_id, group_name, title, content, iso(message_time or utc_now())),
            )

    def record_community_post(self, *, cid: str, text: str, created_at: datetime | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO community_posts(cid, article_text, created_at) VALUES (?, ?, ?);",
                (cid, text, iso(created_at or utc_now())),
            )

    def record_group_summary(
        self,
        *,
        group_id: str,
        group_name: str,
        summary: str,
        hot_topics: list[dict[str, Any]],
        created_at: datetime | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO group_chat_summaries(group_id, group_name, summary_content, hot_topics, created_at)
                VALUES (?, ?, ?, ?, ?);
                """,
                (group_id, group_name, summary, json.dumps(hot_topics, ensure_ascii=False), iso(created_at or utc_now())),
            )

    def list_candidates(self, lookback_days: int, *, now: datetime | None = None) -> list[str]:
        since = iso((now or utc_now()) - timedelta(days=max(0, lookback_days)))
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT sender_id AS cid FROM group_chat_messages
                WHERE sender_id != '' AND message_time >= ?
                UNION
                SELECT cid FROM community_posts
                WHERE cid != '' AND created_at >= ?;
                """,
                (since, since),
            ).fetchall()
        seen: set[str] = set()
        out: list[str] = []
        for row in rows:
            cid = str(row["cid"] or "").strip()
            if cid and cid not in seen:
                seen.add(cid)
                out.append(cid)
        return out

    def has_newer_data_than(self, cid: str, since: datetime) -> bool:
        marker = iso(since)
        with self._connect() as conn:
            messages = conn.execute(
                "SELECT COUNT(1) AS c FROM group_chat_messages WHERE sender_id = ? AND message_time > ?;",
                (cid, marker),
            ).fetchone()["c"]
            if messages:
                return True
            posts = conn.execute(
                "SELECT COUNT(1) AS c FROM community_posts WHERE cid = ? AND created_at > ?;",
                (cid, marker),
            ).fetchone()["c"]
        return bool(posts)

    def load_source_rows(
        self,
        cid: str,
        lookback_days: int,
        *,
        since: datetime | None = None,
        now: datetime | None = None,
    ) -> SourceRows:
        window_start = (now or utc_now()) - timedelta(days=max(0, lookback_days))
        lower = iso(max(window_start, since) if since is not None else window_start)
        out = SourceRows()
        with self._connect() as conn:
            for row in conn.execute(
                """
                SELECT article_text FROM community_posts
                WHERE cid = ? AND created_at > ? AND article_text IS NOT NULL AND article_text != ''
                ORDER BY created_at;
                """,
                (cid, lower),
            ):
                out.posts.append(str(row["article_text"]).strip())

            seen_groups: set[str] = set()
            for row in conn.execute(
                """
                SELECT content, title, group_name FROM group_chat_messages
                WHERE sender_id = ? AND message_time > ?
                ORDER BY message_time;
                """,
                (cid, lower),
            ):
                if row["content"]:
                    out.messages.append(str(row["content"]).strip())
                if row["title"] is not None:
                    out.titles.append(str(row["title"]).strip())
                group = str(row["group_name"] or "").strip()
                if group and group not in seen_groups:
                    seen_groups.add(group)
                    out.groups.append(group)
        return out

    def hot_topics_for_day(self, day: date | None = None) -> list[dict[str, str]]:
        """Hot topics from summaries written on `day` (default: yesterday, UTC)."""
        target = day or (utc_now().date() - timedelta(days=1))
        start = datetime(target.year, target.month, target.day, tzinfo=UTC)
        end = start + timedelta(days=1)
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT hot_topics FROM group_chat_summaries
                WHERE hot_topics IS NOT NULL AND hot_topics != ''
                  AND created_at >= ? AND created_at < ?
                ORDER BY created_at DESC;
                """,
                (iso(start), iso(end)),
            ).fetchall()

        topics: list[dict[str, str]] = []
        for row in rows:
            try:
                parsed = json.loads(row["hot_topics"])
            except json.JSONDecodeError:
                logger.warning("Skipping group summary with invalid hot_topics JSON")
                continue
            if not isinstance(parsed, list):
                continue
            for entry in parsed:
                if isinstance(entry, dict):
                    topics.append({"title": str(entry.get("title") or ""), "content": str(entry.get("content") or "")})
        return topics

    # Profiles ------------------------------------------------------------

    def load_profile(self, cid: str) -> Profile | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT profile_json, updated_at FROM user_profiles WHERE cid = ?;",
                (cid,),
            ).fetchone()
        if row is None:
            return None
        payload = json.loads(row["profile_json"]) if row["profile_json"] else {}
        profile = Profile.from_dict(cid, payload if isinstance(payload, dict) else {})
        if profile.updated_at is None:
            profile.updated_at = parse_iso(row["updated_at"])
        return profile

    def save_profile(self, profile: Profile) -> None:
        updated_at = profile.updated_at or utc_now()
        payload = profile.to_dict()
        payload["updated_at"] = iso(updated_at)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_profiles(cid, profile_json, keywords_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cid) DO UPDATE SET
                    profile_json = excluded.profile_json,
                    keywords_json = excluded.keywords_json,
                    updated_at = excluded.updated_at;
                """,
                (
                    profile.cid,
                    json.dumps(payload, ensure_ascii=False),
                    json.dumps(profile.keywords, ensure_ascii=False),
                    iso(updated_at),
                ),
            )

    def list_users_with_profiles(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT cid FROM user_profiles ORDER BY cid;").fetchall()
        return [str(row["cid"]) for row in rows]

    # Recommendation snapshots -------------------------------------------

    @staticmethod
    def _decode_items(raw: str | None) -> list[RecommendationItem]:
        payload = json.loads(raw) if raw else []
        items: list[RecommendationItem] = []
        for entry in payload if isinstance(payload, list) else []:
            item = RecommendationItem.from_dict(entry)
            if item is not None:
                items.append(item)
        return items

    def load_recommendations(self, cid: str) -> list[RecommendationItem] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT recommendations_json FROM recommendation_cache WHERE cid = ?;",
                (cid,),
            ).fetchone()
        if row is None:
            return None
        return self._decode_items(row["recommendations_json"])

    def save_recommendations(self, cid: str, items: list[RecommendationItem], profile: Profile | None) -> None:
        profile_json = json.dumps(profile.to_dict(), ensure_ascii=False) if profile is not None else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO recommendation_cache(cid, recommendations_json, profile_json, item_count, generated_at, pushed, pushed_at)
                VALUES (?, ?, ?, ?, ?, 0, NULL)
                ON CONFLICT(cid) DO UPDATE SET
                    recommendations_json = excluded.recommendations_json,
                    profile_json = excluded.profile_json,
                    item_count = excluded.item_count,
                    generated_at = excluded.generated_at,
                    pushed = 0,
                    pushed_at = NULL;
                """,
                (
                    cid,
                    json.dumps([item.to_dict() for item in items], ensure_ascii=False),
                    profile_json,
                    len(items),
                    iso(utc_now()),
                ),
            )

    def list_cached_recommendations(self) -> dict[str, list[RecommendationItem]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT cid, recommendations_json FROM recommendation_cache WHERE item_count > 0 ORDER BY cid;"
            ).fetchall()
        out: dict[str, list[RecommendationItem]] = {}
        for row in rows:
            items = self._decode_items(row["recommendations_json"])
            if items:
                out[str(row["cid"])] = items
        return out

    def mark_pushed(self, cid: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE recommendation_cache SET pushed = 1, pushed_at = ? WHERE cid = ?;",
                (iso(utc_now()), cid),
            )

    def snapshot_meta(self, cid: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT item_count, generated_at, pushed, pushed_at FROM recommendation_cache WHERE cid = ?;",
                (cid,),
            ).fetchone()
        if row is None:
            return None
        return {
            "item_count": int(row["item_count"]),
            "generated_at": row["generated_at"],
            "pushed": bool(row["pushed"]),
            "pushed_at": row["pushed_at"],
        }

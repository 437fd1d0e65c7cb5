from datetime import UTC, datetime, timedelta
from pathlib import Path

from src.pushrec.core.backend import DefaultBackend, extract_group_topics
from src.pushrec.core.data_store import DataStore
from src.pushrec.core.models import Profile, RecommendationItem
from src.pushrec.core.profile_inference import ProfileInferer
from src.pushrec.integrations.rag_client import RagSettings


class _FakeRag:
    def __init__(self) -> None:
        self.settings = RagSettings(top_k=4)
        self.queries: list[tuple[str, int]] = []

    def search(self, query: str, top_k: int | None = None) -> list[RecommendationItem]:
        self.queries.append((query, top_k or 0))
        return [RecommendationItem(source="rag", title=f"{query} doc", content="body", ref_id="r1")]


class _FakePush:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls: list[tuple[str | None, int]] = []

    def push(self, cid: str | None, items: list[RecommendationItem]) -> bool:
        self.calls.append((cid, len(items)))
        return self.ok


def _backend(tmp_path: Path, *, push_ok: bool = True) -> tuple[DefaultBackend, _FakeRag, _FakePush]:
    rag = _FakeRag()
    push = _FakePush(push_ok)
    backend = DefaultBackend(
        DataStore(db_path=tmp_path / "pushrec.db"),
        rag=rag,  # type: ignore[arg-type]
        push=push,  # type: ignore[arg-type]
        inferer=ProfileInferer(None),
    )
    return backend, rag, push


def test_extract_group_topics_keeps_first_seen_order():
    topics = extract_group_topics(["聊聊质押和DW20", "钱包怎么注册"], ["官方群公告"])
    assert topics == ["dw20", "质押", "官方群", "钱包", "注册"]


def test_compute_raw_profile_signals_builds_bundle(tmp_path: Path):
    backend, _, _ = _backend(tmp_path)
    now = datetime.now(tz=UTC)
    backend.store.record_community_post(cid="u1", text="区块链 投资", created_at=now - timedelta(hours=1))
    backend.store.record_group_message(
        sender_id="u1",
        content="讨论质押奖励",
        group_name="官方群",
        message_time=now - timedelta(hours=2),
    )

    bundle = backend.compute_raw_profile_signals("u1", 7)
    assert bundle.cid == "u1"
    assert bundle.community_posts == ["区块链 投资"]
    assert bundle.group_messages == ["讨论质押奖励"]
    assert bundle.active_groups == ["官方群"]
    assert "质押" in bundle.group_interests
    assert backend.list_candidates(7) == ["u1"]

    profile = backend.infer_profile(bundle)
    assert profile.extra["inference"] == "heuristic"
    assert "区块链" in profile.keywords


def test_push_to_recipient_marks_snapshot_pushed(tmp_path: Path):
    backend, _, push = _backend(tmp_path)
    items = [RecommendationItem(source="knowledge_base", title="t", content="c")]
    backend.save_recommendations("u1", items, Profile(cid="u1"))

    assert backend.push_to_recipient("u1", items) is True
    assert push.calls == [("u1", 1)]
    meta = backend.store.snapshot_meta("u1")
    assert meta is not None and meta["pushed"] is True


def test_failed_push_leaves_snapshot_unpushed(tmp_path: Path):
    backend, _, _ = _backend(tmp_path, push_ok=False)
    items = [RecommendationItem(source="knowledge_base", title="t", content="c")]
    backend.save_recommendations("u1", items, None)  # type: ignore[arg-type]

    assert backend.push_to_recipient("u1", items) is False
    meta = backend.store.snapshot_meta("u1")
    assert meta is not None and meta["pushed"] is False


def test_broadcast_fallback_reads_yesterdays_hot_topics(tmp_path: Path):
    backend, _, _ = _backend(tmp_path)
    yesterday = datetime.now(tz=UTC) - timedelta(days=1)
    backend.store.record_group_summary(
        group_id="g1",
        group_name="官方群",
        summary="s",
        hot_topics=[{"title": "上所消息", "content": "DW20 即将上所"}, {"title": "", "content": ""}],
        created_at=yesterday.replace(hour=12, minute=0, second=0, microsecond=0),
    )

    content = backend.get_broadcast_fallback_content()
    assert [(item.source, item.title, item.score) for item in content] == [("group_summary", "上所消息", 1.0)]


def test_search_and_profile_passthrough(tmp_path: Path):
    backend, rag, _ = _backend(tmp_path)
    assert backend.rag_top_k == 4
    hits = backend.search_knowledge_base("钱包", 2)
    assert hits[0].title == "钱包 doc"
    assert rag.queries == [("钱包", 2)]

    backend.save_profile(Profile(cid="u1", interests=["钱包"], updated_at=datetime.now(tz=UTC)))
    assert backend.list_users_with_profiles() == ["u1"]
    loaded = backend.load_profile("u1")
    assert loaded is not None and loaded.interests == ["钱包"]
    assert backend.load_cached_recommendations("u1") is None


def test_from_config_without_llm_key_uses_heuristic(tmp_path: Path, monkeypatch):
    for name in ("LLM_API_KEY", "SILICONFLOW_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    backend = DefaultBackend.from_config(
        {"store": {"db_path": str(tmp_path / "cfg.db")}, "rag": {"top_k": 7}}
    )
    assert backend.store.db_path == (tmp_path / "cfg.db").resolve()
    assert backend.rag_top_k == 7

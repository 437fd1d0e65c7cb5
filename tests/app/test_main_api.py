import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


class _FakeRuntimeService:
    def __init__(self) -> None:
        self.scheduler_running = False

    def health(self):
        return {"ok": True, "source": "runtime_service", "runtime": {"started": True}}

    def run_full_workflow_once(self):
        return {"ok": True, "candidates": 3, "stages": []}

    def scheduler_status(self):
        return {"ok": True, "running": self.scheduler_running, "mode": "daily", "tasks": []}

    def scheduler_start(self):
        self.scheduler_running = True
        return {"ok": True, "running": True, "already_running": False}

    def scheduler_stop(self):
        self.scheduler_running = False
        return {"ok": True, "running": False}

    def get_profile(self, *, cid: str):
        if cid == "u1":
            return {"ok": True, "cid": cid, "profile": {"interests": ["区块链"]}}
        return {"ok": False, "reason": "no_profile", "error": f"No profile for {cid}."}

    def generate_profile(self, *, cid: str, force: bool = False):
        return {"ok": True, "cid": cid, "updated": force, "profile": {}}

    def generate_all_profiles(self):
        return {"ok": False, "reason": "database_error", "error": "db locked"}

    def get_recommendations(self, *, cid: str):
        return {"ok": False, "reason": "no_recommendations", "error": ""}

    def generate_recommendations(self, *, cid: str):
        return {"ok": True, "cid": cid, "cached": True, "items": [{"title": "t"}]}

    def refresh_recommendations(self, *, cid: str):
        return {"ok": False, "reason": "recommendation_error", "error": "rag down"}

    def generate_all_recommendations(self):
        return {"ok": True, "stats": {"succeeded": 2}}

    def push_user(self, *, cid: str):
        return {"ok": False, "reason": "push_failed", "error": f"Push to {cid} failed."}

    def push_all(self):
        return {"ok": True, "stats": {"succeeded": 1}, "broadcast_pushed": None}


@pytest.fixture()
def fake_runtime(monkeypatch):
    fake = _FakeRuntimeService()
    monkeypatch.setattr("app.main.get_runtime_service", lambda: fake)
    return fake


def test_health_endpoint_uses_runtime_service(fake_runtime):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["source"] == "runtime_service"


def test_workflow_trigger_wraps_result(fake_runtime):
    res = client.post("/api/workflow/run")
    assert res.status_code == 200
    assert res.json() == {"code": 0, "message": "success", "data": {"candidates": 3, "stages": []}}


def test_scheduler_endpoints(fake_runtime):
    assert client.get("/api/scheduler/status").json()["running"] is False
    assert client.post("/api/scheduler/start").json()["running"] is True
    assert client.get("/api/scheduler/status").json()["running"] is True
    assert client.post("/api/scheduler/stop").json()["running"] is False


def test_profile_endpoints(fake_runtime):
    ok = client.get("/api/profile/u1").json()
    assert ok["code"] == 0
    assert ok["data"]["profile"]["interests"] == ["区块链"]

    missing = client.get("/api/profile/ghost").json()
    assert missing["code"] == 1003
    assert missing["message"] == "No profile for ghost."
    assert missing["data"] == {"reason": "no_profile"}

    forced = client.post("/api/profile/generate/u1", params={"force": "true"}).json()
    assert forced["code"] == 0
    assert forced["data"]["updated"] is True

    all_profiles = client.post("/api/profile/generate").json()
    assert all_profiles["code"] == 2001
    assert all_profiles["message"] == "db locked"


def test_recommendation_endpoints(fake_runtime):
    empty = client.get("/api/recommendation/u1").json()
    assert empty["code"] == 1004
    assert empty["message"] == "没有推荐数据"

    generated = client.post("/api/recommendation/generate/u1").json()
    assert generated["code"] == 0
    assert generated["data"]["cached"] is True

    refreshed = client.post("/api/recommendation/refresh/u1").json()
    assert refreshed["code"] == 2003
    assert refreshed["message"] == "rag down"

    everyone = client.post("/api/recommendation/generate").json()
    assert everyone["code"] == 0
    assert everyone["data"]["stats"]["succeeded"] == 2


def test_push_endpoints(fake_runtime):
    failed = client.post("/api/push/user/u1").json()
    assert failed["code"] == 2005
    assert failed["message"] == "Push to u1 failed."

    everyone = client.post("/api/push/all").json()
    assert everyone["code"] == 0
    assert everyone["data"]["broadcast_pushed"] is None


def test_blank_cid_is_reported_as_missing(fake_runtime):
    body = client.get("/api/profile/%20").json()
    assert body["code"] == 1001
    assert body["data"] == {"param": "cid"}


def test_startup_hook_initializes_runtime_client_mode(monkeypatch):
    calls: list[dict] = []

    class _StartupRuntime:
        def start(self, **kwargs):
            calls.append(kwargs)
            return {"ok": True}

    monkeypatch.setattr("app.main.get_runtime_service", lambda: _StartupRuntime())
    from app.main import _init_runtime_client

    _init_runtime_client()
    assert len(calls) == 1
    assert calls[0]["start_scheduler_if_enabled"] is False
    assert calls[0]["source"] == "app"

"""Local HTTP surface for profiles, recommendations, pushes and the scheduler."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, Field

from src.pushrec.runtime.service import get_runtime_service

app = FastAPI(title="PushRec Service")

CODE_SUCCESS = 0
CODE_INVALID_PARAMS = 1000
CODE_MISSING_PARAMS = 1001
CODE_USER_NOT_FOUND = 1002
CODE_NO_USER_PROFILE = 1003
CODE_NO_RECOMMEND_DATA = 1004
CODE_SERVER_ERROR = 2000
CODE_DATABASE_ERROR = 2001
CODE_PROFILE_GEN_ERROR = 2002
CODE_RECOMMEND_GEN_ERROR = 2003
CODE_THIRD_PARTY_API_ERROR = 2005

CODE_MESSAGES = {
    CODE_SUCCESS: "success",
    CODE_INVALID_PARAMS: "无效的参数",
    CODE_MISSING_PARAMS: "缺少必要参数",
    CODE_USER_NOT_FOUND: "用户不存在",
    CODE_NO_USER_PROFILE: "用户没有画像",
    CODE_NO_RECOMMEND_DATA: "没有推荐数据",
    CODE_SERVER_ERROR: "服务器内部错误",
    CODE_DATABASE_ERROR: "数据库错误",
    CODE_PROFILE_GEN_ERROR: "画像生成错误",
    CODE_RECOMMEND_GEN_ERROR: "推荐生成错误",
    CODE_THIRD_PARTY_API_ERROR: "第三方API错误",
}

# Failure reasons reported by the coordinator, mapped onto response codes.
REASON_CODES = {
    "no_data": CODE_USER_NOT_FOUND,
    "no_profile": CODE_NO_USER_PROFILE,
    "no_recommendations": CODE_NO_RECOMMEND_DATA,
    "database_error": CODE_DATABASE_ERROR,
    "profile_error": CODE_PROFILE_GEN_ERROR,
    "recommendation_error": CODE_RECOMMEND_GEN_ERROR,
    "push_failed": CODE_THIRD_PARTY_API_ERROR,
}


class ApiResponse(BaseModel):
    code: int = CODE_SUCCESS
    message: str = CODE_MESSAGES[CODE_SUCCESS]
    data: dict[str, Any] = Field(default_factory=dict)


def _envelope(result: dict[str, Any], *, default_code: int = CODE_SERVER_ERROR) -> ApiResponse:
    if result.get("ok"):
        data = {k: v for k, v in result.items() if k != "ok"}
        return ApiResponse(data=data)
    code = REASON_CODES.get(str(result.get("reason") or ""), default_code)
    error = result.get("error")
    message = str(error) if error else CODE_MESSAGES.get(code, "未知错误")
    data = {k: v for k, v in result.items() if k not in {"ok", "error"}}
    return ApiResponse(code=code, message=message, data=data)


def _missing_cid() -> ApiResponse:
    return ApiResponse(
        code=CODE_MISSING_PARAMS,
        message=CODE_MESSAGES[CODE_MISSING_PARAMS],
        data={"param": "cid"},
    )


@app.on_event("startup")
def _init_runtime_client() -> None:
    get_runtime_service().start(start_scheduler_if_enabled=False, source="app")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.post("/api/workflow/run")
def run_workflow() -> ApiResponse:
    return _envelope(get_runtime_service().run_full_workflow_once())


@app.get("/api/scheduler/status")
def scheduler_status() -> dict:
    return get_runtime_service().scheduler_status()


@app.post("/api/scheduler/start")
def scheduler_start() -> dict:
    return get_runtime_service().scheduler_start()


@app.post("/api/scheduler/stop")
def scheduler_stop() -> dict:
    return get_runtime_service().scheduler_stop()


@app.post("/api/profile/generate")
def generate_all_profiles() -> ApiResponse:
    return _envelope(get_runtime_service().generate_all_profiles(), default_code=CODE_PROFILE_GEN_ERROR)


@app.post("/api/profile/generate/{cid}")
def generate_profile(cid: str, force: bool = False) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(
        get_runtime_service().generate_profile(cid=cid.strip(), force=force),
        default_code=CODE_PROFILE_GEN_ERROR,
    )


@app.get("/api/profile/{cid}")
def get_profile(cid: str) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(get_runtime_service().get_profile(cid=cid.strip()))


@app.post("/api/recommendation/generate")
def generate_all_recommendations() -> ApiResponse:
    return _envelope(
        get_runtime_service().generate_all_recommendations(),
        default_code=CODE_RECOMMEND_GEN_ERROR,
    )


@app.post("/api/recommendation/generate/{cid}")
def generate_recommendations(cid: str) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(
        get_runtime_service().generate_recommendations(cid=cid.strip()),
        default_code=CODE_RECOMMEND_GEN_ERROR,
    )


@app.post("/api/recommendation/refresh/{cid}")
def refresh_recommendations(cid: str) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(
        get_runtime_service().refresh_recommendations(cid=cid.strip()),
        default_code=CODE_RECOMMEND_GEN_ERROR,
    )


@app.get("/api/recommendation/{cid}")
def get_recommendations(cid: str) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(get_runtime_service().get_recommendations(cid=cid.strip()))


@app.post("/api/push/user/{cid}")
def push_user(cid: str) -> ApiResponse:
    if not cid.strip():
        return _missing_cid()
    return _envelope(get_runtime_service().push_user(cid=cid.strip()))


@app.post("/api/push/all")
def push_all() -> ApiResponse:
    return _envelope(get_runtime_service().push_all())

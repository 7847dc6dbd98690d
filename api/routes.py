"""
api/routes.py — FastAPI 엔드포인트

외부 UI(시험 화면/결과 화면)가 시도 엔진을 구동하는 얇은 HTTP 계층.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

import api.session as session
from config import GATEWAY_TOKEN
from proctored_test.errors import AttemptLoadError, AttemptStateError, FinalizeError, GatewayError
from proctored_test.models.attempt_state import AttemptStatus, CodingAnswer
from proctored_test.models.test_item import TestItem, effective_kind, resolve_payload
from proctored_test.services.attempt_engine import AttemptEngine
from proctored_test.services.attempt_loader import resolve_entry, resume_attempt, start_attempt
from proctored_test.services.result_service import result_from_attempt_detail, summarize_violations

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class TokenBody(BaseModel):
    token: str

class AnswerBody(BaseModel):
    item_id: int
    answer: Any = None

class NavigateBody(BaseModel):
    index: int = 0

class SignalBody(BaseModel):
    signal: str
    details: Optional[str] = None

class AppStateBody(BaseModel):
    state: str

class ExecuteCodeBody(BaseModel):
    item_id: int
    language_id: int
    code: str


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _sid(request: Request) -> str:
    return request.state.session_id


def _gateway(request: Request):
    sid = _sid(request)
    gateway = session.get(sid, "gateway")
    if gateway is None:
        token = session.get(sid, "token") or GATEWAY_TOKEN
        gateway = request.app.state.gateway_factory(token=token)
        session.put(sid, "gateway", gateway)
    return gateway


def _engine(request: Request) -> AttemptEngine:
    engine: Optional[AttemptEngine] = session.get(_sid(request), "engine")
    if engine is None:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return engine


def _load_http_error(e: AttemptLoadError) -> HTTPException:
    status = e.status_code if e.status_code in (401, 403, 404) else 502
    return HTTPException(status_code=status, detail=e.message)


def _item_to_dict(item: TestItem, saved_answer: Any) -> Dict[str, Any]:
    payload = resolve_payload(item)
    if isinstance(saved_answer, CodingAnswer):
        saved_answer = saved_answer.model_dump()
    return {
        "id": item.id,
        "kind": effective_kind(item).value,
        "order": item.order,
        "points": item.points,
        "payload": payload.model_dump() if payload is not None else None,
        "saved_answer": saved_answer,
    }


def _replace_engine(request: Request, engine: AttemptEngine, test_slug: str) -> None:
    sid = _sid(request)
    previous: Optional[AttemptEngine] = session.get(sid, "engine")
    if previous is not None:
        previous.close()
    engine.start()
    session.put(sid, "engine", engine)
    session.put(sid, "test_slug", test_slug)


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.post("/api/set-token")
async def set_token(request: Request, body: TokenBody):
    token = body.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="토큰이 비어 있습니다.")
    sid = _sid(request)
    engine = session.get(sid, "engine")
    # 제출이 확정되기 전까지 엔진이 같은 게이트웨이를 계속 쓴다
    if engine is not None and engine.status is not AttemptStatus.SUBMITTED:
        raise HTTPException(status_code=400, detail="시험 진행 중에는 토큰을 바꿀 수 없습니다.")
    old_gateway = session.get(sid, "gateway")
    if old_gateway is not None:
        await old_gateway.aclose()
    session.put(sid, "token", token)
    session.put(sid, "gateway", None)
    return {"ok": True}


@router.get("/api/tests/{test_slug}")
async def open_test(request: Request, test_slug: str):
    try:
        entry = await resolve_entry(_gateway(request), test_slug)
    except AttemptLoadError as e:
        raise _load_http_error(e)
    return entry.model_dump(mode="json")


@router.post("/api/tests/{test_slug}/start")
async def start_test(request: Request, test_slug: str):
    try:
        engine = await start_attempt(_gateway(request), test_slug)
    except AttemptLoadError as e:
        raise _load_http_error(e)
    _replace_engine(request, engine, test_slug)
    return engine.snapshot()


@router.post("/api/tests/{test_slug}/attempts/{attempt_id}/resume")
async def resume_test(request: Request, test_slug: str, attempt_id: int):
    try:
        engine = await resume_attempt(_gateway(request), test_slug, attempt_id)
    except AttemptLoadError as e:
        raise _load_http_error(e)
    _replace_engine(request, engine, test_slug)
    return engine.snapshot()


@router.get("/api/tests/{test_slug}/attempts/{attempt_id}")
async def review_attempt(request: Request, test_slug: str, attempt_id: int):
    """지난 시도 결과 (읽기 전용)."""
    try:
        detail = await _gateway(request).get_attempt_detail(test_slug, attempt_id)
    except GatewayError as e:
        status = e.status_code if e.status_code in (401, 403, 404) else 502
        raise HTTPException(status_code=status, detail=e.message)
    return {
        "attempt": detail,
        "result": result_from_attempt_detail(detail).model_dump(),
    }


@router.get("/api/attempt")
async def get_attempt_state(request: Request):
    engine = _engine(request)
    engine.tick()
    return engine.snapshot()


@router.get("/api/attempt/item/{index}")
async def get_item(request: Request, index: int):
    engine = _engine(request)
    items = engine.session.items
    if not (0 <= index < len(items)):
        raise HTTPException(status_code=404, detail="문항을 찾을 수 없습니다.")

    item = items[index]
    d = _item_to_dict(item, engine.answers.get(item.id))
    d.update({"index": index, "total": len(items)})
    return d


@router.post("/api/attempt/answer")
async def save_answer(request: Request, body: AnswerBody):
    engine = _engine(request)
    try:
        accepted = engine.set_answer(body.item_id, body.answer)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"ok": accepted, "answered_count": engine.answered_count, "status": engine.status.value}


@router.post("/api/attempt/navigate")
async def navigate(request: Request, body: NavigateBody):
    engine = _engine(request)
    try:
        accepted = engine.navigate(body.index)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "ok": accepted,
        "index": engine.session.current_item_index,
        "progress_percent": engine.progress_percent,
    }


@router.post("/api/attempt/signal")
async def report_signal(request: Request, body: SignalBody):
    """환경 신호 (클립보드, 스크린샷, 화면 녹화, 탭 전환 등)."""
    engine = _engine(request)
    before = len(engine.session.violations)
    violation_type = engine.detector.handle_signal(body.signal, body.details)
    return {
        "recorded": len(engine.session.violations) > before,
        "violation_type": violation_type.value if violation_type else None,
        "snapshot": engine.snapshot(),
    }


@router.post("/api/attempt/app-state")
async def report_app_state(request: Request, body: AppStateBody):
    engine = _engine(request)
    try:
        violation_type = engine.detector.handle_app_state_change(body.state)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"알 수 없는 앱 상태: {body.state}")
    return {
        "violation_type": violation_type.value if violation_type else None,
        "snapshot": engine.snapshot(),
    }


@router.post("/api/attempt/dismiss-notice")
async def dismiss_notice(request: Request):
    engine = _engine(request)
    if not engine.dismiss_notice():
        raise HTTPException(status_code=400, detail="닫을 수 있는 경고가 없습니다.")
    return {"ok": True}


async def _finalize(engine: AttemptEngine, forced: bool) -> Dict[str, Any]:
    try:
        if forced:
            result = await engine.acknowledge_force_submit()
        else:
            result = await engine.submit()
    except AttemptStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FinalizeError as e:
        raise HTTPException(status_code=503 if e.retryable else 400, detail=e.message)
    return {
        "ok": True,
        "result": result.model_dump(),
        "violations": summarize_violations(engine.session.violations),
        "violation_count": len(engine.session.violations),
    }


@router.post("/api/attempt/submit")
async def submit_attempt(request: Request):
    return await _finalize(_engine(request), forced=False)


@router.post("/api/attempt/acknowledge-force-submit")
async def acknowledge_force_submit(request: Request):
    return await _finalize(_engine(request), forced=True)


@router.post("/api/attempt/execute")
async def execute_code(request: Request, body: ExecuteCodeBody):
    engine = _engine(request)
    if not engine.accepting:
        raise HTTPException(status_code=400, detail="진행 중인 시험이 아닙니다.")
    try:
        return await _gateway(request).execute_code(
            engine.session.test_slug, engine.session.attempt_id, body.item_id, body.language_id, body.code
        )
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.post("/api/reset")
async def reset_session(request: Request):
    old = session.reset(_sid(request))
    if old is not None:
        await session.dispose(old)
    return {"ok": True}

"""
api/session.py — 학습자별 인메모리 세션 (쿠키 기반)

각 학습자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 시도 엔진을 유지.
TTL(기본 1시간) 경과 시 만료되며, 만료/초기화된 세션의 엔진과 게이트웨이는 dispose()로 해제한다.
"""

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from api.config import SESSION_TTL

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_sessions: Dict[str, Dict[str, Any]] = {}
_timestamps: Dict[str, float] = {}
_expired: List[Dict[str, Any]] = []   # 정리 루프가 해제할 세션 상태


def _new_state() -> Dict[str, Any]:
    return {
        "token": "",
        "gateway": None,
        "test_slug": "",
        "engine": None,
    }


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> Optional[Dict[str, Any]]:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            _expired.append(_sessions.pop(sid))
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> Optional[Dict[str, Any]]:
    """
    세션 초기화 (토큰은 유지).

    Returns:
        교체된 이전 상태. 호출 측에서 dispose() 해야 한다.
    """
    with _lock:
        if sid not in _sessions:
            return None
        old = _sessions[sid]
        _sessions[sid] = _new_state()
        _sessions[sid]["token"] = old.get("token", "")
        _timestamps[sid] = time.time()
        return old


def cleanup_expired() -> List[Dict[str, Any]]:
    """만료된 세션을 정리. 해제할 세션 상태 목록 반환."""
    now = time.time()
    with _lock:
        expired_ids = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired_ids:
            _expired.append(_sessions.pop(sid))
            del _timestamps[sid]
        removed = list(_expired)
        _expired.clear()
    return removed


async def dispose(state: Dict[str, Any]) -> None:
    """세션이 들고 있던 엔진(감지기/타이머)과 게이트웨이 연결을 해제."""
    engine = state.get("engine")
    if engine is not None:
        engine.close()
        logger.info(f"세션 해제: 시험 {state.get('test_slug') or '-'}, 시도 상태 {engine.status.value}")
    gateway = state.get("gateway")
    if gateway is not None:
        await gateway.aclose()

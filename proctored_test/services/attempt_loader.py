"""
services/attempt_loader.py

서버 응답 → AttemptSession / AttemptEngine 조립.
Public API:
  - build_session(test_slug, attempt_data, now)   : payload → AttemptSession
  - start_attempt(gateway, test_slug)             : 새 시도 시작 후 엔진 반환
  - resume_attempt(gateway, test_slug, attempt_id): 진행 중 시도 재개
  - resolve_entry(gateway, test_slug)             : 시험 진입 시 보여줄 화면 결정

설계 원칙:
- 깨진 문항은 해당 문항만 건너뛴다 (전체 로드 실패 아님).
- 로드 실패는 AttemptLoadError 로 학습자에게 보이는 오류가 된다.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ValidationError

from config import DEFAULT_DURATION_MINUTES, DEFAULT_MAX_VIOLATIONS
from proctored_test.errors import AttemptLoadError, GatewayError
from proctored_test.models.attempt_state import AttemptSession
from proctored_test.models.result_model import TestResult
from proctored_test.models.test_item import TestItem, effective_kind
from proctored_test.services.answer_store import coerce_answer
from proctored_test.services.attempt_engine import AttemptEngine
from proctored_test.services.gateway import SubmissionGateway
from proctored_test.services.result_service import result_from_attempt_detail, result_from_attempt_summary
from proctored_test.services.timer import calculate_remaining_time

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    404: "Test not found. It may have been removed or you don't have access.",
    401: "Please log in to view this test.",
    403: "You don't have permission to view this test.",
}


def _load_error(e: GatewayError, fallback: str) -> AttemptLoadError:
    message = _STATUS_MESSAGES.get(e.status_code) or e.message or fallback
    return AttemptLoadError(message, e.status_code)


def _parse_started_at(value: Any, now: float) -> datetime:
    if isinstance(value, datetime):
        started_at = value
    elif isinstance(value, str) and value:
        started_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        logger.warning("started_at 없음, 현재 시각으로 대체")
        return datetime.fromtimestamp(now, tz=timezone.utc)
    if started_at.tzinfo is None:
        # 서버 시각은 UTC 기준
        started_at = started_at.replace(tzinfo=timezone.utc)
    return started_at


def _parse_items(raw_items: List[Mapping[str, Any]]) -> List[TestItem]:
    items: List[TestItem] = []
    for idx, raw in enumerate(raw_items):
        try:
            items.append(TestItem.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"item[{idx}]: TestItem 생성 실패 — {e.error_count()}개 오류")
    items.sort(key=lambda item: item.order)
    return items


def _restore_answers(items: List[TestItem], submissions: List[Mapping[str, Any]]) -> Dict[int, Any]:
    by_id = {item.id: item for item in items}
    answers: Dict[int, Any] = {}
    for sub in submissions:
        item = by_id.get(sub.get("test_item_id"))
        if item is None or sub.get("answer") is None:
            continue
        try:
            answers[item.id] = coerce_answer(effective_kind(item), sub["answer"])
        except ValueError as e:
            logger.warning(f"문항 {item.id}: 저장된 답안 복원 실패 — {e}")
    return answers


def build_session(
    test_slug: str,
    attempt_data: Mapping[str, Any],
    now: float,
    default_max_violations: int = DEFAULT_MAX_VIOLATIONS,
) -> AttemptSession:
    """
    시작/상세 응답으로 AttemptSession을 만든다.

    문항·제한 시간은 응답 최상위에 있으면 그 값을, 없으면 attempt_data["test"] 안의 값을 쓴다.
    남은 시간 = max(0, duration_minutes*60 - 시작 후 경과 초).

    Raises:
        AttemptLoadError: 시도 ID나 유효한 문항이 없는 경우.
    """
    test = attempt_data.get("test") or {}
    attempt_id = attempt_data.get("id", attempt_data.get("attempt_id"))
    if attempt_id is None:
        raise AttemptLoadError("시도 ID가 없는 응답입니다.")

    items = _parse_items(attempt_data.get("items") or test.get("items") or [])
    if not items:
        raise AttemptLoadError("This test has no questions.")

    try:
        duration = int(attempt_data.get("duration_minutes") or test.get("duration_minutes") or DEFAULT_DURATION_MINUTES)
        max_violations = int(
            attempt_data.get("max_violations") or test.get("max_violations") or default_max_violations
        )
        started_at = _parse_started_at(attempt_data.get("started_at"), now)
        return AttemptSession(
            attempt_id=attempt_id,
            test_slug=test_slug,
            items=items,
            answers=_restore_answers(items, attempt_data.get("submissions") or []),
            time_left_seconds=calculate_remaining_time(started_at, duration, now),
            max_violations=max_violations,
            started_at=started_at,
            duration_minutes=duration,
        )
    except (ValidationError, ValueError, TypeError) as e:
        raise AttemptLoadError(f"시도 데이터가 올바르지 않습니다: {e}") from e


async def resume_attempt(
    gateway: SubmissionGateway,
    test_slug: str,
    attempt_id: int,
    clock=time.time,
    **engine_kwargs,
) -> AttemptEngine:
    """진행 중인 시도를 상세 조회로 복원한다 (이미 쓴 시간 반영)."""
    try:
        detail = await gateway.get_attempt_detail(test_slug, attempt_id)
    except GatewayError as e:
        logger.error(f"시도 {attempt_id} 재개 실패: {e}")
        raise _load_error(e, "Failed to resume test.") from e

    session = build_session(test_slug, detail, clock())
    logger.info(f"시도 {attempt_id} 재개: 답안 {len(session.answers)}개 복원, 남은 시간 {session.time_left_seconds}초")
    return AttemptEngine(session, gateway, clock=clock, **engine_kwargs)


async def start_attempt(
    gateway: SubmissionGateway,
    test_slug: str,
    clock=time.time,
    **engine_kwargs,
) -> AttemptEngine:
    """
    새 시도를 시작한다.
    시작 응답에 문항이 없으면 상세 조회로 문항/제한 시간을 가져온다.
    """
    try:
        started = await gateway.start_attempt(test_slug)
    except GatewayError as e:
        logger.error(f"시험 {test_slug} 시작 실패: {e}")
        raise _load_error(e, "Failed to start test.") from e

    has_items = started.get("items") or (started.get("test") or {}).get("items")
    if has_items:
        session = build_session(test_slug, started, clock())
        return AttemptEngine(session, gateway, clock=clock, **engine_kwargs)

    attempt_id = started.get("id")
    if attempt_id is None:
        raise AttemptLoadError("Failed to start test.")
    return await resume_attempt(gateway, test_slug, attempt_id, clock=clock, **engine_kwargs)


class TestEntry(BaseModel):
    """시험 진입 시 보여줄 화면."""

    __test__ = False

    screen: Literal["overview", "resume", "view_result"]
    test: Dict[str, Any] = {}
    can_start_attempt: bool = False
    attempt_id: Optional[int] = None
    attempt: Optional[Dict[str, Any]] = None
    result: Optional[TestResult] = None


async def resolve_entry(gateway: SubmissionGateway, test_slug: str) -> TestEntry:
    """
    진행 중인 시도가 있으면 재개, 새 시도를 못 하는데 끝난 시도가 있으면 결과 보기,
    그 외에는 개요 화면.
    """
    try:
        response = await gateway.get_test_detail(test_slug)
    except GatewayError as e:
        logger.error(f"시험 {test_slug} 상세 조회 실패: {e}")
        raise _load_error(e, "Failed to load test details.") from e

    test: Dict[str, Any] = response.get("data") or {}
    stats = response.get("student_stats") or {}
    can_start = bool(response.get("can_start_attempt"))
    latest = stats.get("latest_attempt")

    in_progress = next((a for a in test.get("attempts") or [] if a.get("status") == "in_progress"), None)
    if in_progress is None and latest and latest.get("status") == "in_progress":
        in_progress = latest
    if in_progress is not None:
        return TestEntry(screen="resume", test=test, can_start_attempt=can_start, attempt_id=in_progress["id"])

    if not can_start and latest and latest.get("status") in ("submitted", "graded"):
        total_points = float(test.get("total_points") or 0)
        total_items = len(test.get("items") or [])
        try:
            detail = await gateway.get_attempt_detail(test_slug, latest["id"])
            result = result_from_attempt_detail(detail, total_points, total_items)
            attempt = detail
        except GatewayError as e:
            logger.warning(f"시도 {latest['id']} 상세 조회 실패, 요약 정보로 대체: {e}")
            result = result_from_attempt_summary(latest, total_points, total_items)
            attempt = latest
        return TestEntry(
            screen="view_result",
            test=test,
            can_start_attempt=can_start,
            attempt_id=latest["id"],
            attempt=attempt,
            result=result,
        )

    return TestEntry(screen="overview", test=test, can_start_attempt=can_start)

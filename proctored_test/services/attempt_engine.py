"""
services/attempt_engine.py

시험 시도 상태 머신.

상태:  in_progress → force_submitting → submitted
       in_progress → submitted              (자발적 제출)

입력: 타이머 틱, 위반 감지, 답안 입력, 문항 이동.
모든 입력은 단일 이벤트 루프 위에서 하나씩 원자적으로 적용된다 (락 없음, 순서만 지킴).
최종 제출(submitAttempt)은 시도당 한 번만 발행되며, 발행 후에는 모든 변경 입력을 거부한다.

자동 저장은 fire-and-forget: 실패해도 화면/로컬 상태를 막지 않는다.
앱이 다음 자동 저장이나 최종 제출 전에 종료되면 메모리에만 있던 답안은 유실될 수 있다.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import (
    AUTOSAVE_DEBOUNCE_SECONDS,
    FINALIZE_BACKOFF_BASE,
    FINALIZE_MAX_RETRIES,
    TICK_INTERVAL_SECONDS,
    VIOLATION_DEBOUNCE_SECONDS,
)
from proctored_test.errors import AttemptStateError, FinalizeError, GatewayError
from proctored_test.models.attempt_state import (
    ALLOWED_TRANSITIONS,
    Answer,
    AttemptNotice,
    AttemptSession,
    AttemptStatus,
    CodingAnswer,
    ForceSubmitReason,
)
from proctored_test.models.events import AnswerEvent, AttemptEvent, NavigateEvent, TickEvent, ViolationEvent
from proctored_test.models.result_model import TestResult
from proctored_test.models.test_item import ItemKind, effective_kind
from proctored_test.models.violation import Violation, ViolationType, violation_message
from proctored_test.services.answer_store import AnswerStore, coerce_answer, is_blank, serialize_answer
from proctored_test.services.gateway import SubmissionGateway
from proctored_test.services.result_service import transform_to_test_result
from proctored_test.services.timer import CountdownTimer, Ticker, format_time
from proctored_test.services.violation_detector import ViolationDetector

logger = logging.getLogger(__name__)

_TIME_UP_MESSAGE = "Time is up! Your test will be submitted."
_MAX_VIOLATIONS_MESSAGE = "You have exceeded the maximum number of violations. Your test will be submitted."
_FINALIZE_FAILED_MESSAGE = "Failed to submit test. Please try again."


def _log_task_failure(task: asyncio.Task) -> None:
    """백그라운드 자동 저장 태스크에서 처리되지 않은 예외 기록."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"자동 저장 태스크 오류: {type(exc).__name__}: {exc}", exc_info=exc)


class AttemptEngine:
    """
    시도 하나를 구동하는 상태 머신.

    Args:
        session:  로드된 AttemptSession (in_progress 상태).
        gateway:  학습자 API 클라이언트.
        clock:    Unix timestamp 를 반환하는 시계 (테스트에서 교체).
    """

    def __init__(
        self,
        session: AttemptSession,
        gateway: SubmissionGateway,
        clock=time.time,
        autosave_debounce: float = AUTOSAVE_DEBOUNCE_SECONDS,
        finalize_retries: int = FINALIZE_MAX_RETRIES,
        backoff_base: float = FINALIZE_BACKOFF_BASE,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        violation_debounce: float = VIOLATION_DEBOUNCE_SECONDS,
    ):
        self.session = session
        self._gateway = gateway
        self._clock = clock
        self._autosave_debounce = autosave_debounce
        self._finalize_retries = max(1, finalize_retries)
        self._backoff_base = backoff_base

        self.timer = CountdownTimer(session.started_at, session.duration_minutes, clock)
        self.answers = AnswerStore(session.answers)
        self.answers.subscribe(self._schedule_autosave)
        self.detector = ViolationDetector(self.record_violation, debounce_seconds=violation_debounce)
        self.ticker = Ticker(self._on_tick, tick_interval)

        self.notice: Optional[AttemptNotice] = None
        self.result: Optional[TestResult] = None
        self.last_error: Optional[str] = None
        self.is_submitting = False

        self._unsaved: Dict[int, Answer] = {}
        self._autosave_tasks: Dict[int, asyncio.Task] = {}

    # ── 상태 조회 ───────────────────────────────────────────────────────────

    @property
    def status(self) -> AttemptStatus:
        return self.session.status

    @property
    def accepting(self) -> bool:
        """변경 입력(틱/위반/답안/이동)을 받을 수 있는 상태인지."""
        return self.session.status is AttemptStatus.IN_PROGRESS and not self.is_submitting

    @property
    def progress_percent(self) -> float:
        return self.session.progress_percent

    @property
    def answered_count(self) -> int:
        return self.answers.answered_count(self.session.items)

    @property
    def unanswered_count(self) -> int:
        return len(self.answers.unanswered_ids(self.session.items))

    # ── 수명 주기 ───────────────────────────────────────────────────────────

    def start(self) -> None:
        """감지기와 타이머를 등록한다. 이벤트 루프 안에서 호출해야 한다."""
        self.detector.start()
        self.tick()
        if self.accepting:
            self.ticker.start()
        logger.info(
            f"시도 {self.session.attempt_id} 시작: 문항 {len(self.session.items)}개, "
            f"남은 시간 {format_time(self.session.time_left_seconds)}"
        )

    def close(self) -> None:
        """감지기/타이머 해제, 대기 중인 자동 저장 취소."""
        self.detector.stop()
        self.ticker.stop()
        for task in self._autosave_tasks.values():
            task.cancel()
        self._autosave_tasks.clear()

    async def __aenter__(self) -> "AttemptEngine":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ── 전이 ────────────────────────────────────────────────────────────────

    def _transition(self, new_status: AttemptStatus) -> None:
        current = self.session.status
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise AttemptStateError(f"{current.value} → {new_status.value} 전이는 허용되지 않습니다.")
        self.session.status = new_status
        logger.info(f"시도 {self.session.attempt_id}: {current.value} → {new_status.value}")

    def _on_tick(self) -> bool:
        self.tick()
        return self.session.status is AttemptStatus.IN_PROGRESS

    def tick(self) -> bool:
        """
        남은 시간을 마감 시각 기준으로 다시 계산한다. 0이 되면 강제 제출 경로로 간다.
        시간 초과는 위반으로 기록하지 않는다.
        """
        if not self.accepting:
            return False
        remaining = min(self.session.time_left_seconds, self.timer.remaining())
        self.session.time_left_seconds = remaining
        if remaining == 0:
            self._begin_force_submit(ForceSubmitReason.TIME_UP)
        return True

    def record_violation(self, violation_type: Any, details: Optional[str] = None) -> Optional[AttemptNotice]:
        """
        위반 1건을 기록한다.

        Returns:
            학습자에게 띄울 안내. 기록되지 않았으면 None.
        """
        if not self.accepting:
            logger.info(f"위반 무시 ({self.session.status.value}): {violation_type}")
            return None

        vtype = ViolationType.parse(violation_type)
        self.session.violations.append(
            Violation(
                type=vtype,
                timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
                details=details,
            )
        )
        count = len(self.session.violations)
        max_violations = self.session.max_violations
        logger.warning(f"시도 {self.session.attempt_id} 위반 기록: {vtype.value} ({count}/{max_violations})")

        if count >= max_violations:
            self._begin_force_submit(ForceSubmitReason.MAX_VIOLATIONS, vtype)
        else:
            remaining = max_violations - count
            self.notice = AttemptNotice(
                message=violation_message(vtype),
                violation_type=vtype,
                violation_count=count,
                max_violations=max_violations,
                remaining_violations=remaining,
                is_final_warning=remaining <= 1,
            )
        return self.notice

    def _begin_force_submit(self, reason: ForceSubmitReason, vtype: Optional[ViolationType] = None) -> None:
        self._transition(AttemptStatus.FORCE_SUBMITTING)
        self.session.force_reason = reason
        if reason is ForceSubmitReason.TIME_UP:
            message = _TIME_UP_MESSAGE
        else:
            message = f"{violation_message(vtype)}. {_MAX_VIOLATIONS_MESSAGE}"
        self.notice = AttemptNotice(
            message=message,
            violation_type=vtype,
            violation_count=len(self.session.violations),
            max_violations=self.session.max_violations,
            remaining_violations=self.session.remaining_violations,
            is_force_submit=True,
            reason=reason,
        )
        logger.warning(f"시도 {self.session.attempt_id} 강제 제출 대기: {reason.value}")

    def dismiss_notice(self) -> bool:
        """경고 닫기. 강제 제출 안내는 닫을 수 없다."""
        if self.notice is None or not self.notice.dismissible:
            return False
        self.notice = None
        return True

    def set_answer(self, item_id: int, value: Any) -> bool:
        """
        답안 덮어쓰기 (마지막 쓰기 우선) + 자동 저장 예약.

        Returns:
            반영되었으면 True. 종료 상태이거나 응답할 수 없는 문항이면 False.

        Raises:
            ValueError: 시도에 없는 문항이거나 답안 형식이 맞지 않는 경우.
        """
        if not self.accepting:
            return False
        item = self.session.item_by_id(item_id)
        if item is None:
            raise ValueError(f"문항 {item_id}이(가) 이 시도에 없습니다.")

        kind = effective_kind(item)
        if kind is ItemKind.UNKNOWN:
            logger.info(f"문항 {item_id}: 응답할 수 없는 유형 ({item.itemable_type!r})")
            return False

        self.answers.set(item_id, coerce_answer(kind, value))
        return True

    def navigate(self, index: int) -> bool:
        """
        Raises:
            ValueError: 범위를 벗어난 인덱스 (현재 인덱스는 그대로).
        """
        if not self.accepting:
            return False
        if not 0 <= index < len(self.session.items):
            raise ValueError(f"문항 인덱스 {index}이(가) 범위를 벗어났습니다 (0~{len(self.session.items) - 1}).")
        self.session.current_item_index = index
        return True

    def dispatch(self, event: AttemptEvent) -> Any:
        if isinstance(event, TickEvent):
            return self.tick()
        if isinstance(event, ViolationEvent):
            return self.record_violation(event.violation_type, event.details)
        if isinstance(event, AnswerEvent):
            return self.set_answer(event.item_id, event.value)
        if isinstance(event, NavigateEvent):
            return self.navigate(event.index)
        raise TypeError(f"알 수 없는 이벤트: {type(event).__name__}")

    def apply(self, *events: AttemptEvent) -> List[Any]:
        """
        같은 평가 주기에 들어온 이벤트 묶음을 적용한다.
        도착 순서를 유지하되 타이머 틱을 먼저 처리한다 (시간 초과 우선).
        """
        ordered = sorted(events, key=lambda e: 0 if isinstance(e, TickEvent) else 1)
        return [self.dispatch(event) for event in ordered]

    # ── 자동 저장 ───────────────────────────────────────────────────────────

    def _schedule_autosave(self, item_id: int, answer: Answer) -> None:
        pending = self._autosave_tasks.pop(item_id, None)
        if pending is not None:
            pending.cancel()

        if is_blank(answer):
            self._unsaved.pop(item_id, None)
            return
        self._unsaved[item_id] = answer

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"문항 {item_id}: 이벤트 루프 없음, 제출 직전에 저장")
            return
        task = loop.create_task(self._autosave(item_id, answer))
        task.add_done_callback(_log_task_failure)
        self._autosave_tasks[item_id] = task

    async def _autosave(self, item_id: int, answer: Answer) -> None:
        try:
            if self._autosave_debounce > 0:
                await asyncio.sleep(self._autosave_debounce)
            if self.session.status is AttemptStatus.SUBMITTED:
                return
            await self._send_answer(item_id, answer)
        finally:
            if self._autosave_tasks.get(item_id) is asyncio.current_task():
                del self._autosave_tasks[item_id]

    async def _send_answer(self, item_id: int, answer: Answer) -> bool:
        try:
            await self._gateway.submit_answer(
                self.session.test_slug, self.session.attempt_id, item_id, serialize_answer(answer)
            )
        except GatewayError as e:
            if "not in progress" in e.message.lower():
                logger.info(f"자동 저장 생략: 시도가 더 이상 진행 중이 아님 (문항 {item_id})")
            else:
                logger.warning(f"자동 저장 실패 (문항 {item_id}): {e.message}")
            return False

        if self._unsaved.get(item_id) is answer:
            del self._unsaved[item_id]
        logger.debug(f"자동 저장 완료 (문항 {item_id})")
        return True

    async def _flush_autosaves(self) -> None:
        """대기 중인 자동 저장을 취소하고 미저장 답안을 즉시 한 번 보낸다."""
        tasks = list(self._autosave_tasks.values())
        self._autosave_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for item_id, answer in list(self._unsaved.items()):
            await self._send_answer(item_id, answer)

    # ── 최종 제출 ───────────────────────────────────────────────────────────

    async def submit(self) -> TestResult:
        """
        자발적 제출. 응답 수와 무관하게 in_progress 에서만 가능.
        실패하면 in_progress 그대로 남고 FinalizeError 를 올린다.
        """
        if self.session.status is AttemptStatus.SUBMITTED:
            return self.result
        if self.session.status is AttemptStatus.FORCE_SUBMITTING:
            raise AttemptStateError("강제 제출 확인이 필요합니다.")
        if self.is_submitting:
            raise AttemptStateError("이미 제출 중입니다.")
        return await self._finalize()

    async def acknowledge_force_submit(self) -> TestResult:
        """강제 제출 확인. force_submitting 에서만 가능."""
        if self.session.status is AttemptStatus.SUBMITTED:
            return self.result
        if self.session.status is not AttemptStatus.FORCE_SUBMITTING:
            raise AttemptStateError("강제 제출 대기 상태가 아닙니다.")
        if self.is_submitting:
            raise AttemptStateError("이미 제출 중입니다.")
        return await self._finalize()

    async def _finalize(self) -> TestResult:
        self.is_submitting = True
        self.last_error = None
        try:
            await self._flush_autosaves()
            data = await self._submit_with_retry()
        except FinalizeError as e:
            self.last_error = e.message
            raise
        finally:
            self.is_submitting = False

        self.result = transform_to_test_result(data)
        self._transition(AttemptStatus.SUBMITTED)
        self.notice = None
        self.close()
        logger.info(
            f"시도 {self.session.attempt_id} 제출 완료: "
            f"{self.result.score}/{self.result.total_points} ({self.result.percentage:.1f}%)"
        )
        return self.result

    async def _submit_with_retry(self) -> Dict[str, Any]:
        """submitAttempt 호출 + 지수 백오프 재시도 (일시적 오류만)."""
        last_error: Optional[GatewayError] = None

        for attempt in range(1, self._finalize_retries + 1):
            try:
                return await self._gateway.submit_attempt(self.session.test_slug, self.session.attempt_id)
            except GatewayError as e:
                last_error = e
                if e.transient and attempt < self._finalize_retries:
                    wait = self._backoff_base * (2 ** (attempt - 1))
                    logger.warning(
                        f"최종 제출 실패, {wait:.1f}초 후 재시도 ({attempt}/{self._finalize_retries}): {e.message}"
                    )
                    await asyncio.sleep(wait)
                else:
                    break

        logger.error(f"최종 제출 최종 실패 (시도 {self.session.attempt_id}): {last_error}")
        if last_error is not None and not last_error.transient:
            raise FinalizeError(last_error.message, retryable=False)
        raise FinalizeError(_FINALIZE_FAILED_MESSAGE)

    # ── 외부 표시용 ─────────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        session = self.session
        answers = {
            str(item_id): answer.model_dump() if isinstance(answer, CodingAnswer) else answer
            for item_id, answer in self.answers.snapshot().items()
        }
        return {
            "attempt_id": session.attempt_id,
            "test_slug": session.test_slug,
            "status": session.status.value,
            "force_reason": session.force_reason.value if session.force_reason else None,
            "current_item_index": session.current_item_index,
            "total": len(session.items),
            "item_ids": [item.id for item in session.items],
            "time_left_seconds": session.time_left_seconds,
            "time_left": format_time(session.time_left_seconds),
            "progress_percent": self.progress_percent,
            "answered_count": self.answered_count,
            "unanswered_count": self.unanswered_count,
            "answers": answers,
            "violations": [v.model_dump(mode="json") for v in session.violations],
            "max_violations": session.max_violations,
            "remaining_violations": session.remaining_violations,
            "notice": self.notice.model_dump(mode="json") if self.notice else None,
            "is_submitting": self.is_submitting,
            "last_error": self.last_error,
            "result": self.result.model_dump() if self.result else None,
        }

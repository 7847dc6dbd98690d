"""
services/timer.py

남은 시험 시간을 계산하는 타이머.
남은 시간은 매번 "마감 시각 - 현재 시각"으로 계산한다 (단순 감소 카운터 아님).
앱이 일시정지/백그라운드였다가 돌아와도 표시 시간이 곧바로 맞는 값으로 점프한다.
"""

import asyncio
import logging
import math
import time
from datetime import datetime
from typing import Callable, Optional

from config import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"타이머 태스크 오류로 정지: {type(exc).__name__}: {exc}", exc_info=exc)


def calculate_remaining_time(started_at: datetime, duration_minutes: int, now: float) -> int:
    """
    시도 시작 시각과 제한 시간으로 남은 시간(초)을 계산한다.

    Args:
        started_at:       서버가 준 시작 시각 (timezone-aware 권장).
        duration_minutes: 제한 시간 (분).
        now:              현재 시각 (Unix timestamp).

    Returns:
        0 이상의 남은 초. 재개한 시도는 이미 쓴 시간만큼 줄어든 값.
    """
    elapsed_seconds = math.floor(now - started_at.timestamp())
    return max(0, duration_minutes * 60 - elapsed_seconds)


def format_time(seconds: int) -> str:
    """초 → "M:SS" (분은 자릿수 제한 없음)."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


class CountdownTimer:
    """고정 마감 시각 기준 카운트다운."""

    def __init__(self, started_at: datetime, duration_minutes: int, clock: Clock = time.time):
        self.started_at = started_at
        self.duration_minutes = duration_minutes
        self._clock = clock

    @property
    def deadline(self) -> float:
        return self.started_at.timestamp() + self.duration_minutes * 60

    def remaining(self) -> int:
        return calculate_remaining_time(self.started_at, self.duration_minutes, self._clock())

    def is_expired(self) -> bool:
        return self.remaining() == 0


class Ticker:
    """
    1Hz 틱 발생기 (asyncio 태스크). 렌더링과 분리된 명시적 스케줄러.

    on_tick 이 False를 반환하면 스스로 멈춘다.
    """

    def __init__(self, on_tick: Callable[[], bool], interval: float = TICK_INTERVAL_SECONDS):
        self._on_tick = on_tick
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(_log_task_failure)

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self._on_tick():
                logger.info("타이머 정지: 더 이상 틱을 받지 않는 상태")
                return

"""
services/violation_detector.py

환경 신호(앱 생명주기, 클립보드, 스크린샷/화면 녹화 알림)를 위반 유형으로 바꿔
리스너(시도 상태 머신)에게 전달한다.

기본 계약: 신호 1회 = 위반 1회. 중복 제거/병합 없음.
VIOLATION_DEBOUNCE_SECONDS > 0 이면 같은 유형의 연속 신호를 그 구간 동안 무시한다.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import VIOLATION_DEBOUNCE_SECONDS
from proctored_test.models.violation import ViolationType

logger = logging.getLogger(__name__)

ViolationListener = Callable[[ViolationType, Optional[str]], Any]


class AppState(str, Enum):
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


# 플랫폼별로 이름이 다른 원시 신호 → 위반 유형
_SIGNAL_ALIASES: Dict[str, ViolationType] = {
    "app_background": ViolationType.APP_BACKGROUND,
    "background": ViolationType.APP_BACKGROUND,
    "tab_switch": ViolationType.TAB_SWITCH,
    "blur": ViolationType.TAB_SWITCH,
    "visibility_hidden": ViolationType.TAB_SWITCH,
    "copy_paste": ViolationType.COPY_PASTE,
    "copy": ViolationType.COPY_PASTE,
    "cut": ViolationType.COPY_PASTE,
    "paste": ViolationType.COPY_PASTE,
    "clipboard": ViolationType.COPY_PASTE,
    "screenshot": ViolationType.SCREENSHOT,
    "screen_capture": ViolationType.SCREENSHOT,
    "screen_record": ViolationType.SCREEN_RECORD,
    "screen_recording": ViolationType.SCREEN_RECORD,
}


def _normalize(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def classify_signal(raw: object) -> ViolationType:
    """원시 신호 이름 → 위반 유형. 모르는 신호는 UNKNOWN."""
    if isinstance(raw, ViolationType):
        return raw
    if not isinstance(raw, str):
        return ViolationType.UNKNOWN
    return _SIGNAL_ALIASES.get(_normalize(raw), ViolationType.UNKNOWN)


class ViolationDetector:
    """
    시도 하나에 한 번 등록되는 감지기.

    start() 전이나 stop() 후에 들어온 신호는 무시된다.
    with 문으로 쓰면 블록을 벗어날 때 자동으로 해제된다.
    """

    def __init__(
        self,
        listener: ViolationListener,
        debounce_seconds: float = VIOLATION_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._listener = listener
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._active = False
        self._app_state = AppState.ACTIVE
        self._last_seen: Dict[ViolationType, float] = {}

    @property
    def active(self) -> bool:
        return self._active

    @property
    def app_state(self) -> AppState:
        return self._app_state

    def start(self) -> None:
        self._active = True
        self._app_state = AppState.ACTIVE
        self._last_seen.clear()
        logger.info("위반 감지기 등록")

    def stop(self) -> None:
        if self._active:
            logger.info("위반 감지기 해제")
        self._active = False

    def __enter__(self) -> "ViolationDetector":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def handle_signal(self, raw: object, details: Optional[str] = None) -> Optional[ViolationType]:
        """
        원시 신호 하나를 처리한다.

        Returns:
            리스너에 전달한 위반 유형. 무시된 경우 None.
        """
        if not self._active:
            return None

        violation_type = classify_signal(raw)
        if violation_type is ViolationType.UNKNOWN:
            logger.debug(f"알 수 없는 신호: {raw!r}")

        if self._debounced(violation_type):
            logger.info(f"디바운스로 무시된 신호: {violation_type.value}")
            return None

        self._listener(violation_type, details)
        return violation_type

    def handle_app_state_change(self, next_state: str) -> Optional[ViolationType]:
        """
        앱 생명주기 전이 처리.
        active → background/inactive 전이만 app_background 위반으로 기록한다.
        """
        next_app_state = AppState(next_state)
        previous = self._app_state
        self._app_state = next_app_state

        if previous is AppState.ACTIVE and next_app_state in (AppState.BACKGROUND, AppState.INACTIVE):
            return self.handle_signal(ViolationType.APP_BACKGROUND, f"{previous.value} -> {next_app_state.value}")
        return None

    def _debounced(self, violation_type: ViolationType) -> bool:
        if self.debounce_seconds <= 0:
            return False
        now = self._clock()
        last = self._last_seen.get(violation_type)
        self._last_seen[violation_type] = now
        return last is not None and now - last < self.debounce_seconds

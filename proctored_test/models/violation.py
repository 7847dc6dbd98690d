"""
models/violation.py

부정행위(violation) 유형과 기록 모델.
기록은 추가만 가능하며, 한 번 남긴 기록은 수정/삭제하지 않는다.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ViolationType(str, Enum):
    APP_BACKGROUND = "app_background"
    TAB_SWITCH = "tab_switch"
    COPY_PASTE = "copy_paste"
    SCREENSHOT = "screenshot"
    SCREEN_RECORD = "screen_record"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "ViolationType":
        """정의되지 않은 값은 UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_MESSAGES = {
    ViolationType.APP_BACKGROUND: "You switched away from the app",
    ViolationType.TAB_SWITCH: "You switched to another app",
    ViolationType.COPY_PASTE: "Copy/paste detected",
    ViolationType.SCREENSHOT: "Screenshot attempt detected",
    ViolationType.SCREEN_RECORD: "Screen recording detected",
}


def violation_message(violation_type: ViolationType) -> str:
    """학습자에게 보여줄 위반 안내 문구."""
    return _MESSAGES.get(violation_type, "Suspicious activity detected")


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ViolationType
    timestamp: datetime = Field(..., description="감지 시각 (UTC)")
    details: Optional[str] = None

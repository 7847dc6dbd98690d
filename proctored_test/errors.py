"""
errors.py — 시험 시도 엔진 예외

자동 저장 실패, 알 수 없는 문항 유형 같은 국소적 문제는 예외로 올라오지 않는다.
학습자에게 보여야 하는 것은 로드 실패와 최종 제출 실패뿐이다.
"""

from typing import Optional

_TRANSIENT_STATUS = (408, 429, 500, 502, 503, 504)


class GatewayError(Exception):
    """학습자 API 호출 실패. status_code가 None이면 네트워크/타임아웃 오류."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.status_code is None or self.status_code in _TRANSIENT_STATUS


class AttemptLoadError(Exception):
    """시험/시도 로드 실패 (startAttempt, getAttemptDetail 등)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FinalizeError(Exception):
    """최종 제출 실패. 상태는 그대로이며 같은 제출을 다시 시도할 수 있다."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class AttemptStateError(Exception):
    """현재 상태에서 허용되지 않는 전이 요청."""

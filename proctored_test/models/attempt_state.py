"""
models/attempt_state.py

시험 시도(attempt) 진행 상태를 담는 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
상태 전이 규칙은 services/attempt_engine.py 가 담당한다.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from proctored_test.models.test_item import TestItem
from proctored_test.models.violation import Violation, ViolationType


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    FORCE_SUBMITTING = "force_submitting"
    SUBMITTED = "submitted"


# 허용되는 전이 (역방향 없음)
ALLOWED_TRANSITIONS = {
    AttemptStatus.IN_PROGRESS: {AttemptStatus.FORCE_SUBMITTING, AttemptStatus.SUBMITTED},
    AttemptStatus.FORCE_SUBMITTING: {AttemptStatus.SUBMITTED},
    AttemptStatus.SUBMITTED: set(),
}


class ForceSubmitReason(str, Enum):
    TIME_UP = "time_up"
    MAX_VIOLATIONS = "max_violations"


class CodingAnswer(BaseModel):
    """코딩 문제 답안. 전송 전 JSON 문자열로 직렬화된다."""

    code: str
    language_id: Optional[int] = None


Answer = Union[str, CodingAnswer]


class AttemptNotice(BaseModel):
    """
    학습자에게 띄우는 경고/종료 안내.

    is_force_submit 이면 닫을 수 없고, 강제 제출 확인으로만 해소된다.
    is_final_warning 은 표시용 구분일 뿐 전이 규칙에는 영향이 없다.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    violation_type: Optional[ViolationType] = None
    violation_count: int = 0
    max_violations: int = 0
    remaining_violations: int = 0
    is_final_warning: bool = False
    is_force_submit: bool = False
    reason: Optional[ForceSubmitReason] = None

    @property
    def dismissible(self) -> bool:
        return not self.is_force_submit


class AttemptSession(BaseModel):
    """
    하나의 시험 시도 전체 상태 (aggregate root).

    Attributes:
        attempt_id:          서버가 발급한 시도 ID.
        test_slug:           시험 식별 slug.
        items:               문항 목록 (순서 고정).
        answers:             답안지. {item.id: Answer}
        violations:          위반 기록 (추가만 가능).
        time_left_seconds:   남은 시간 (초). 증가하지 않는다.
        current_item_index:  현재 문항 인덱스 (0-based).
        status:              진행 상태.
        max_violations:      허용 위반 횟수. 이 값에 도달하면 강제 제출.
        force_reason:        강제 제출 사유 (강제 제출 경로일 때만).
        started_at:          서버 기준 시도 시작 시각.
        duration_minutes:    제한 시간 (분).
    """

    attempt_id: int
    test_slug: str
    items: List[TestItem] = Field(..., description="문항 목록")
    answers: Dict[int, Any] = Field(
        default_factory=dict,
        description="답안지. key: item.id, value: str 또는 CodingAnswer"
    )
    violations: List[Violation] = Field(default_factory=list)
    time_left_seconds: int = Field(default=0, ge=0)
    current_item_index: int = Field(default=0, ge=0)
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    max_violations: int = Field(default=3, ge=1)
    force_reason: Optional[ForceSubmitReason] = None
    started_at: datetime
    duration_minutes: int = Field(default=60, ge=0)

    @model_validator(mode="after")
    def validate_items(self) -> "AttemptSession":
        if not self.items:
            raise ValueError("문항이 없는 시도는 시작할 수 없습니다.")
        if self.current_item_index >= len(self.items):
            raise ValueError(
                f"current_item_index({self.current_item_index})가 문항 수({len(self.items)})를 벗어났습니다."
            )
        return self

    @property
    def progress_percent(self) -> float:
        return (self.current_item_index + 1) / len(self.items) * 100

    @property
    def answered_count(self) -> int:
        return sum(1 for item in self.items if self.answers.get(item.id) is not None)

    @property
    def remaining_violations(self) -> int:
        return max(0, self.max_violations - len(self.violations))

    @property
    def current_item(self) -> TestItem:
        return self.items[self.current_item_index]

    def item_by_id(self, item_id: int) -> Optional[TestItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

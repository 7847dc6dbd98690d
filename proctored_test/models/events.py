"""
models/events.py

상태 머신으로 들어오는 입력 이벤트.
타이머 틱, 위반 감지, 사용자 입력(답안/이동) 세 생산자가 같은 큐로 흘려보낸다.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, field_validator

from proctored_test.models.violation import ViolationType


class TickEvent(BaseModel):
    kind: Literal["tick"] = "tick"


class ViolationEvent(BaseModel):
    kind: Literal["violation"] = "violation"
    violation_type: ViolationType
    details: Optional[str] = None

    @field_validator("violation_type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> ViolationType:
        return ViolationType.parse(v)


class AnswerEvent(BaseModel):
    kind: Literal["answer"] = "answer"
    item_id: int
    value: Any


class NavigateEvent(BaseModel):
    kind: Literal["navigate"] = "navigate"
    index: int


AttemptEvent = Union[TickEvent, ViolationEvent, AnswerEvent, NavigateEvent]

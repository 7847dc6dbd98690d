"""
services/answer_store.py

메모리 답안지. 문항별 마지막 쓰기 우선(last-write-wins)이며,
변경 시 등록된 리스너에게 (item_id, answer)를 알린다.
저장(자동 저장/제출)과는 분리되어 있다.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Optional

from pydantic import ValidationError

from proctored_test.models.attempt_state import Answer, CodingAnswer
from proctored_test.models.test_item import ItemKind, TestItem

logger = logging.getLogger(__name__)

AnswerListener = Callable[[int, Any], None]


def coerce_answer(kind: ItemKind, value: Any) -> Answer:
    """
    문항 유형에 맞는 답안 형태로 변환한다.

    - quiz / essay: 문자열
    - coding: CodingAnswer (dict 또는 저장된 JSON 문자열도 허용)

    Raises:
        ValueError: 유형에 맞지 않는 답안.
    """
    if kind is ItemKind.CODING:
        if isinstance(value, CodingAnswer):
            return value
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError:
                decoded = None
            # 저장된 답안이 순수 코드 문자열인 경우
            value = decoded if isinstance(decoded, dict) else {"code": value}
        try:
            return CodingAnswer.model_validate(value)
        except ValidationError as e:
            raise ValueError(f"코딩 답안 형식이 올바르지 않습니다: {e.error_count()}개 오류")

    if kind in (ItemKind.QUIZ, ItemKind.ESSAY):
        if not isinstance(value, str):
            raise ValueError(f"{kind.value} 답안은 문자열이어야 합니다.")
        return value

    raise ValueError("응답할 수 없는 문항입니다.")


def serialize_answer(answer: Answer) -> str:
    """전송용 직렬화. 코딩 답안은 JSON 문자열로 보낸다."""
    if isinstance(answer, CodingAnswer):
        return json.dumps(answer.model_dump(), ensure_ascii=False)
    return answer


def is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return answer.strip() == ""
    if isinstance(answer, CodingAnswer):
        return answer.code.strip() == ""
    return False


def count_words(text: str) -> int:
    """공백 기준 단어 수."""
    return len([w for w in re.split(r"\s+", text.strip()) if w])


class AnswerStore:
    """item_id → 답안 매핑 + 변경 알림."""

    def __init__(self, answers: Optional[MutableMapping[int, Any]] = None):
        # 넘겨받은 dict를 그대로 공유한다 (AttemptSession.answers)
        self._answers = answers if answers is not None else {}
        self._listeners: List[AnswerListener] = []

    def subscribe(self, listener: AnswerListener) -> Callable[[], None]:
        """리스너 등록. 반환된 함수를 호출하면 해제된다."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set(self, item_id: int, answer: Answer) -> None:
        self._answers[item_id] = answer
        for listener in list(self._listeners):
            listener(item_id, answer)

    def get(self, item_id: int, default: Any = None) -> Any:
        return self._answers.get(item_id, default)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._answers

    def __len__(self) -> int:
        return len(self._answers)

    def snapshot(self) -> Dict[int, Any]:
        return dict(self._answers)

    def answered_count(self, items: Iterable[TestItem]) -> int:
        return sum(1 for item in items if self._answers.get(item.id) is not None)

    def unanswered_ids(self, items: Iterable[TestItem]) -> List[int]:
        return [item.id for item in items if is_blank(self._answers.get(item.id))]

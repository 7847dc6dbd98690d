# FILE: tests/conftest.py

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from proctored_test.errors import GatewayError
from proctored_test.services.attempt_engine import AttemptEngine
from proctored_test.services.attempt_loader import build_session

START = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """테스트용 시계. 호출하면 현재 Unix timestamp를 반환."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """SubmissionGateway 대역. 호출 기록 + 실패 주입."""

    def __init__(self, token: str = "", attempt: dict = None):
        self.token = token
        self.attempt = attempt
        self.answer_calls = []
        self.submit_calls = 0
        self.submit_errors = []        # submit_attempt 호출마다 앞에서부터 하나씩 raise
        self.answer_error = None
        self.closed = False
        self.result_data = {
            "total_score": 40,
            "max_possible_score": 80,
            "needs_manual_grading": False,
            "graded_items": 4,
            "total_items": 4,
        }

    async def start_attempt(self, test_slug):
        await asyncio.sleep(0)
        return self.attempt

    async def get_attempt_detail(self, test_slug, attempt_id):
        await asyncio.sleep(0)
        return self.attempt

    async def submit_answer(self, test_slug, attempt_id, item_id, answer):
        await asyncio.sleep(0)
        self.answer_calls.append((item_id, answer))
        if self.answer_error is not None:
            raise self.answer_error
        return {"success": True}

    async def submit_attempt(self, test_slug, attempt_id):
        await asyncio.sleep(0)
        self.submit_calls += 1
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return self.result_data

    async def execute_code(self, test_slug, attempt_id, item_id, language_id, code):
        return {"stdout": "ok\n"}

    async def aclose(self):
        self.closed = True


def make_items():
    return [
        {
            "id": 11,
            "itemable_type": "App\\Models\\QuizQuestion",
            "order": 1,
            "points": 10,
            "itemable": {"id": 1, "question": "2 + 2 = ?", "options": '["3", "4", "5"]'},
        },
        {
            "id": 12,
            "itemable_type": "App\\Models\\CodingChallenge",
            "order": 2,
            "points": 30,
            "itemable": {
                "id": 2,
                "problem_statement": "Print hello",
                "programming_languages": [{"id": 1, "language_id": 71, "name": "Python"}],
            },
        },
        {
            "id": 13,
            "itemable_type": "App\\Models\\EssayQuestion",
            "order": 3,
            "points": 20,
            "itemable": {"id": 3, "question": "Explain recursion", "word_limit": 100},
        },
        {
            "id": 14,
            "itemable_type": "App\\Models\\DragAndDrop",
            "order": 4,
            "points": 20,
            "itemable": {"id": 4},
        },
    ]


def make_attempt(started_at=START, duration_minutes=10, max_violations=3, submissions=None):
    return {
        "id": 501,
        "started_at": started_at.isoformat(),
        "status": "in_progress",
        "max_violations": max_violations,
        "submissions": submissions or [],
        "test": {"duration_minutes": duration_minutes, "items": make_items()},
    }


@pytest.fixture
def clock():
    return FakeClock(START.timestamp())


@pytest.fixture
def gateway():
    return FakeGateway(attempt=make_attempt())


@pytest.fixture
def make_engine(clock, gateway):
    """AttemptEngine 팩토리 (자동 저장 디바운스/백오프 0)."""

    def _make(max_violations=3, duration_minutes=10, elapsed=timedelta(0), **kwargs):
        attempt = make_attempt(duration_minutes=duration_minutes, max_violations=max_violations)
        clock.now = (START + elapsed).timestamp()
        session = build_session("python-basics", attempt, clock())
        kwargs.setdefault("autosave_debounce", 0)
        kwargs.setdefault("backoff_base", 0)
        return AttemptEngine(session, gateway, clock=clock, **kwargs)

    return _make


def transient_error():
    return GatewayError("Service Unavailable", 503)

"""
services/result_service.py

최종 제출 응답 / 지난 시도 상세를 결과 화면용 TestResult로 변환하는 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

from collections import Counter
from typing import Any, Dict, Iterable, Mapping, Optional

from config import PASS_PERCENTAGE
from proctored_test.models.result_model import TestResult
from proctored_test.models.violation import Violation


def calculate_percentage(score: float, max_score: float) -> float:
    """
    획득 점수를 100점 만점 백분율로 환산한다.

    Returns:
        0.0 ~ 100.0 범위의 값. 만점이 0 이하이면 0.0 반환.
    """
    if max_score <= 0:
        return 0.0
    return score / max_score * 100


def is_passed(percentage: float, pass_percentage: float = PASS_PERCENTAGE) -> bool:
    """
    합격 여부를 반환한다.

    Args:
        percentage:      calculate_percentage()가 반환한 값.
        pass_percentage: 합격 기준 (기본값 50.0).

    Returns:
        percentage >= pass_percentage 이면 True.
    """
    return percentage >= pass_percentage


def transform_to_test_result(data: Mapping[str, Any]) -> TestResult:
    """
    submitAttempt 응답의 data 부분을 TestResult로 변환한다.

    Args:
        data: {"total_score", "max_possible_score", "needs_manual_grading",
               "graded_items", "total_items"}
    """
    score = float(data.get("total_score") or 0)
    total_points = float(data.get("max_possible_score") or 0)
    percentage = calculate_percentage(score, total_points)

    return TestResult(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=is_passed(percentage),
        needs_manual_grading=bool(data.get("needs_manual_grading", False)),
        graded_items=int(data.get("graded_items") or 0),
        total_items=int(data.get("total_items") or 0),
    )


def result_from_attempt_detail(
    attempt: Mapping[str, Any],
    fallback_total_points: float = 0,
    fallback_total_items: int = 0,
) -> TestResult:
    """
    지난 시도 상세(getAttemptDetail)로 결과를 재구성한다 (리뷰 화면용).

    채점 완료 문항: score가 있는 submission.
    채점 완료 문항 수가 전체 문항 수보다 적으면 수동 채점 대기로 본다.
    """
    test = attempt.get("test") or {}
    total_points = float(test.get("total_points") or fallback_total_points or 0)
    score = float(attempt.get("total_score") or 0)
    percentage = calculate_percentage(score, total_points)

    submissions = attempt.get("submissions") or []
    graded_items = sum(1 for sub in submissions if sub.get("score") is not None)
    total_items = len(test.get("items") or []) or fallback_total_items

    return TestResult(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=is_passed(percentage),
        needs_manual_grading=graded_items < total_items,
        graded_items=graded_items,
        total_items=total_items,
    )


def result_from_attempt_summary(
    attempt: Mapping[str, Any],
    total_points: float,
    total_items: int,
) -> TestResult:
    """
    상세 조회가 실패했을 때 시도 목록의 요약 정보만으로 결과를 만든다.
    graded 상태면 전 문항 채점 완료, submitted 상태면 수동 채점 대기.
    """
    score = float(attempt.get("total_score") or 0)
    percentage = calculate_percentage(score, total_points)
    status: Optional[str] = attempt.get("status")

    return TestResult(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=is_passed(percentage),
        needs_manual_grading=status == "submitted",
        graded_items=total_items if status == "graded" else 0,
        total_items=total_items,
    )


def summarize_violations(violations: Iterable[Violation]) -> Dict[str, int]:
    """위반 유형별 횟수. 유형 이름 기준 정렬."""
    counts = Counter(v.type.value for v in violations)
    return dict(sorted(counts.items()))

from pydantic import BaseModel, Field


class TestResult(BaseModel):
    """결과 화면에 넘겨줄 최종 점수 요약."""

    __test__ = False

    score: float = Field(..., description="획득 점수")
    total_points: float = Field(..., description="만점")
    percentage: float = Field(..., description="0.0 ~ 100.0 환산 점수")
    passed: bool
    needs_manual_grading: bool = False
    graded_items: int = 0
    total_items: int = 0

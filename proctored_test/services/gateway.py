"""
services/gateway.py

학습자 시험 API (Submission Gateway) 비동기 REST 클라이언트.
Public API:
  - start_attempt(test_slug)                              : 새 시도 시작
  - submit_answer(test_slug, attempt_id, item_id, answer) : 문항별 자동 저장
  - submit_attempt(test_slug, attempt_id)                 : 최종 제출
  - get_attempt_detail(test_slug, attempt_id)             : 지난 시도 상세 (리뷰용)

응답 봉투: {"success": bool, "data": ..., "message": str}
HTTP 오류나 success=false 는 모두 GatewayError 로 올린다. 재시도 정책은 호출 측 몫.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import GATEWAY_BASE_URL, GATEWAY_TIMEOUT, GATEWAY_TOKEN
from proctored_test.errors import GatewayError

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


class SubmissionGateway:
    """/my-tests 엔드포인트 묶음."""

    def __init__(
        self,
        base_url: str = GATEWAY_BASE_URL,
        token: str = GATEWAY_TOKEN,
        timeout: float = GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"Submission gateway: {self.base_url}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SubmissionGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if self._client.is_closed:
            raise GatewayError(f"{method} {path} 요청 실패: 연결이 이미 닫혔습니다.")
        try:
            response = await self._client.request(method, path, json=payload)
        except (httpx.HTTPError, RuntimeError) as e:
            # RuntimeError: 요청 도중 클라이언트가 닫힌 경우
            raise GatewayError(f"{method} {path} 요청 실패: {type(e).__name__}: {e}") from e

        if response.is_error:
            raise GatewayError(_error_message(response), response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(f"{method} {path}: JSON 응답이 아닙니다.", response.status_code) from e

        if isinstance(body, dict) and body.get("success") is False:
            raise GatewayError(body.get("message") or f"{method} {path} 실패", response.status_code)
        return body

    # ── 시험 정보 ────────────────────────────────────────────────────────────

    async def get_my_tests(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/my-tests")
        return body.get("data") or []

    async def get_test_detail(self, test_slug: str) -> Dict[str, Any]:
        """시험 상세 + student_stats + can_start_attempt (봉투 전체 반환)."""
        return await self._request("GET", f"/my-tests/{test_slug}")

    async def get_my_attempts(self, test_slug: str) -> List[Dict[str, Any]]:
        body = await self._request("GET", f"/my-tests/{test_slug}/attempts")
        return body.get("data") or []

    # ── 시도 ────────────────────────────────────────────────────────────────

    async def start_attempt(self, test_slug: str) -> Dict[str, Any]:
        body = await self._request("POST", f"/my-tests/{test_slug}/start")
        return body.get("data") or {}

    async def get_attempt_detail(self, test_slug: str, attempt_id: int) -> Dict[str, Any]:
        body = await self._request("GET", f"/my-tests/{test_slug}/attempts/{attempt_id}")
        return body.get("data") or {}

    async def submit_answer(self, test_slug: str, attempt_id: int, item_id: int, answer: Any) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/my-tests/{test_slug}/attempts/{attempt_id}/items/{item_id}/submit",
            {"answer": answer},
        )

    async def submit_attempt(self, test_slug: str, attempt_id: int) -> Dict[str, Any]:
        """최종 제출. data: {total_score, max_possible_score, needs_manual_grading, graded_items, total_items}"""
        body = await self._request("POST", f"/my-tests/{test_slug}/attempts/{attempt_id}/submit")
        return body.get("data") or {}

    async def execute_code(
        self, test_slug: str, attempt_id: int, item_id: int, language_id: int, code: str
    ) -> Dict[str, Any]:
        body = await self._request(
            "POST",
            f"/my-tests/{test_slug}/attempts/{attempt_id}/items/{item_id}/execute",
            {"language_id": language_id, "code": code},
        )
        return body.get("data") or body

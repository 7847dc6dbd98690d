# FILE: tests/test_gateway.py

import json

import httpx
import pytest

from proctored_test.errors import GatewayError
from proctored_test.services.gateway import SubmissionGateway


def _gateway(handler, token="secret-token"):
    return SubmissionGateway(
        base_url="http://lms.test/api/",
        token=token,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_submit_answer_posts_to_item_endpoint():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": {"id": 9}})

    async with _gateway(handler) as gateway:
        body = await gateway.submit_answer("python-basics", 501, 11, "4")

    assert seen == {
        "method": "POST",
        "path": "/api/my-tests/python-basics/attempts/501/items/11/submit",
        "auth": "Bearer secret-token",
        "body": {"answer": "4"},
    }
    assert body["data"] == {"id": 9}


@pytest.mark.asyncio
async def test_submit_attempt_returns_data():
    def handler(request: httpx.Request):
        assert request.url.path == "/api/my-tests/python-basics/attempts/501/submit"
        return httpx.Response(
            200,
            json={"success": True, "data": {"total_score": 40, "max_possible_score": 80}},
        )

    async with _gateway(handler) as gateway:
        data = await gateway.submit_attempt("python-basics", 501)
    assert data == {"total_score": 40, "max_possible_score": 80}


@pytest.mark.asyncio
async def test_no_auth_header_without_token():
    def handler(request: httpx.Request):
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"success": True, "data": [{"slug": "a"}]})

    async with _gateway(handler, token="") as gateway:
        assert await gateway.get_my_tests() == [{"slug": "a"}]


@pytest.mark.asyncio
async def test_success_false_raises():
    def handler(request: httpx.Request):
        return httpx.Response(200, json={"success": False, "message": "Attempt is not in progress"})

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            await gateway.submit_answer("python-basics", 501, 11, "4")
    assert exc_info.value.message == "Attempt is not in progress"
    assert not exc_info.value.transient


@pytest.mark.asyncio
async def test_http_error_status_and_message():
    def handler(request: httpx.Request):
        return httpx.Response(503, json={"message": "Service Unavailable"})

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            await gateway.submit_attempt("python-basics", 501)
    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "Service Unavailable"
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_http_error_without_json_body():
    def handler(request: httpx.Request):
        return httpx.Response(404, text="not found")

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            await gateway.get_attempt_detail("python-basics", 1)
    assert exc_info.value.message == "HTTP 404"
    assert not exc_info.value.transient


@pytest.mark.asyncio
async def test_network_error_is_transient():
    def handler(request: httpx.Request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            await gateway.start_attempt("python-basics")
    assert exc_info.value.status_code is None
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_non_json_success_response_raises():
    def handler(request: httpx.Request):
        return httpx.Response(200, text="<html>")

    async with _gateway(handler) as gateway:
        with pytest.raises(GatewayError):
            await gateway.get_test_detail("python-basics")


@pytest.mark.asyncio
async def test_execute_code_body():
    def handler(request: httpx.Request):
        assert request.url.path.endswith("/attempts/501/items/12/execute")
        assert json.loads(request.content) == {"language_id": 71, "code": "print(1)"}
        return httpx.Response(200, json={"success": True, "data": {"stdout": "1\n"}})

    async with _gateway(handler) as gateway:
        assert await gateway.execute_code("python-basics", 501, 12, 71, "print(1)") == {"stdout": "1\n"}


@pytest.mark.asyncio
async def test_closed_client_raises_transient_gateway_error():
    def handler(request: httpx.Request):
        return httpx.Response(200, json={"success": True, "data": {}})

    gateway = _gateway(handler)
    await gateway.aclose()

    with pytest.raises(GatewayError) as exc_info:
        await gateway.submit_attempt("python-basics", 501)
    assert exc_info.value.status_code is None
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_finalize_on_closed_gateway_stays_retryable(make_engine):
    """닫힌 게이트웨이로 최종 제출해도 FinalizeError(재시도 가능)로 끝나고 상태는 그대로"""
    from proctored_test.errors import FinalizeError
    from proctored_test.models.attempt_state import AttemptStatus

    def handler(request: httpx.Request):
        return httpx.Response(200, json={"success": True, "data": {"total_score": 1, "max_possible_score": 2}})

    engine = make_engine(max_violations=1, finalize_retries=2)
    closed = _gateway(handler)
    await closed.aclose()
    engine._gateway = closed
    engine.record_violation("screenshot")

    with pytest.raises(FinalizeError) as exc_info:
        await engine.acknowledge_force_submit()
    assert exc_info.value.retryable
    assert engine.status is AttemptStatus.FORCE_SUBMITTING

    async with _gateway(handler) as fresh:
        engine._gateway = fresh
        result = await engine.acknowledge_force_submit()
    assert engine.status is AttemptStatus.SUBMITTED
    assert result.percentage == pytest.approx(50.0)

# FILE: tests/test_api.py

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from tests.conftest import FakeGateway, make_attempt


@pytest.fixture
def fake_gateway():
    return FakeGateway(attempt=make_attempt(started_at=datetime.now(timezone.utc), max_violations=3))


@pytest.fixture
def client(fake_gateway):
    app = create_app(gateway_factory=lambda token: fake_gateway)
    with TestClient(app) as c:
        yield c


def test_attempt_requires_session(client):
    resp = client.get("/api/attempt")
    assert resp.status_code == 404


def test_start_answer_navigate(client):
    resp = client.post("/api/tests/python-basics/start")
    assert resp.status_code == 200
    snap = resp.json()
    assert snap["status"] == "in_progress"
    assert snap["total"] == 4
    assert 590 <= snap["time_left_seconds"] <= 600

    item = client.get("/api/attempt/item/0").json()
    assert item["kind"] == "quiz"
    assert item["payload"]["options"] == ["3", "4", "5"]
    assert client.get("/api/attempt/item/3").json()["kind"] == "unknown"
    assert client.get("/api/attempt/item/9").status_code == 404

    resp = client.post("/api/attempt/answer", json={"item_id": 11, "answer": "4"})
    assert resp.json() == {"ok": True, "answered_count": 1, "status": "in_progress"}
    assert client.post("/api/attempt/answer", json={"item_id": 999, "answer": "x"}).status_code == 422

    resp = client.post("/api/attempt/navigate", json={"index": 3})
    assert resp.json()["progress_percent"] == pytest.approx(100.0)
    assert client.post("/api/attempt/navigate", json={"index": 4}).status_code == 422


def test_violations_force_submit_flow(client, fake_gateway):
    client.post("/api/tests/python-basics/start")

    first = client.post("/api/attempt/signal", json={"signal": "paste"}).json()
    assert first["recorded"]
    assert first["violation_type"] == "copy_paste"
    assert first["snapshot"]["notice"]["remaining_violations"] == 2
    assert client.post("/api/attempt/dismiss-notice").json() == {"ok": True}

    client.post("/api/attempt/app-state", json={"state": "background"})
    client.post("/api/attempt/app-state", json={"state": "active"})
    third = client.post("/api/attempt/signal", json={"signal": "screenshot"}).json()
    assert third["snapshot"]["status"] == "force_submitting"
    assert third["snapshot"]["force_reason"] == "max_violations"

    assert client.post("/api/attempt/dismiss-notice").status_code == 400
    assert client.post("/api/attempt/submit").status_code == 400

    after = client.post("/api/attempt/signal", json={"signal": "copy"}).json()
    assert not after["recorded"]

    resp = client.post("/api/attempt/acknowledge-force-submit")
    assert resp.status_code == 200
    body = resp.json()
    assert body["result"]["percentage"] == pytest.approx(50.0)
    assert body["violation_count"] == 3
    assert body["violations"] == {"app_background": 1, "copy_paste": 1, "screenshot": 1}
    assert fake_gateway.submit_calls == 1

    assert client.get("/api/attempt").json()["status"] == "submitted"


def test_submit_failure_returns_503_then_retry(client, fake_gateway):
    from proctored_test.errors import GatewayError

    client.post("/api/tests/python-basics/start")
    fake_gateway.submit_errors = [GatewayError("down", 503)] * 3

    resp = client.post("/api/attempt/submit")
    assert resp.status_code == 503
    assert client.get("/api/attempt").json()["status"] == "in_progress"
    assert client.get("/api/attempt").json()["last_error"] == "Failed to submit test. Please try again."

    resp = client.post("/api/attempt/submit")
    assert resp.status_code == 200
    assert resp.json()["result"]["passed"]


def test_invalid_app_state(client):
    client.post("/api/tests/python-basics/start")
    assert client.post("/api/attempt/app-state", json={"state": "sleeping"}).status_code == 422


def test_set_token_blocked_during_attempt(client):
    assert client.post("/api/set-token", json={"token": "  "}).status_code == 400
    assert client.post("/api/set-token", json={"token": "abc"}).json() == {"ok": True}

    client.post("/api/tests/python-basics/start")
    assert client.post("/api/set-token", json={"token": "xyz"}).status_code == 400


def test_set_token_refused_while_force_submit_pending(client, fake_gateway):
    """강제 제출 대기 중 토큰 변경은 거부되고, 제출 확인은 같은 게이트웨이로 끝난다"""
    client.post("/api/set-token", json={"token": "a"})
    client.post("/api/tests/python-basics/start")
    for _ in range(3):
        client.post("/api/attempt/signal", json={"signal": "paste"})
    assert client.get("/api/attempt").json()["status"] == "force_submitting"

    assert client.post("/api/set-token", json={"token": "b"}).status_code == 400
    assert not fake_gateway.closed

    resp = client.post("/api/attempt/acknowledge-force-submit")
    assert resp.status_code == 200
    assert client.get("/api/attempt").json()["status"] == "submitted"

    # 제출이 끝난 뒤에는 다시 바꿀 수 있다
    assert client.post("/api/set-token", json={"token": "b"}).json() == {"ok": True}
    assert fake_gateway.closed


def test_reset_drops_engine(client):
    client.post("/api/tests/python-basics/start")
    assert client.post("/api/reset").json() == {"ok": True}
    assert client.get("/api/attempt").status_code == 404


def test_start_load_error_maps_status(fake_gateway):
    from proctored_test.errors import GatewayError

    class ForbiddenGateway(FakeGateway):
        async def start_attempt(self, test_slug):
            raise GatewayError("Forbidden", 403)

    app = create_app(gateway_factory=lambda token: ForbiddenGateway())
    with TestClient(app) as c:
        resp = c.post("/api/tests/python-basics/start")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "You don't have permission to view this test."

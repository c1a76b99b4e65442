import json

import httpx
import pytest

from skillport_relay.ingestion import SubmissionIngestionClient
from skillport_relay.models import RapidSolveFlag, Submission, SubmissionRecord


API_BASE = "http://localhost:5003/api/v1"


class RequestRecorder:
    def __init__(self):
        self.requests: list[httpx.Request] = []

    def record(self, request: httpx.Request) -> None:
        self.requests.append(request)


def make_client(handler) -> SubmissionIngestionClient:
    return SubmissionIngestionClient(
        API_BASE,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=10),
    )


def two_sum() -> Submission:
    return Submission.from_observer({
        "problemTitle": "Two Sum",
        "platform": "leetcode",
        "difficulty": "easy",
        "status": "accepted",
        "language": "python",
    })


@pytest.mark.asyncio
async def test_send_posts_payload_with_user_and_timestamp():
    recorder = RequestRecorder()

    def handler(request: httpx.Request) -> httpx.Response:
        recorder.record(request)

        if request.url.path == "/api/v1/submissions":
            return httpx.Response(201, json={"success": True, "id": "submission-123"})

        raise AssertionError(f"Unexpected request: {request.method} {request.url}")

    client = make_client(handler)

    result = await client.send(two_sum(), "test-user-123")

    assert result.ok is True
    assert result.server_id == "submission-123"
    assert result.status_code == 201

    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/json"

    body = json.loads(request.content.decode())
    assert body["userId"] == "test-user-123"
    assert isinstance(body["timestamp"], int)
    assert body["problemTitle"] == "Two Sum"
    assert body["platform"] == "leetcode"
    assert body["language"] == "python"
    assert "executionTime" not in body

    await client.close()


@pytest.mark.asyncio
async def test_success_without_server_id():
    client = make_client(lambda request: httpx.Response(200, json={"success": True}))

    result = await client.send(two_sum(), "u1")

    assert result.ok is True
    assert result.server_id is None
    await client.close()


@pytest.mark.asyncio
async def test_non_2xx_is_failure():
    client = make_client(lambda request: httpx.Response(500, json={"error": "boom"}))

    result = await client.send(two_sum(), "u1")

    assert result.ok is False
    assert result.status_code == 500
    assert "500" in result.reason
    await client.close()


@pytest.mark.asyncio
async def test_invalid_json_body_is_failure():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>ok</html>"))

    result = await client.send(two_sum(), "u1")

    assert result.ok is False
    assert result.status_code == 200
    assert "JSON" in result.reason
    await client.close()


@pytest.mark.asyncio
async def test_network_error_is_failure_not_exception():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Network error", request=request)

    client = make_client(handler)

    result = await client.send(two_sum(), "u1")

    assert result.ok is False
    assert "Network error" in result.reason
    await client.close()


@pytest.mark.asyncio
async def test_timeout_is_failure_not_exception():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler)

    result = await client.send(two_sum(), "u1")

    assert result.ok is False
    assert "Timed out" in result.reason
    await client.close()


@pytest.mark.asyncio
async def test_send_flag_posts_to_flags_endpoint():
    recorder = RequestRecorder()

    def handler(request: httpx.Request) -> httpx.Response:
        recorder.record(request)
        assert request.url.path == "/api/v1/flags"
        return httpx.Response(200, json={"ok": True})

    client = make_client(handler)
    previous = SubmissionRecord("two-sum", "Two Sum", "leetcode", "medium", "accepted", 1_000, "a")
    current = SubmissionRecord("3sum", "3Sum", "leetcode", "hard", "accepted", 61_000, "b")
    flag = RapidSolveFlag(
        flagged_at=62_000, reason="rapid", gap_ms=60_000, previous=previous, current=current
    )

    result = await client.send_flag(flag, "u1")

    assert result.ok is True
    body = json.loads(recorder.requests[0].content.decode())
    assert body["userId"] == "u1"
    assert body["questionId"] == "3sum"
    assert body["title"] == "3Sum"
    assert body["codePrev"] == "a"
    assert body["codeCurr"] == "b"
    assert body["gapMs"] == 60_000
    await client.close()


@pytest.mark.asyncio
async def test_health_check():
    def healthy(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/health"
        return httpx.Response(200, json={"ok": True})

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    up = make_client(healthy)
    down = make_client(unreachable)

    assert await up.health_check() is True
    assert await down.health_check() is False

    await up.close()
    await down.close()


def test_api_base_trailing_slash_is_trimmed():
    client = SubmissionIngestionClient(API_BASE + "/")
    assert client.api_base == API_BASE

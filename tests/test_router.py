"""Tests for message routing and the exactly-once response guarantee."""

from pathlib import Path
from typing import get_args
from unittest.mock import AsyncMock, MagicMock

import pytest

from skillport_relay.controller import RelayController
from skillport_relay.ingestion import SubmissionIngestionClient
from skillport_relay.models import DeliveryResult, InboundMessage
from skillport_relay.router import MessageRouter, Responder, ResponderAlreadyUsed
from skillport_relay.store import PersistentState


class ResponseRecorder:
    """Responder stand-in that records every call."""

    def __init__(self):
        self.responses: list[dict] = []

    def __call__(self, response: dict) -> None:
        self.responses.append(response)


@pytest.fixture
def store(tmp_path: Path):
    store = PersistentState(tmp_path / "state.sqlite")
    yield store
    store.close()


@pytest.fixture
def mock_client():
    client = AsyncMock(spec=SubmissionIngestionClient)
    client.send.return_value = DeliveryResult(ok=True)
    client.send_flag.return_value = DeliveryResult(ok=True)
    client.health_check.return_value = True
    return client


@pytest.fixture
def controller(store, mock_client):
    return RelayController(store, mock_client)


@pytest.fixture
def router(controller):
    return MessageRouter(controller)


class TestScenarios:
    """End-to-end message flows through the router."""

    @pytest.mark.asyncio
    async def test_set_then_get_user_id(self, router):
        recorder = ResponseRecorder()
        await router.dispatch({"type": "SET_USER_ID", "userId": "abc"}, recorder)
        await router.dispatch({"type": "GET_USER_ID"}, recorder)

        assert recorder.responses == [{"success": True}, {"userId": "abc"}]

    @pytest.mark.asyncio
    async def test_submission_relayed_with_user_id(self, router, controller, mock_client):
        await router.request({"type": "SET_USER_ID", "userId": "abc"})

        response = await router.request({
            "type": "SUBMISSION_DETECTED",
            "data": {
                "problemTitle": "Two Sum",
                "platform": "leetcode",
                "difficulty": "easy",
                "status": "accepted",
                "language": "python",
            },
        })
        await controller.drain()

        assert response == {"success": True}
        mock_client.send.assert_awaited_once()
        assert mock_client.send.await_args.args[1] == "abc"

    @pytest.mark.asyncio
    async def test_toggle_off_then_submission(self, router, controller, mock_client):
        await router.request({"type": "SET_USER_ID", "userId": "abc"})
        assert await router.request({"type": "TOGGLE_EXTENSION", "enabled": False}) == {"success": True}

        response = await router.request({
            "type": "SUBMISSION_DETECTED",
            "data": {"problemTitle": "Two Sum", "platform": "leetcode", "difficulty": "easy"},
        })
        await controller.drain()

        assert response == {"success": True}
        mock_client.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_message_type(self, router):
        response = await router.request({"type": "NOT_A_REAL_TYPE"})
        assert response == {"success": False, "error": "Unknown message type"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [{}, {"type": None}, {"type": 42}, "SET_USER_ID", None])
    async def test_malformed_envelopes_are_unknown(self, router, message):
        response = await router.request(message)
        assert response == {"success": False, "error": "Unknown message type"}

    @pytest.mark.asyncio
    async def test_corrupt_stored_row_does_not_break_relay(self, router, store):
        """An undecodable stored value leaves every message answerable."""
        store.conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
            ("userStats", "not json{", "2026-01-01T00:00:00"),
        )
        store.conn.commit()

        assert await router.request({"type": "SET_USER_ID", "userId": "abc"}) == {"success": True}
        assert await router.request({"type": "GET_USER_ID"}) == {"userId": "abc"}

    @pytest.mark.asyncio
    async def test_invalid_fields_become_error_response(self, router):
        response = await router.request({"type": "TOGGLE_EXTENSION", "enabled": "yes"})

        assert response["success"] is False
        assert "enabled" in response["error"]

    @pytest.mark.asyncio
    async def test_invalid_submission_while_active(self, router):
        await router.request({"type": "SET_USER_ID", "userId": "abc"})

        response = await router.request({"type": "SUBMISSION_DETECTED", "data": {"platform": "leetcode"}})

        assert response["success"] is False
        assert response["error"].startswith("Invalid submission")


class TestExactlyOnce:
    """Every message gets exactly one response."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [
        {"type": "SUBMISSION_DETECTED", "data": {"problemTitle": "Two Sum", "difficulty": "easy"}},
        {"type": "GET_USER_ID"},
        {"type": "SET_USER_ID", "userId": "u1"},
        {"type": "TOGGLE_EXTENSION", "enabled": True},
        {"type": "GET_STATUS"},
        {"type": "GET_STATS"},
        {"type": "GET_FLAGS"},
        {"type": "NOT_A_REAL_TYPE"},
    ])
    async def test_one_response_per_message(self, router, controller, message):
        recorder = ResponseRecorder()

        await router.dispatch(message, recorder)
        await controller.drain()

        assert len(recorder.responses) == 1

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_response(self, router, controller):
        controller.submission_detected = AsyncMock(side_effect=Exception("Test error"))
        recorder = ResponseRecorder()

        await router.dispatch({"type": "SUBMISSION_DETECTED", "data": {}}, recorder)

        assert recorder.responses == [{"success": False, "error": "Test error"}]

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_type_name(self, router, controller):
        controller.get_stats = AsyncMock(side_effect=KeyError())

        response = await router.request({"type": "GET_STATS"})

        assert response == {"success": False, "error": "KeyError"}

    @pytest.mark.asyncio
    async def test_failing_responder_does_not_escape(self, router):
        responder = MagicMock(side_effect=RuntimeError("channel closed"))

        await router.dispatch({"type": "GET_USER_ID"}, responder)

        responder.assert_called_once()

    def test_responder_is_single_use(self):
        recorder = ResponseRecorder()
        respond = Responder(recorder)

        respond({"success": True})
        assert respond.used is True
        with pytest.raises(ResponderAlreadyUsed):
            respond({"success": True})

        assert recorder.responses == [{"success": True}]

    @pytest.mark.asyncio
    async def test_used_responder_is_not_called_again(self, router):
        recorder = ResponseRecorder()
        respond = Responder(recorder)
        respond({"success": True})

        await router.dispatch({"type": "GET_USER_ID"}, respond)

        assert recorder.responses == [{"success": True}]


def test_every_message_type_is_routed(controller):
    """The routing table covers the whole InboundMessage union."""
    router = MessageRouter(controller)
    routed = {cls for cls, _ in router.routes().values()}

    assert routed == set(get_args(InboundMessage))
    for tag, (cls, _) in router.routes().items():
        assert cls.type == tag

"""Message router - dispatches inbound messages to the relay controller.

The router is the one place where failures become typed responses: every
dispatched message gets exactly one response, whatever happens below.
"""

import asyncio
import logging
from typing import Any, Callable

from .controller import RelayController
from .models import (
    GetFlags,
    GetStats,
    GetStatus,
    GetUserId,
    InboundMessage,
    SetUserId,
    SubmissionDetected,
    ToggleExtension,
    UnknownMessageType,
)

logger = logging.getLogger(__name__)

Response = dict[str, Any]


class ResponderAlreadyUsed(RuntimeError):
    """A responder was invoked a second time."""


class Responder:
    """Single-use wrapper around a response callback."""

    def __init__(self, callback: Callable[[Response], Any]):
        self._callback = callback
        self._used = False

    @property
    def used(self) -> bool:
        return self._used

    def __call__(self, response: Response) -> None:
        if self._used:
            raise ResponderAlreadyUsed("Response already sent for this message")
        self._used = True
        self._callback(response)


class MessageRouter:
    """Routes inbound messages by their ``type`` tag."""

    def __init__(self, controller: RelayController):
        """Initialize the router.

        Args:
            controller: Relay controller that owns the handlers
        """
        self.controller = controller

    async def dispatch(self, message: Any, responder: Callable[[Response], Any]) -> None:
        """Handle one message and answer it exactly once.

        Args:
            message: Raw inbound message (a dict with a ``type`` key)
            responder: Callback receiving the response
        """
        respond = responder if isinstance(responder, Responder) else Responder(responder)

        try:
            response = await self._handle(message)
        except UnknownMessageType as e:
            logger.warning("Unknown message type: %r", e.message_type)
            response = {"success": False, "error": str(e)}
        except Exception as e:
            logger.error("Error handling %s message: %s", _message_type(message), e)
            response = {"success": False, "error": str(e) or type(e).__name__}

        try:
            respond(response)
        except Exception:
            logger.exception("Responder failed for %s message", _message_type(message))

    async def request(self, message: Any) -> Response:
        """Dispatch a message and return its response."""
        future: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        await self.dispatch(message, future.set_result)
        return await future

    def routes(self) -> dict[str, tuple[type[InboundMessage], Callable]]:
        """Map each message type tag to its message class and handler."""
        controller = self.controller
        return {
            SubmissionDetected.type: (SubmissionDetected, controller.submission_detected),
            GetUserId.type: (GetUserId, controller.get_user_id),
            SetUserId.type: (SetUserId, controller.set_user_id),
            ToggleExtension.type: (ToggleExtension, controller.toggle_extension),
            GetStatus.type: (GetStatus, controller.get_status),
            GetStats.type: (GetStats, controller.get_stats),
            GetFlags.type: (GetFlags, controller.get_flags),
        }

    async def _handle(self, message: Any) -> Response:
        message_type = _message_type(message)
        route = self.routes().get(message_type) if isinstance(message_type, str) else None
        if route is None:
            raise UnknownMessageType(message_type)

        message_cls, handler = route
        return await handler(message_cls.from_dict(message))


def _message_type(message: Any) -> Any:
    if isinstance(message, dict):
        return message.get("type")
    return None

"""Local HTTP bridge between the observer layer and the message router."""

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from . import __version__

if TYPE_CHECKING:
    from .config import RelayConfig
    from .router import MessageRouter


class InboundMessageBody(BaseModel):
    """Request body for an inbound message; fields beyond ``type`` pass through."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None


def create_app(
    router: "MessageRouter",
    config: "RelayConfig | None" = None,
) -> FastAPI:
    """Create FastAPI app with injected dependencies.

    Args:
        router: MessageRouter that answers every posted message
        config: RelayConfig for CORS origins

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="SkillPort Relay",
        description="Relays coding-judge submissions to the SkillPort API",
        version=__version__,
    )

    if config and config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
        )

    app.state.relay_router = router

    @app.post("/messages")
    async def post_message(request: Request, body: InboundMessageBody) -> dict[str, Any]:
        """Dispatch one inbound message and return the router's response."""
        return await request.app.state.relay_router.request(body.model_dump())

    @app.get("/health")
    async def health():
        """Quick health check."""
        return {"status": "ok", "service": "skillport-relay"}

    return app

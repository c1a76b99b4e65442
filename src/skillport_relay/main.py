"""Main entry point for the SkillPort submission relay."""

import argparse
import asyncio
import logging

import uvicorn

from .config import RelayConfig
from .controller import RelayController
from .ingestion import SubmissionIngestionClient
from .router import MessageRouter
from .server import create_app
from .store import PersistentState

logger = logging.getLogger(__name__)


async def run_relay(config: RelayConfig) -> None:
    """Run the relay until the bridge server stops.

    Args:
        config: Loaded relay configuration
    """
    store = PersistentState(config.state_path)
    client = SubmissionIngestionClient(config.api_base, timeout=config.request_timeout)
    controller = RelayController(
        store,
        client,
        history_limit=config.history_limit,
        flag_window_minutes=config.flag_window_minutes,
    )
    router = MessageRouter(controller)

    try:
        # Hydrate before the bridge accepts any message
        await controller.initialize()

        if await client.health_check():
            logger.info("Ingestion API reachable at %s", config.api_base)
        else:
            logger.warning("Ingestion API not reachable at %s", config.api_base)

        server = uvicorn.Server(uvicorn.Config(
            create_app(router, config),
            host=config.host,
            port=config.port,
            log_level="warning",
        ))
        logger.info("Relay listening on http://%s:%d", config.host, config.port)
        await server.serve()
    finally:
        await controller.aclose()
        store.close()


def cli() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="SkillPort Relay - forward coding-judge submissions to the SkillPort API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Defaults (.skillport/config.yaml if present)
  skillport-relay

  # Point at a different ingestion API
  skillport-relay --api-base https://skillport.example.com/api/v1

Environment variables:
  SKILLPORT_API_BASE    Ingestion API root (overrides config file)
  SKILLPORT_STATE_PATH  SQLite state file (overrides config file)
"""
    )

    parser.add_argument(
        "--config",
        default=".skillport/config.yaml",
        help="Path to config file (default: .skillport/config.yaml)"
    )

    parser.add_argument(
        "--api-base",
        help="Ingestion API root URL"
    )

    parser.add_argument(
        "--host",
        help="Bridge bind address (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Bridge port (default: 8765)"
    )

    args = parser.parse_args()

    config = RelayConfig.load(args.config)
    if args.api_base:
        config.api_base = args.api_base
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        asyncio.run(run_relay(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()

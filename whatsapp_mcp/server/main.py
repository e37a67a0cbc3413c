"""Entrypoint helpers for running the WhatsApp MCP server."""

import asyncio
import logging
import sys
from pathlib import Path

from whatsapp_mcp.client.errors import ClientFactoryError
from whatsapp_mcp.server.config import Config, load_config
from whatsapp_mcp.server.mcp_server import WhatsAppMCPServer

logger = logging.getLogger(__name__)


def serve(config: Config, transport: str | None = None) -> None:
    """Start the server and block until it stops.

    Start-up failures end the process with exit code 1; Ctrl-C exits 0.

    Args:
        config: Loaded configuration
        transport: Optional transport override ("stdio" | "http")
    """
    try:
        server = WhatsAppMCPServer(config)
        asyncio.run(server.start(transport))

    except ClientFactoryError as e:
        logger.exception("Cannot build the WhatsApp client: %s", e)
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)

    except Exception as e:
        logger.exception("Failed to start server: %s", e)
        sys.exit(1)


def main() -> None:  # pragma: no cover - convenience entrypoint
    from whatsapp_mcp.observability import configure_logging

    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    config = load_config(config_path)
    configure_logging(
        config.server.log_level,
        structured=config.observability.structured_logging,
        log_file=config.server.log_file,
    )
    serve(config)


if __name__ == "__main__":
    main()

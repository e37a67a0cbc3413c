"""Logging setup for the WhatsApp MCP server.

All handlers write to stderr (or a file): on the stdio transport stdout
carries the MCP protocol stream.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONTEXT_FIELDS = ("session_id", "event", "tool")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying the bridge's context extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str = "INFO",
    structured: bool = False,
    log_file: str | None = None,
) -> None:
    """Install root handlers.

    Args:
        level: Logging level name
        structured: Emit JSON records instead of the plain format
        log_file: Also write records to this file
    """
    formatter: logging.Formatter = JSONFormatter() if structured else logging.Formatter(PLAIN_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=getattr(logging, level.upper()), handlers=handlers, force=True)

    # uvicorn access logs are noisy on a long-lived SSE endpoint
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

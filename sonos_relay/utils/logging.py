"""
Structured JSON logging.
Outputs JSON lines in production, human-readable in development.
"""
import logging
import sys
from typing import Any

import json_log_formatter


class JsonFormatter(json_log_formatter.JSONFormatter):
    """JSON lines carrying level and logger name next to the `extra` fields."""

    def json_record(
        self,
        message: str,
        extra: dict[str, Any],
        record: logging.LogRecord,
    ) -> dict[str, Any]:
        extra["level"] = record.levelname
        extra["logger"] = record.name
        return super().json_record(message, extra, record)


def setup_logging(level: str | None = None) -> None:
    from sonos_relay.config.settings import settings

    level = level or settings.LOG_LEVEL
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)

    if settings.ENV == "production":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet noisy libraries
    for lib in ("aiohttp", "asyncio"):
        logging.getLogger(lib).setLevel(logging.WARNING)

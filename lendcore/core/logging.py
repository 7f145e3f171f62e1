import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

# Chatty third-party loggers held at WARNING unless LOG_LEVEL=DEBUG
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "httpcore", "openai")


def _renderer(log_format: str) -> Any:
    if log_format == "json" or os.getenv("JSON_LOGS", "false").lower() == "true":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Route stdlib and structlog output through one structlog pipeline.

    Engine modules log with ``logging.getLogger(__name__)``; the CLI binds
    structured events with ``structlog.get_logger()``. Both end up on stderr so
    command output on stdout stays clean. Safe to call more than once.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = (log_format or os.getenv("LOG_FORMAT", "text")).lower()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(log_format),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    log_file = Path("logs/lendcore.log")
    if log_file.parent.exists():
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(format="%(message)s", handlers=handlers, level=level_name, force=True)

    quiet_level = logging.DEBUG if level_name == "DEBUG" else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

"""
Structured logging for the liquidation bot

Every event is a structlog event name plus key/value fields, rendered as JSON
lines or as console output. Fields bound with log_context() are merged into
every event logged inside the block, so all lines of one liquidation run
carry the run number and buyer.
"""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from structlog.typing import Processor


# libraries that log every frame or request at DEBUG
_NOISY_LOGGERS = ("websockets", "aiohttp.access", "asyncio")


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structlog on top of the stdlib root logger

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: "json" or "console"
        output_file: Also append log lines to this file
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(output_file))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every event logged by the current task inside the block"""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

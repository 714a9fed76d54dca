"""
Structured logging for the assessment engine.

Every engine transition is logged through structlog with the region and
state revision. Session fields bound with ``bind_session_context`` are
merged into each entry, so one assessment can be followed through the
log stream. Log output goes to stderr; stdout is left to CLI reports.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import Processor

from assessment_engine.config.config import get_settings


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(stream: TextIO | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    ``log_format`` selects JSON lines (for aggregation) or the coloured
    console renderer (colours only when the stream is a terminal).
    """
    settings = get_settings()
    stream = stream or sys.stderr
    shared = _shared_processors()

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
        chain = shared + [structlog.processors.format_exc_info]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())
        chain = shared

    structlog.configure(
        processors=chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared)
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_session_context(session_id: str, region: str, **extra: Any) -> None:
    """
    Bind an assessment session to all subsequent log entries.

    Replaces whatever session was bound before in this context.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(session_id=session_id, region=region, **extra)

"""Structured logging for the harvester (structlog on top of stdlib logging)."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _renderer(json: bool, stream: TextIO) -> structlog.types.Processor:
    if json:
        return structlog.processors.JSONRenderer()
    isatty = getattr(stream, "isatty", None)
    return structlog.dev.ConsoleRenderer(colors=bool(isatty and isatty()))


def setup_logging(*, json: bool = False, level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route structlog events through a single root handler.

    Parameters
    ----------
    json:
        Emit one JSON object per line instead of the console renderer.
    level:
        Root log level name, case-insensitive.
    stream:
        Defaults to stderr; stdout is reserved for the operator messages
        printed by the command-line entry point.
    """
    stream = stream or sys.stderr

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED_PROCESSORS,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json, stream),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


def bind_run_context(**values: object) -> None:
    """Attach *values* (host, mailbox, output directory) to every later event."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)

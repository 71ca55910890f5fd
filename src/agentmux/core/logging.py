"""
Structured logging configuration for agentmux.

Uses structlog for key/value log output. Every entry carries a timestamp,
level and logger name, and can carry bound context (session_id) that flows
through a session's whole lifecycle.

Setup:
    Call ``configure_logging()`` once at process startup. Every module then
    uses::

        import structlog
        logger = structlog.get_logger()

    Bound loggers carry context automatically::

        log = logger.bind(session_id="sess_3f2a")
        log.info("session_state_changed", old="busy", new="idle")

In a terminal the output is coloured and human-readable; with
``json_output=True`` it is one JSON object per line.
"""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structlog + stdlib logging for the process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Emit JSON lines instead of coloured console output.

    Safe to call more than once: the root handler is only installed once,
    later calls just adjust the level and renderer.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    root = logging.getLogger()
    existing = [
        h
        for h in root.handlers
        if isinstance(h, logging.StreamHandler)
        and isinstance(getattr(h, "formatter", None), structlog.stdlib.ProcessorFormatter)
    ]
    if existing:
        for h in existing:
            h.setFormatter(formatter)
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(log_level)

    # asyncio logs every slow callback at DEBUG; keep it out of engine logs
    logging.getLogger("asyncio").setLevel(logging.WARNING)

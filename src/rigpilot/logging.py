"""Structured logging for rigpilot: structlog over stdlib logging.

Rig ticks run concurrently on one event loop, so rig identity travels in
structlog's contextvars rather than in logger instances.
"""

import logging
import os

import structlog

# Libraries whose INFO output duplicates what the rig ticks already log
_QUIET_LOGGERS = ("httpx", "aiosqlite")


def _select_renderer() -> structlog.types.Processor:
    """LOG_FORMAT=json for machine-readable output, anything else for console."""
    if os.environ.get("LOG_FORMAT", "console").lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO") -> None:
    """Route structlog events through a single stdlib root handler."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _select_renderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_rig_context(rig_id: str, rig_name: str) -> None:
    """Tag every log line of the current tick with the rig's id and name.

    asyncio tasks copy the context on creation, so a binding made inside one
    rig's tick task never shows up in another rig's lines.
    """
    structlog.contextvars.bind_contextvars(rig_id=rig_id, rig_name=rig_name)


def clear_rig_context() -> None:
    structlog.contextvars.unbind_contextvars("rig_id", "rig_name")

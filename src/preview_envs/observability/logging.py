"""Structured logging configuration for preview-envs.

Configures structlog for operation-ID-correlated logging on stderr, with
credential fields redacted. Stdlib ``logging`` records (with their
``extra`` fields) are rendered through the same processor chain, so
provider modules can keep using ``logging.getLogger(__name__)``.

Usage::

    from preview_envs.observability.logging import configure_logging, get_logger

    configure_logging()  # Call once at process start
    logger = get_logger(__name__)
    logger.info("environment_created", environment_id="env_123")
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

import structlog

# Correlation ID for the single lifecycle operation of this process.
operation_id_ctx: ContextVar[str | None] = ContextVar("operation_id", default=None)

_configured = False

_SECRET_KEYS = frozenset({"authorization", "token", "railway_api_token"})


def _add_operation_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Inject the current operation_id from context into every log entry."""
    oid = operation_id_ctx.get()
    if oid is not None:
        event_dict["operation_id"] = oid
    return event_dict


def _redact_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Mask credential-like fields so the API token never reaches the log."""
    for key in event_dict.keys() & _SECRET_KEYS:
        event_dict[key] = "[redacted]"
    return event_dict


def _shared_processors(json_output: bool) -> list:
    processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_operation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
    ]
    # The console renderer formats exceptions itself.
    if json_output:
        processors.append(structlog.processors.format_exc_info)
    return processors


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and route stdlib records through it.

    Output goes to stderr; stdout is reserved for workflow commands
    (``::error::``) read by the CI host.

    Args:
        level: Log level name. Defaults to LOG_LEVEL or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to LOG_FORMAT == "json".
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "console") == "json"

    shared = _shared_processors(json_output)
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder()],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer() if json_output
                else structlog.dev.ConsoleRenderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in ("httpx", "httpcore", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)


@contextmanager
def bind_operation(operation_id: str | None = None, **fields: str) -> Iterator[str]:
    """Bind an operation ID (and extra fields) to every log entry in scope."""
    oid = operation_id or uuid.uuid4().hex[:12]
    token = operation_id_ctx.set(oid)
    structlog.contextvars.bind_contextvars(**fields)
    try:
        yield oid
    finally:
        structlog.contextvars.unbind_contextvars(*fields)
        operation_id_ctx.reset(token)

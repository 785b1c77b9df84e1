"""Observability infrastructure for preview-envs.

Provides structured logging with operation-ID correlation.

Quick start::

    from preview_envs.observability import bind_operation, configure_logging

    configure_logging()
    with bind_operation(environment_name="pr-42"):
        ...
"""

from .logging import bind_operation, configure_logging, get_logger, operation_id_ctx

__all__ = [
    "bind_operation",
    "configure_logging",
    "get_logger",
    "operation_id_ctx",
]

"""
Semantix Structured Logging

Configures structlog (and the stdlib root logger it renders through) for the
delivery pipeline. Request ids are carried in structlog contextvars so every
log line emitted while a request is handled is tagged with it.

Usage:
    from semantix_core.logging import setup_logging, get_logger

    setup_logging(service_name="semantix-extension", json_output=False)
    logger = get_logger(__name__)
    logger.info("conversation_synced", conversation_id="c_123")
"""

import logging
import sys
from typing import Any

import structlog


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> logging.Logger:
    """
    Configure logging for the pipeline.

    Args:
        service_name: Name bound to every log line (e.g. "semantix-extension")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines for production, console rendering otherwise

    Returns:
        Configured root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)
    get_logger(__name__).info("logging_configured", service=service_name, level=level.upper())

    return root_logger


def get_logger(name: str) -> Any:
    """Get a structlog logger with the given name."""
    return structlog.get_logger(name)


def bind_request_context(request_id: str, **extra: Any) -> None:
    """Tag subsequent log lines in this context with the request id."""
    structlog.contextvars.bind_contextvars(request_id=request_id, **extra)


def clear_request_context() -> None:
    structlog.contextvars.unbind_contextvars("request_id")

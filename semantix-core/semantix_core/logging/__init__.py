"""
Semantix Logging Module

Structured logging for the delivery pipeline.
"""

from .structured import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_request_context",
    "clear_request_context",
]

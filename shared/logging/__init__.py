"""structlog setup and correlation helpers."""

from .config import detach_handlers, get_logger, setup_logging
from .correlation import (
    clear_context,
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    set_correlation_id,
)

__all__ = [
    "clear_context",
    "correlation_scope",
    "detach_handlers",
    "get_correlation_id",
    "get_logger",
    "new_correlation_id",
    "set_correlation_id",
    "setup_logging",
]

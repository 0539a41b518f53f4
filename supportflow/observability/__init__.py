"""Logging and metrics."""

from supportflow.observability.logging import (
    conversation_log_context,
    get_logger,
    setup_logging,
)

__all__ = ["conversation_log_context", "get_logger", "setup_logging"]

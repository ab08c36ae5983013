"""Utility modules for the token guardian."""

from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationIdFilter,
    configure_logging,
    get_logger,
)
from .token_codec import TokenCodec, current_school_year, generate_salt

__all__ = [
    # Logging utilities
    "AzureQueueHandler",
    "ContextAwareLogger",
    "CorrelationIdFilter",
    "configure_logging",
    "get_logger",
    # Token format
    "TokenCodec",
    "current_school_year",
    "generate_salt",
]

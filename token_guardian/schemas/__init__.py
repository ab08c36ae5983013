"""Pydantic schemas for token reads, validation results and remote payloads."""

from .token_schemas import (
    ParsedToken,
    TokenRead,
    TokenUsageStatistics,
    TokenValidationResult,
)

__all__ = ["ParsedToken", "TokenRead", "TokenUsageStatistics", "TokenValidationResult"]

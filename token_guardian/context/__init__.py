"""Operation context: logging and correlation ids around service calls."""

from .operation_context import OperationContext, OperationHandler, operation

__all__ = ["OperationContext", "OperationHandler", "operation"]

"""
Operation tracing for service calls.

``@operation`` wraps a service method in ENTER / EXIT debug logs carrying a
correlation id, an operation id and the duration. Token errors raised inside
get the operation name attached before they propagate.
"""

import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

from ..exceptions import (
    BaseError,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from ..utils.logger import get_logger

# Call arguments copied onto the ENTER / EXIT records when passed by keyword
TRACED_ARGUMENTS = ("token_type", "vendor_scope", "expected_type", "retention_days")


class OperationContext:
    """State of one running operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())

        inherited = get_correlation_id()
        self.owns_correlation_id = correlation_id is None and inherited is None
        self.correlation_id = correlation_id or inherited or str(uuid.uuid4())
        set_correlation_id(self.correlation_id)

        self.context = dict(context, operation_id=self.operation_id, correlation_id=self.correlation_id)
        self.metrics: Dict[str, Union[int, float]] = {}
        self._started = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)

    def add_metric(self, name: str, value: Union[int, float]) -> None:
        """Record a number reported on EXIT."""
        self.metrics[name] = value


class OperationHandler:
    """Logs operation boundaries and enriches errors raised inside them."""

    def __init__(self, logger=None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        op_ctx = OperationContext(name, **context)
        base = {
            **context,
            "operation_id": op_ctx.operation_id,
            "correlation_id": op_ctx.correlation_id,
        }
        self.logger.debug(f"ENTER: {name}", extra=base)

        try:
            yield op_ctx
        except BaseError as e:
            # The error logged itself when raised
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )
            self.logger.info(
                f"ERROR: {name} -> {type(e).__name__}",
                extra={
                    **base,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_id": e.error_id,
                    "error_code": e.error_code.value,
                    "status": "error",
                },
            )
            raise
        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {e}",
                extra={
                    **base,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_type": type(e).__name__,
                    "status": "error",
                },
            )
            raise
        else:
            self.logger.debug(
                f"EXIT: {name}",
                extra={
                    **base,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "status": "success",
                    **op_ctx.metrics,
                },
            )
        finally:
            if op_ctx.owns_correlation_id:
                clear_correlation_id()


F = TypeVar("F", bound=Callable[..., Any])


def _traced(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    traced = {}
    for key in TRACED_ARGUMENTS:
        value = kwargs.get(key)
        if value is not None:
            traced[key] = getattr(value, "value", value)
    return traced


def operation(name: Union[Optional[str], Callable] = None):
    """
    Trace a service method.

    Usable bare (``@operation``) or called (``@operation("custom.name")``).
    Without a name the operation is called ``<module>.<Class>.<method>``.
    The instance's ``logger`` is used when it has one.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            owner = args[0] if args else None
            op_name = name
            if op_name is None:
                module_name = func.__module__.rsplit(".", 1)[-1]
                qualifier = f"{type(owner).__name__}." if owner is not None else ""
                op_name = f"{module_name}.{qualifier}{func.__name__}"

            context = _traced(kwargs)
            if owner is not None:
                context["class"] = type(owner).__name__

            handler = OperationHandler(getattr(owner, "logger", None))
            with handler.operation(op_name, **context):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator

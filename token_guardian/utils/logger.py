"""
Logging for the token guardian.

Console output goes through ``ContextAwareLogger``, which renders ``extra``
as ``| key=value`` suffixes so token values and counts stay visible under any
formatter. Structured copies of the same records can be shipped to an Azure
Storage Queue by ``AzureQueueHandler`` when ``GUARDIAN_ENABLE_LOGS_QUEUE`` is
set.
"""

import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from azure.storage.queue import QueueClient, QueueServiceClient

from ..config import get_config
from .json_utils import dumps

ROOT_LOGGER_NAME = "token_guardian"

# Attributes every LogRecord already has; extras may not overwrite them
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

_configured_logger: Optional["ContextAwareLogger"] = None


def _level(value: Union[int, str]) -> int:
    if isinstance(value, str):
        return getattr(logging, value.upper(), logging.INFO)
    return value


def _safe_extra(extra: Dict[str, Any]) -> Dict[str, Any]:
    return {(f"_{k}" if k in _RECORD_ATTRIBUTES else k): v for k, v in extra.items()}


class ContextAwareLogger:
    """Wraps a stdlib logger; ``extra`` is both rendered into the message and kept on the record."""

    def __init__(self, logger):
        self.logger = logger

    @staticmethod
    def _render(msg: str, kwargs: dict) -> str:
        extra = kwargs.pop("extra", None) or {}
        kwargs["extra"] = _safe_extra(extra)
        if extra:
            msg = " | ".join([msg] + [f"{k}={v}" for k, v in extra.items()])
        return msg

    def _log(self, method: str, msg: str, **kwargs) -> None:
        msg = self._render(msg, kwargs)
        getattr(self.logger, method)(msg, **kwargs)

    def log(self, level: int, msg, **kwargs):
        msg = self._render(msg, kwargs)
        self.logger.log(level, msg, **kwargs)

    def set_level(self, level) -> None:
        self.logger.setLevel(level)

    def debug(self, msg, **kwargs):
        self._log("debug", msg, **kwargs)

    def info(self, msg, **kwargs):
        self._log("info", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._log("warning", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._log("error", msg, **kwargs)

    def exception(self, msg, **kwargs):
        self._log("exception", msg, **kwargs)


class CorrelationIdFilter(logging.Filter):
    """Stamps records with the calling thread's correlation id, if any."""

    def filter(self, record):
        from ..exceptions import get_correlation_id

        correlation_id = get_correlation_id()
        if correlation_id:
            record.correlation_id = correlation_id
        return True


class AzureQueueHandler(logging.Handler):
    """
    Buffers log records as dicts and ships them to an Azure Storage Queue.

    Entries are sent one message each once ``batch_size`` records are buffered,
    and on close. Without a connection string records only accumulate.
    Shipping failures are written to stderr and never raised into the caller.
    """

    def __init__(
        self,
        queue_name: str = "logs-queue",
        connection_string: Optional[str] = None,
        batch_size: int = 10,
    ):
        super().__init__()
        self.queue_name = queue_name
        self.connection_string = connection_string or os.getenv("AzureWebJobsStorage")
        self.batch_size = batch_size
        self.log_buffer: List[Dict[str, Any]] = []

        if self.connection_string:
            self._ensure_queue_exists()
        else:
            sys.stderr.write("Azure Storage connection string not provided\n")

    def _ensure_queue_exists(self) -> None:
        try:
            service = QueueServiceClient.from_connection_string(self.connection_string)
            if not any(queue.name == self.queue_name for queue in service.list_queues()):
                service.create_queue(self.queue_name)
        except Exception as e:
            sys.stderr.write(f"Failed to ensure queue '{self.queue_name}' exists: {e}\n")

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """The JSON-ready dict shipped for one record; extras land under ``context``."""
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if getattr(record, "correlation_id", None):
            entry["correlation_id"] = record.correlation_id

        context = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key == "correlation_id" or callable(value):
                continue
            if key.startswith("_"):
                # Renamed by _safe_extra; restore the caller's key
                if value is not None:
                    context[key[1:]] = value
            else:
                context[key] = value
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": [
                    line.rstrip() for line in traceback.format_exception(*record.exc_info)
                ],
            }
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log_buffer.append(self.build_entry(record))
            if len(self.log_buffer) >= self.batch_size:
                self.flush()
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        if not self.log_buffer or not self.connection_string:
            return

        try:
            queue_client = QueueClient.from_connection_string(
                conn_str=self.connection_string, queue_name=self.queue_name
            )
        except Exception as e:
            sys.stderr.write(f"Error connecting to log queue '{self.queue_name}': {e}\n")
            return

        # One message per entry keeps each under the queue's message size limit
        for entry in self.log_buffer:
            try:
                queue_client.send_message(dumps(entry))
            except Exception as e:
                sys.stderr.write(f"Error sending log entry: {e}\n")
        self.log_buffer.clear()

    def close(self) -> None:
        self.flush()
        super().close()


def configure_logging(
    component: str,
    log_level: Optional[Union[int, str]] = None,
    enable_queue: Optional[bool] = None,
    queue_name: Optional[str] = None,
    queue_batch_size: int = 10,
    connection_string: Optional[str] = None,
) -> ContextAwareLogger:
    """
    Install console (and optionally queue) handlers on ``token_guardian.<component>``.

    Unset arguments come from the global config. Reconfiguring a component
    replaces its handlers. The result becomes what ``get_logger()`` returns.
    """
    global _configured_logger

    app_config = get_config()
    level = _level(log_level if log_level is not None else app_config.logging.level)
    if enable_queue is None:
        enable_queue = app_config.features.enable_logs_queue
    if connection_string is None:
        connection_string = app_config.queue.connection_string

    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    correlation_filter = CorrelationIdFilter()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(message)s"))
    console.addFilter(correlation_filter)
    logger.addHandler(console)

    if enable_queue:
        queue_name = queue_name or app_config.queue.logs_queue_name
        queue_handler = AzureQueueHandler(
            queue_name=queue_name, connection_string=connection_string, batch_size=queue_batch_size
        )
        queue_handler.setLevel(level)
        queue_handler.addFilter(correlation_filter)
        logger.addHandler(queue_handler)

    _configured_logger = ContextAwareLogger(logger)
    _configured_logger.info(
        "Logger configured",
        extra={"component": component, "queue_name": queue_name if enable_queue else None},
    )
    return _configured_logger


def get_logger(log_level: Optional[Union[int, str]] = None) -> ContextAwareLogger:
    """The logger from configure_logging, else a wrapper around ``token_guardian``."""
    if _configured_logger is not None:
        return _configured_logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(_level(log_level if log_level is not None else get_config().logging.level))
    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the logger installed by configure_logging."""
    global _configured_logger
    _configured_logger = None

"""Logging configuration for GAgent.

Records emitted while a controller pipeline is running are stamped with the
task and run they belong to, so interleaved runs can be told apart in both
console and JSON output without every call site passing ``extra=``.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Iterator

# (task_id, run_id) of the pipeline running in the current asyncio context
_task_context: ContextVar[tuple[str, int] | None] = ContextVar("gagent_task_context", default=None)

# Record attributes that belong to the run the record was emitted from
TASK_FIELDS = ("task_id", "run_id")

# Record attributes set by the HTTP request middleware
REQUEST_FIELDS = ("method", "path", "status_code", "duration_ms", "client_ip")


@contextmanager
def task_context(task_id: str, run_id: int) -> Iterator[None]:
    """Attribute every record logged inside the block to ``task_id``/``run_id``."""
    token = _task_context.set((task_id, run_id))
    try:
        yield
    finally:
        _task_context.reset(token)


def current_task_context() -> tuple[str, int] | None:
    return _task_context.get()


class TaskContextFilter(logging.Filter):
    """Copy the active task context onto records that don't carry their own."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _task_context.get()
        if context is not None:
            task_id, run_id = context
            if not hasattr(record, "task_id"):
                record.task_id = task_id
            if not hasattr(record, "run_id"):
                record.run_id = run_id
        return True


def record_fields(record: logging.LogRecord, names: tuple[str, ...]) -> dict[str, Any]:
    return {name: getattr(record, name) for name in names if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for production log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_fields(record, TASK_FIELDS),
        }

        request = record_fields(record, REQUEST_FIELDS)
        if request:
            log_data["request"] = request

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S")

        # Run prefix goes first so a single task can be followed with grep
        task = record_fields(record, TASK_FIELDS)
        prefix = f"[{task['task_id']}#{task.get('run_id', '-')}] " if "task_id" in task else ""

        request = record_fields(record, REQUEST_FIELDS)
        suffix = ""
        if "method" in request and "path" in request:
            suffix = f" {request['method']} {request['path']}"
            if "status_code" in request:
                suffix += f" -> {request['status_code']}"
            if "duration_ms" in request:
                suffix += f" ({request['duration_ms']:.1f}ms)"

        message = (
            f"{timestamp} {color}{record.levelname:8}{self.RESET} {prefix}{record.name}: "
            f"{record.getMessage()}{suffix}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(debug: bool = False, json_logs: bool = False) -> None:
    """Configure application logging.

    Args:
        debug: Enable debug level logging (always uses the console format)
        json_logs: Use JSON format (for production)
    """
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TaskContextFilter())
    handler.setFormatter(JSONFormatter() if json_logs and not debug else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    for name in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={logging.getLevelName(level)}, json={json_logs}")

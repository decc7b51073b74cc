from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Final, Iterator, Optional

_run_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "run_id", default=None
)
_tile_key_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "tile_key", default=None
)


def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()


def get_tile_key() -> Optional[str]:
    return _tile_key_ctx.get()


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    token = _run_id_ctx.set(run_id)
    try:
        yield
    finally:
        _run_id_ctx.reset(token)


@contextmanager
def tile_context(key: str) -> Iterator[None]:
    token = _tile_key_ctx.set(key)
    try:
        yield
    finally:
        _tile_key_ctx.reset(token)


_STANDARD_RECORD_ATTRS: Final[set[str]] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
    "run_id",
    "tile_key",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if timestamp.endswith("+00:00"):
            timestamp = timestamp[:-6] + "Z"

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS:
                continue
            extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            extra["stack"] = self.formatStack(record.stack_info)

        payload = {
            "timestamp": timestamp,
            "level": record.levelname.lower(),
            "logger": record.name,
            "run_id": getattr(record, "run_id", None) or "-",
            "tile_key": getattr(record, "tile_key", None),
            "message": record.getMessage(),
            "extra": extra,
        }
        return json.dumps(payload, ensure_ascii=False, default=str)


_LOGGING_CONFIGURED = False
_ORIGINAL_LOG_RECORD_FACTORY = logging.getLogRecordFactory()


def _log_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _ORIGINAL_LOG_RECORD_FACTORY(*args, **kwargs)
    record.run_id = get_run_id() or "-"
    record.tile_key = get_tile_key()
    return record


def configure_logging(*, log_level: str = "INFO", json_output: bool = True) -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(run_id)s] %(message)s")
        )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level.upper())
    logging.setLogRecordFactory(_log_record_factory)

    # botocore logs request bodies at DEBUG.
    for logger_name in ("botocore", "boto3", "urllib3", "rasterio"):
        logging.getLogger(logger_name).setLevel(max(logging.INFO, root.level))

    _LOGGING_CONFIGURED = True

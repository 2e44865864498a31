import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

_CONTEXT_FIELDS = ("run_id", "mode", "stage")
_log_ctx: ContextVar[dict] = ContextVar("snapsolve_log_context", default={})


def set_log_context(**kwargs):
    ctx = dict(_log_ctx.get())
    ctx.update(kwargs)
    _log_ctx.set(ctx)


def clear_log_context(keys=None):
    if keys is None:
        _log_ctx.set({})
        return
    ctx = {k: v for k, v in _log_ctx.get().items() if k not in keys}
    _log_ctx.set(ctx)


def get_log_context() -> dict:
    return dict(_log_ctx.get())


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            data[field] = getattr(record, field, None) or ctx.get(field)

        if hasattr(record, "duration_ms"):
            data["duration_ms"] = record.duration_ms
        if hasattr(record, "error_code"):
            data["error_code"] = record.error_code
        if hasattr(record, "metrics"):
            data["metrics"] = record.metrics
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, default=str)


def setup_logging(level=logging.INFO, log_file: str = None) -> logging.Logger:
    logger = logging.getLogger("snapsolve")
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger

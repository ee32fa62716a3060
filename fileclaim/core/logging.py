"""
JSON logs, one object per line. Download tokens are bearer secrets: only an
8-character prefix may appear in any record, including access logs that carry
the request path.
"""
import json
import logging
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from fileclaim.core.config import Settings

TOKEN_PREFIX_LENGTH = 8

# /download/<token>, /file/<token> as they appear in access-log request lines
_TOKEN_PATH_RE = re.compile(r"(/(?:download|file)/)([A-Za-z0-9_-]{1,%d})[A-Za-z0-9_-]*" % TOKEN_PREFIX_LENGTH)


def token_prefix(token: str) -> str:
    """Loggable handle for a token; full tokens never reach the logs."""
    return token[:TOKEN_PREFIX_LENGTH]


def redact_token_paths(text: str) -> str:
    return _TOKEN_PATH_RE.sub(r"\1\2…", text)


class TokenPathFilter(logging.Filter):
    """Shortens tokens in request paths (uvicorn.access passes the path in args)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_token_paths(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact_token_paths(a) if isinstance(a, str) else a for a in record.args)
        path = getattr(record, "path", None)
        if isinstance(path, str):
            record.path = redact_token_paths(path)
        return True


class JsonFormatter(logging.Formatter):
    """JSON log formatter with support for extra fields."""

    # Fields to extract from log record's extra dict
    EXTRA_FIELDS = (
        "transaction_ref", "item_id", "token_prefix", "order_id",
        "path", "method", "status_code", "status", "reason",
        "source", "error", "count",
        "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.EXTRA_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _handlers(settings: Settings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )
    formatter = JsonFormatter()
    token_filter = TokenPathFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(token_filter)
    return handlers


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = _handlers(settings)
    # uvicorn installs its own handlers; route its records through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

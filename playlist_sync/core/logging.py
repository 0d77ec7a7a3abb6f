# playlist_sync/core/logging.py
from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

# ---- Correlation id ----------------------------------------------------------
# HTTP requests carry X-Request-ID; sync runs started outside a request get "sync-<hex>".
_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

def set_request_id(value: str) -> None:
    _request_id_ctx.set(value)

def get_request_id() -> str:
    return _request_id_ctx.get()

@contextmanager
def run_context(prefix: str = "sync") -> Iterator[str]:
    """Tag every line of one sync run; keeps an enclosing request id if there is one."""
    current = get_request_id()
    if current != "-":
        yield current
        return
    token = _request_id_ctx.set(f"{prefix}-{uuid.uuid4().hex[:8]}")
    try:
        yield _request_id_ctx.get()
    finally:
        _request_id_ctx.reset(token)

class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True

# ---- JSON lines --------------------------------------------------------------
# attributes every LogRecord has; anything else came in through `extra=`
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "request_id"}

def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in record.__dict__.items():
        if k in _STANDARD_ATTRS:
            continue
        try:
            json.dumps(v)
        except (TypeError, ValueError):
            v = repr(v)
        out[k] = v
    return out

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        try:
            line: Dict[str, Any] = {
                "ts": ts,
                "lvl": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "request_id": getattr(record, "request_id", "-"),
                "at": f"{record.module}:{record.lineno}",
            }
            line.update({k: v for k, v in _extras(record).items() if k not in line})
            if record.exc_info:
                line["exc"] = self.formatException(record.exc_info)
            return json.dumps(line, ensure_ascii=False)
        except Exception as e:  # a log line must never take the sync down
            return json.dumps({"ts": ts, "lvl": "ERROR", "logger": "logging",
                               "msg": f"formatting-error: {e!r}"}, ensure_ascii=False)

# ---- Setup -------------------------------------------------------------------
_FRAMEWORK_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "playlist_sync")

def setup_logging(log_dir: str | None = None) -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_path = Path(log_dir or os.getenv("LOG_DIR", "logs"))
    log_path.mkdir(parents=True, exist_ok=True)

    handlers = [
        RotatingFileHandler(
            log_path / "playlist_sync.log",
            maxBytes=int(os.getenv("LOG_MAX_BYTES", "1048576")),
            backupCount=int(os.getenv("LOG_BACKUPS", "7")),
            encoding="utf-8",
        ),
        logging.StreamHandler(),
    ]
    formatter, rid = JsonFormatter(), RequestIdFilter()
    for h in handlers:
        h.setFormatter(formatter)
        h.addFilter(rid)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)

    for name in _FRAMEWORK_LOGGERS:
        logging.getLogger(name).setLevel(level)
    # request URLs at INFO would flood the sync log
    logging.getLogger("httpx").setLevel("WARNING")
    logging.getLogger("httpcore").setLevel("WARNING")

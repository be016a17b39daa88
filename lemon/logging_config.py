from __future__ import annotations

import json
import logging
import os
import re
from datetime import UTC, datetime

from flask import g, has_request_context, request

from .utils.request import _get_request_ip

LOG_FORMAT = (os.environ.get("LEMON_LOG_FORMAT", "json") or "json").strip().lower()
LOG_LEVEL = (os.environ.get("LEMON_LOG_LEVEL", "INFO") or "INFO").strip().upper()
QUIET_LOGGERS = [
    name.strip()
    for name in (os.environ.get("LEMON_LOG_QUIET") or "werkzeug,botocore,urllib3").split(",")
    if name.strip()
]
REQUEST_ID_HEADER = (
    os.environ.get("LEMON_REQUEST_ID_HEADER", "X-Request-ID") or "X-Request-ID"
).strip()
REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,128}$")

CONTEXT_FIELDS = ("request_id", "remote_addr", "method", "path", "user_id")
PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s]: %(message)s"


def _request_context() -> dict:
    if not has_request_context():
        return dict.fromkeys(CONTEXT_FIELDS)
    # Only report a user the request already resolved; logging must not hit the store.
    user = g.get("_current_user")
    return {
        "request_id": g.get("request_id"),
        "remote_addr": _get_request_ip(),
        "method": request.method,
        "path": request.path,
        "user_id": getattr(user, "id", None),
    }


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _request_context().items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                payload[key] = value
        audit = getattr(record, "audit", None)
        if audit:
            payload["audit"] = audit
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


def configure_logging(app) -> None:
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    formatter = JsonFormatter() if LOG_FORMAT == "json" else logging.Formatter(PLAIN_FORMAT)
    for handler in root.handlers:
        handler.setFormatter(formatter)
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(RequestContextFilter())
    root.setLevel(LOG_LEVEL)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.handlers = root.handlers
    app.logger.setLevel(LOG_LEVEL)
    app.logger.propagate = False

from __future__ import annotations

import os
from typing import Any


def parse_bool(value) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def parse_int(value, default: int, minimum: int | None = None) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        parsed = default
    if minimum is not None:
        parsed = max(minimum, parsed)
    return parsed


LEMON_ENV = (os.environ.get("LEMON_ENV") or "production").strip().lower()
IS_PRODUCTION = LEMON_ENV == "production"
APP_ORIGIN = (os.environ.get("LEMON_APP_ORIGIN") or "").strip()

UPLOAD_MAX_BYTES = parse_int(os.environ.get("LEMON_UPLOAD_MAX_BYTES"), int(4.5 * 1024 * 1024), minimum=1)
# Flask refuses bodies above this before any handler runs; keep it well above
# the upload ceiling so oversized files still get the JSON 413 from the handler.
REQUEST_MAX_BYTES = parse_int(
    os.environ.get("LEMON_REQUEST_MAX_BYTES"), 4 * UPLOAD_MAX_BYTES, minimum=UPLOAD_MAX_BYTES
)


def load_flask_config() -> dict[str, Any]:
    return {
        "RATELIMIT_STORAGE_URI": os.environ.get("LEMON_RATE_LIMIT_STORAGE_URI", "memory://"),
        "MAX_CONTENT_LENGTH": REQUEST_MAX_BYTES,
        "JSON_SORT_KEYS": False,
    }

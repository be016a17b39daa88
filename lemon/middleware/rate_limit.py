from __future__ import annotations

import os

from flask_limiter import Limiter

from ..utils.request import _get_rate_limit_key

# Coarse per-IP ceilings for anonymous read routes. Per-account windows
# (uploads, logins, key rotation, ...) live in services.rate_limiter.
RATE_LIMIT_DOWNLOADS = os.environ.get("LEMON_RATE_LIMIT_DOWNLOADS", "1000 per hour")
RATE_LIMIT_PUBLIC_READS = os.environ.get("LEMON_RATE_LIMIT_PUBLIC_READS", "600 per minute")

limiter = Limiter(key_func=_get_rate_limit_key, default_limits=[])


def init_rate_limiter(app) -> None:
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)
    limiter.init_app(app)

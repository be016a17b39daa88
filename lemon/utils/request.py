from __future__ import annotations

import logging
from urllib.parse import urlsplit

from flask import jsonify, request

from ..config import APP_ORIGIN
from .. import metrics
from .validation import _normalize_ip

logger = logging.getLogger("lemon.request")


def _get_request_ip() -> str | None:
    candidates = [
        request.headers.get("CF-Connecting-IP"),
        request.headers.get("X-Forwarded-For"),
        request.headers.get("X-Real-IP"),
        request.remote_addr,
    ]

    for candidate in candidates:
        ip = _normalize_ip(candidate)
        if ip:
            return ip
    return None


def _get_rate_limit_key() -> str:
    try:
        ip = _get_request_ip()
    except RuntimeError:
        ip = None
    return ip or "unknown"


def _origin_of(url: str | None) -> str | None:
    if not url:
        return None
    parts = urlsplit(url.strip())
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


def get_base_url() -> str:
    """Canonical origin: ``LEMON_APP_ORIGIN`` when valid, else forwarded headers."""
    configured = _origin_of(APP_ORIGIN)
    if configured:
        return configured
    proto = (request.headers.get("X-Forwarded-Proto") or request.scheme or "http").split(",")[0].strip()
    host = (request.headers.get("X-Forwarded-Host") or request.host or "localhost").split(",")[0].strip()
    return f"{proto}://{host}"


def is_same_origin() -> bool:
    """Requests without an Origin header pass; otherwise it must match the base URL."""
    origin = request.headers.get("Origin")
    if not origin:
        return True
    return _origin_of(origin) == get_base_url().lower()


def cross_origin_response():
    logger.info("Rejected cross-origin %s %s", request.method, request.path)
    return jsonify({"error": "Invalid origin."}), 403


def rate_limited_response(result, now: float, scope: str, message: str = "Too many requests."):
    if metrics.RATE_LIMITED is not None:
        metrics.RATE_LIMITED.labels(scope=scope).inc()
    resp = jsonify({"error": message})
    resp.status_code = 429
    resp.headers["Retry-After"] = str(result.retry_after(now))
    resp.headers["Cache-Control"] = "no-store"
    return resp

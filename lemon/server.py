"""
Lemon file host

Provides:
- Uploads (ShareX compatible, upload-key auth):
  - POST /api/upload (alias POST /upload)
- Media:
  - GET /api/media, PATCH/DELETE /api/media/<id>
  - GET /api/media/<id>/download: access-checked download gateway
  - GET /file/<id>: share link metadata
  - GET /api/u/<username>/media: user gallery
- Accounts (cookie sessions):
  - POST /api/auth/login, /api/auth/register, /api/auth/logout
  - /api/user/settings, /api/user/upload-key, /api/user/username,
    /api/user/password, /api/user/invites, /api/sharex-config
- Admin:
  - /api/admin/users, /api/admin/users/<id>/ban, /api/admin/invites[...]
- Ops: /health, /version, /metrics
"""

from __future__ import annotations

import logging
import os
import secrets
import time

import sentry_sdk
from flask import Flask, g, has_request_context, jsonify, request
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import RequestEntityTooLarge

from .cli import register_cli
from .config import load_flask_config
from .logging_config import REQUEST_ID_HEADER, REQUEST_ID_RE, configure_logging
from .metrics import (
    METRICS_ENABLED,
    REQUEST_COUNT,
    REQUEST_ERRORS,
    REQUEST_IN_FLIGHT,
    REQUEST_LATENCY,
)
from .middleware.auth import _require_admin_access, _require_user, get_current_user
from .middleware.rate_limit import init_rate_limiter
from .routes.admin import create_admin_blueprint
from .routes.auth import create_auth_blueprint
from .routes.gallery import create_gallery_blueprint
from .routes.health import health_bp
from .routes.media import create_media_blueprint
from .routes.metrics import metrics_bp
from .routes.upload import create_upload_blueprint
from .routes.user import create_user_blueprint
from .services.audit import _log_auth_event
from .services.container import ServiceContainer, init_services
from .tracing import configure_tracing
from .utils.config_validation import validate_config

logger = logging.getLogger("lemon.server")

SENTRY_DSN = (os.environ.get("LEMON_SENTRY_DSN") or "").strip()
SENTRY_ENV = (
    os.environ.get("LEMON_SENTRY_ENV") or os.environ.get("SENTRY_ENVIRONMENT") or "production"
).strip()
SENTRY_RELEASE = (os.environ.get("LEMON_RELEASE") or "").strip() or None
try:
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get("LEMON_SENTRY_TRACES_SAMPLE_RATE", "0"))
except (TypeError, ValueError):
    SENTRY_TRACES_SAMPLE_RATE = 0.0


def _generate_request_id(raw: str | None) -> str:
    candidate = (raw or "").strip()
    if candidate and REQUEST_ID_RE.fullmatch(candidate):
        return candidate
    return secrets.token_urlsafe(12)


def _sentry_before_send(event, _hint):
    if has_request_context():
        request_id = getattr(g, "request_id", None)
        if request_id:
            event.setdefault("tags", {})["request_id"] = request_id
    return event


def _init_sentry() -> None:
    if not SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENV,
        release=SENTRY_RELEASE,
        integrations=[FlaskIntegration()],
        traces_sample_rate=max(0.0, SENTRY_TRACES_SAMPLE_RATE),
        send_default_pii=False,
        before_send=_sentry_before_send,
    )


def _record_request_metrics(response) -> None:
    if not METRICS_ENABLED or REQUEST_COUNT is None:
        return
    if getattr(g, "_metrics_done", False):
        return
    g._metrics_done = True
    if getattr(g, "_metrics_inflight", False):
        if REQUEST_IN_FLIGHT is not None:
            REQUEST_IN_FLIGHT.dec()
        g._metrics_inflight = False

    endpoint = request.endpoint or "unknown"
    method = request.method
    status = str(response.status_code)
    REQUEST_COUNT.labels(method, endpoint, status).inc()
    if REQUEST_LATENCY is not None and hasattr(g, "_request_started_at"):
        duration = time.perf_counter() - g._request_started_at
        REQUEST_LATENCY.labels(method, endpoint).observe(duration)
    if REQUEST_ERRORS is not None and response.status_code >= 400:
        REQUEST_ERRORS.labels(method, endpoint, status).inc()


def _init_request_context():
    g.request_id = _generate_request_id(request.headers.get(REQUEST_ID_HEADER))
    g._request_started_at = time.perf_counter()
    if METRICS_ENABLED and REQUEST_IN_FLIGHT is not None:
        REQUEST_IN_FLIGHT.inc()
        g._metrics_inflight = True


def _finalize_request(response):
    if hasattr(g, "request_id"):
        response.headers[REQUEST_ID_HEADER] = g.request_id
    _record_request_metrics(response)
    return response


def _teardown_request(_exc):
    if METRICS_ENABLED and getattr(g, "_metrics_inflight", False) and REQUEST_IN_FLIGHT is not None:
        REQUEST_IN_FLIGHT.dec()
        g._metrics_inflight = False


def _payload_too_large(_exc):
    return jsonify({"error": "Request body is too large."}), 413


def _rate_limit_exceeded(exc):
    resp = jsonify({"error": "Too many requests."})
    resp.status_code = 429
    return resp


def _internal_error(exc):
    logger.exception("Unhandled error", exc_info=getattr(exc, "original_exception", exc))
    return jsonify({"error": "Internal server error."}), 500


def create_app(services: ServiceContainer | None = None) -> Flask:
    validate_config()
    _init_sentry()

    app = Flask(__name__)
    for key, value in load_flask_config().items():
        app.config.setdefault(key, value)

    configure_logging(app)
    configure_tracing(app)
    init_services(app, services)
    init_rate_limiter(app)

    app.before_request(_init_request_context)
    app.after_request(_finalize_request)
    app.teardown_request(_teardown_request)
    app.register_error_handler(RequestEntityTooLarge, _payload_too_large)
    app.register_error_handler(429, _rate_limit_exceeded)
    app.register_error_handler(500, _internal_error)

    deps = {
        "get_current_user": get_current_user,
        "log_auth_event": _log_auth_event,
    }
    app.register_blueprint(health_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(create_upload_blueprint(deps))
    app.register_blueprint(create_media_blueprint(_require_user, deps))
    app.register_blueprint(create_gallery_blueprint(deps))
    app.register_blueprint(create_auth_blueprint(deps))
    app.register_blueprint(create_user_blueprint(_require_user, deps))
    app.register_blueprint(create_admin_blueprint(_require_admin_access, deps))

    register_cli(app)
    return app

from __future__ import annotations

import hmac

from flask import Blueprint, Response, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import metrics as app_metrics
from ..middleware.rate_limit import limiter

metrics_bp = Blueprint("metrics", __name__)


def _scrape_authorized() -> bool:
    """With ``LEMON_METRICS_TOKEN`` set, scrapers must send it as a bearer token."""
    expected = app_metrics.METRICS_TOKEN
    if not expected:
        return True
    auth = request.headers.get("Authorization") or ""
    presented = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


@metrics_bp.route("/metrics")
@limiter.exempt
def metrics():
    if not app_metrics.METRICS_ENABLED:
        return jsonify({"error": "Metrics disabled"}), 404
    if not _scrape_authorized():
        return jsonify({"error": "Unauthorized."}), 401
    resp = Response(generate_latest(app_metrics.metrics_registry()), content_type=CONTENT_TYPE_LATEST)
    resp.headers["Cache-Control"] = "no-store"
    return resp

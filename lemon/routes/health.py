from __future__ import annotations

import logging
import os

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..middleware.rate_limit import limiter
from ..services.container import get_services

logger = logging.getLogger("lemon.health")

health_bp = Blueprint("health", __name__)

VERSION = os.environ.get("LEMON_VERSION", "0.1.0-dev")


@health_bp.route("/health")
@limiter.exempt
def health_check():
    status = {"status": "healthy", "services": {}}
    overall_healthy = True

    try:
        get_services().store.ping()
        status["services"]["database"] = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed: %s", exc)
        status["services"]["database"] = "error"
        overall_healthy = False

    blob = get_services().blob
    status["services"]["blob"] = "configured" if blob.can_write else "unconfigured"

    if not overall_healthy:
        status["status"] = "unhealthy"
        return jsonify(status), 503

    return jsonify(status)


@health_bp.route("/version")
@limiter.exempt
def version():
    return jsonify(
        {
            "version": VERSION,
            "release": os.environ.get("LEMON_RELEASE", "none"),
            "environment": os.environ.get("LEMON_ENV", "production"),
        }
    )

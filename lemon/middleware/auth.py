from __future__ import annotations

from flask import g, jsonify, request

from ..services.access import is_active, is_active_admin
from ..services.container import get_services
from ..services.sessions import SESSION_COOKIE_NAME, resolve_session

_UNSET = object()


def get_current_user():
    """Session user for this request, resolved once and cached on ``g``."""
    user = getattr(g, "_current_user", _UNSET)
    if user is _UNSET:
        services = get_services()
        user = resolve_session(
            services.store, request.cookies.get(SESSION_COOKIE_NAME), services.now()
        )
        g._current_user = user
    return user


def _require_user():
    user = get_current_user()
    if not is_active(user):
        resp = jsonify({"error": "Unauthorized."})
        resp.status_code = 401
        return resp, None
    return None, user


def _require_admin_access():
    error_resp, user = _require_user()
    if error_resp:
        return error_resp, None
    if not is_active_admin(user):
        resp = jsonify({"error": "Forbidden."})
        resp.status_code = 403
        return resp, None
    return None, user

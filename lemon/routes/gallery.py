from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..middleware.rate_limit import RATE_LIMIT_PUBLIC_READS, limiter
from ..services.access import is_active, is_admin
from ..services.container import get_services
from ..services.users import normalize_username
from .media import MEDIA_LIST_MAX, _media_payload, _parse_limit


def create_gallery_blueprint(deps: dict):
    get_current_user = deps["get_current_user"]

    bp = Blueprint("gallery", __name__)

    @bp.route("/api/u/<username>/media", methods=["GET"])
    @limiter.limit(RATE_LIMIT_PUBLIC_READS)
    def user_gallery(username: str):
        store = get_services().store
        owner = store.find_user_by_username(normalize_username(username))
        if owner is None:
            return jsonify({"error": "User not found."}), 404

        viewer = get_current_user()
        include_private = is_active(viewer) and (is_admin(viewer) or viewer.id == owner.id)
        items = store.list_media_for_user(
            owner.id,
            limit=_parse_limit(request.args.get("limit", MEDIA_LIST_MAX)),
            include_private=include_private,
        )
        resp = jsonify(
            {
                "user": {"username": owner.username},
                "media": [_media_payload(item) for item in items],
            }
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    return bp

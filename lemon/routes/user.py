from __future__ import annotations

import json
import logging

from flask import Blueprint, Response, jsonify, request

from ..services.access import VISIBILITIES
from ..services.container import get_services
from ..services.credentials import create_upload_key, hash_password, hash_upload_key, verify_password
from ..services.rate_limiter import PASSWORD_CHANGE, UPLOAD_KEY_ROTATION, USERNAME_CHANGE
from ..services.store import ConflictError
from ..services.users import (
    MAX_RAW_PASSWORD_LENGTH,
    _iso,
    _password_rules_error,
    is_valid_username,
    normalize_username,
    serialize_user,
)
from ..utils.request import (
    _get_rate_limit_key,
    cross_origin_response,
    get_base_url,
    is_same_origin,
    rate_limited_response,
)

logger = logging.getLogger("lemon.user")

SHAREX_VERSION = "15.0.0"
SHAREX_NAME = "Lemon"


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


def sharex_config(origin: str, upload_key: str) -> dict:
    return {
        "Version": SHAREX_VERSION,
        "Name": SHAREX_NAME,
        "DestinationType": "ImageUploader, FileUploader",
        "RequestMethod": "POST",
        "RequestType": "POST",
        "RequestURL": f"{origin}/api/upload?format=text",
        "Body": "MultipartFormData",
        "FileFormName": "file",
        "Headers": {"X-Upload-Key": upload_key},
        "ResponseType": "Text",
        "URL": "{response}",
    }


def create_user_blueprint(require_user, deps: dict):
    log_auth_event = deps["log_auth_event"]

    bp = Blueprint("user", __name__)

    def _guarded(rule, message: str):
        """Session user + same origin + per user/IP window. Returns ``(error, user)``."""
        error_resp, user = require_user()
        if error_resp:
            return error_resp, None
        if not is_same_origin():
            return cross_origin_response(), None
        services = get_services()
        limit = services.rate_limiter.hit(rule, user.id, _get_rate_limit_key())
        if not limit.allowed:
            return rate_limited_response(limit, services.now(), rule.name, message), None
        return None, user

    def _rotate_upload_key(user) -> str:
        upload_key = create_upload_key()
        get_services().store.set_upload_key_hash(user.id, hash_upload_key(upload_key))
        log_auth_event("upload_key_rotated", True, user_id=user.id)
        return upload_key

    @bp.route("/api/user/settings", methods=["GET"])
    def get_settings():
        error_resp, user = require_user()
        if error_resp:
            return error_resp
        return _no_store(jsonify({"user": serialize_user(user)}))

    @bp.route("/api/user/settings", methods=["POST"])
    def update_settings():
        error_resp, user = require_user()
        if error_resp:
            return error_resp
        if not is_same_origin():
            return cross_origin_response()

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON body."}), 400
        visibility = payload.get("defaultVisibility")
        if visibility not in VISIBILITIES:
            return jsonify({"error": "Invalid visibility."}), 400

        get_services().store.set_default_visibility(user.id, visibility)
        return _no_store(jsonify({"ok": True, "defaultVisibility": visibility}))

    @bp.route("/api/user/upload-key", methods=["POST"])
    def rotate_upload_key():
        error_resp, user = _guarded(
            UPLOAD_KEY_ROTATION, "Too many upload key requests. Try again later."
        )
        if error_resp:
            return error_resp
        return _no_store(jsonify({"uploadKey": _rotate_upload_key(user)}))

    @bp.route("/api/sharex-config", methods=["GET"])
    def download_sharex_config():
        error_resp, user = _guarded(
            UPLOAD_KEY_ROTATION, "Too many upload key requests. Try again later."
        )
        if error_resp:
            return error_resp

        content = json.dumps(sharex_config(get_base_url(), _rotate_upload_key(user)), indent=2)
        resp = Response(content, content_type="application/octet-stream")
        resp.headers["Content-Disposition"] = 'attachment; filename="lemon.sxcu"'
        return _no_store(resp)

    @bp.route("/api/user/username", methods=["POST"])
    def change_username():
        error_resp, user = _guarded(
            USERNAME_CHANGE, "Too many username change attempts. Try again later."
        )
        if error_resp:
            return error_resp

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON body."}), 400
        username = payload.get("username")
        if not isinstance(username, str) or not username:
            return jsonify({"error": "Username is required."}), 400
        if len(username) > 200:
            return jsonify({"error": "Username is too long."}), 400

        username = normalize_username(username)
        if not is_valid_username(username):
            return (
                jsonify({"error": "Username must be 3-20 chars: letters, numbers, dashes, underscores."}),
                400,
            )
        if username == user.username:
            return jsonify({"error": "Choose a new username to update."}), 400

        try:
            get_services().store.set_username(user.id, username)
        except ConflictError:
            return jsonify({"error": "Username is already taken."}), 409

        logger.info("User %s changed username", user.id)
        return _no_store(jsonify({"ok": True, "username": username}))

    @bp.route("/api/user/password", methods=["POST"])
    def change_password():
        error_resp, user = _guarded(
            PASSWORD_CHANGE, "Too many password change attempts. Try again later."
        )
        if error_resp:
            return error_resp

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON body."}), 400
        current = payload.get("currentPassword")
        new = payload.get("nextPassword")
        if not isinstance(current, str) or not isinstance(new, str) or not current or not new:
            return jsonify({"error": "Current and new passwords are required."}), 400
        if len(current) > MAX_RAW_PASSWORD_LENGTH or len(new) > MAX_RAW_PASSWORD_LENGTH:
            return jsonify({"error": "Password is too long."}), 400
        if current == new:
            return jsonify({"error": "New password must be different from the current password."}), 400
        password_error = _password_rules_error(new)
        if password_error:
            return jsonify({"error": password_error}), 400

        if not verify_password(current, user.password_hash):
            log_auth_event("password_change", False, "wrong_password", user_id=user.id)
            return jsonify({"error": "Current password is incorrect."}), 400

        get_services().store.set_password_hash(user.id, hash_password(new))
        log_auth_event("password_change", True, user_id=user.id)
        return _no_store(jsonify({"ok": True}))

    @bp.route("/api/user/invites", methods=["GET"])
    def list_my_invites():
        error_resp, user = require_user()
        if error_resp:
            return error_resp
        invites = get_services().store.list_unused_invites_owned_by(user.id)
        return _no_store(
            jsonify(
                {
                    "invites": [
                        {"id": invite.id, "code": invite.code, "createdAt": _iso(invite.created_at)}
                        for invite in invites
                    ]
                }
            )
        )

    return bp

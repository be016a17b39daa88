from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from ..services.access import is_banned
from ..services.container import get_services
from ..services.credentials import create_upload_key, hash_password, hash_upload_key, verify_password
from ..services.rate_limiter import LOGIN, REGISTER
from ..services.sessions import (
    SESSION_COOKIE_NAME,
    clear_session_cookie,
    create_session,
    destroy_session,
    set_session_cookie,
)
from ..services.store import ConflictError, InviteUnavailableError
from ..services.users import (
    MAX_INVITE_CODE_LENGTH,
    MAX_RAW_PASSWORD_LENGTH,
    _password_rules_error,
    is_valid_email,
    is_valid_username,
    normalize_email,
    normalize_invite_code,
    normalize_username,
    serialize_user,
)
from ..utils.request import (
    _get_rate_limit_key,
    cross_origin_response,
    is_same_origin,
    rate_limited_response,
)

logger = logging.getLogger("lemon.auth")

MAX_IDENTIFIER_LENGTH = 254
MAX_RAW_USERNAME_LENGTH = 50


def _user_response(user, **extra):
    payload = {"user": serialize_user(user)}
    payload.update(extra)
    resp = jsonify(payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def create_auth_blueprint(deps: dict):
    log_auth_event = deps["log_auth_event"]

    bp = Blueprint("auth", __name__)

    @bp.route("/api/auth/login", methods=["POST"])
    def login():
        if not is_same_origin():
            return cross_origin_response()

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON body."}), 400

        identifier = payload.get("identifier")
        password = payload.get("password")
        if not isinstance(identifier, str) or not isinstance(password, str) or not identifier or not password:
            return jsonify({"error": "Missing credentials."}), 400
        if len(identifier) > MAX_IDENTIFIER_LENGTH or len(password) > MAX_RAW_PASSWORD_LENGTH:
            return jsonify({"error": "Invalid credentials."}), 401

        identifier = normalize_email(identifier) if "@" in identifier else normalize_username(identifier)

        services = get_services()
        limit = services.rate_limiter.hit(LOGIN, identifier, _get_rate_limit_key())
        if not limit.allowed:
            log_auth_event("login", False, "rate_limited")
            return rate_limited_response(
                limit, services.now(), LOGIN.name, "Too many login attempts. Try again later."
            )

        user = services.store.find_user_by_identifier(identifier)
        if user is None or not verify_password(password, user.password_hash):
            log_auth_event("login", False, "invalid_credentials")
            return jsonify({"error": "Invalid credentials."}), 401

        if is_banned(user):
            log_auth_event("login", False, "banned", user_id=user.id)
            return jsonify({"error": "Account disabled."}), 403

        now = services.now()
        purged = services.store.purge_expired_sessions(int(now))
        if purged:
            logger.info("Purged %s expired sessions", purged)

        token, expires_at = create_session(services.store, user.id, now)
        log_auth_event("login", True, user_id=user.id)
        resp = _user_response(user)
        set_session_cookie(resp, token, expires_at)
        return resp

    @bp.route("/api/auth/register", methods=["POST"])
    def register():
        if not is_same_origin():
            return cross_origin_response()

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON body."}), 400

        email = payload.get("email")
        username = payload.get("username")
        password = payload.get("password")
        invite_code = payload.get("inviteCode")
        fields = (email, username, password, invite_code)
        if not all(isinstance(value, str) and value for value in fields):
            return jsonify({"error": "Missing required fields."}), 400
        if (
            len(email) > MAX_IDENTIFIER_LENGTH
            or len(username) > MAX_RAW_USERNAME_LENGTH
            or len(password) > MAX_RAW_PASSWORD_LENGTH
            or len(invite_code) > MAX_INVITE_CODE_LENGTH
        ):
            return jsonify({"error": "Invalid registration data."}), 400

        email = normalize_email(email)
        username = normalize_username(username)
        invite_code = normalize_invite_code(invite_code)

        if not is_valid_email(email):
            return jsonify({"error": "Invalid email address."}), 400
        if not is_valid_username(username):
            return jsonify({"error": "Invalid username."}), 400
        password_error = _password_rules_error(password)
        if password_error:
            return jsonify({"error": password_error}), 400

        services = get_services()
        limit = services.rate_limiter.hit(REGISTER, _get_rate_limit_key())
        if not limit.allowed:
            log_auth_event("register", False, "rate_limited")
            return rate_limited_response(
                limit, services.now(), REGISTER.name, "Too many registration attempts. Try again later."
            )

        upload_key = create_upload_key()
        try:
            user, invite = services.store.register_user(
                email=email,
                username=username,
                password_hash=hash_password(password),
                upload_key_hash=hash_upload_key(upload_key),
                invite_code=invite_code,
            )
        except InviteUnavailableError:
            log_auth_event("register", False, "invite_unavailable")
            return jsonify({"error": "Invite code is invalid or used."}), 400
        except ConflictError:
            log_auth_event("register", False, "conflict")
            return jsonify({"error": "Email or username already in use."}), 409

        token, expires_at = create_session(services.store, user.id, services.now())
        log_auth_event("register", True, invite.id, user_id=user.id)
        resp = _user_response(user, uploadKey=upload_key)
        set_session_cookie(resp, token, expires_at)
        return resp

    @bp.route("/api/auth/logout", methods=["POST"])
    def logout():
        if not is_same_origin():
            return cross_origin_response()

        services = get_services()
        removed = destroy_session(services.store, request.cookies.get(SESSION_COOKIE_NAME))
        log_auth_event("logout", True, "session_removed" if removed else "no_session")
        resp = jsonify({"ok": True})
        resp.headers["Cache-Control"] = "no-store"
        clear_session_cookie(resp)
        return resp

    return bp

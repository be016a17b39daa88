from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from ..services.access import ROLE_BANNED, ROLE_USER
from ..services.container import get_services
from ..services.invites import gift_invites, users_with_invite_info, wave_invites
from ..services.rate_limiter import ADMIN_INVITE
from ..services.users import _iso, normalize_username, serialize_invite
from ..utils.request import (
    _get_rate_limit_key,
    cross_origin_response,
    is_same_origin,
    rate_limited_response,
)
from ..utils.validation import is_valid_object_id

logger = logging.getLogger("lemon.admin")

ADMIN_INVITE_LIST_LIMIT = 100


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def create_admin_blueprint(require_admin_access, deps: dict):
    log_auth_event = deps["log_auth_event"]

    bp = Blueprint("admin", __name__)

    def _admin_mutation():
        error_resp, admin = require_admin_access()
        if error_resp:
            return error_resp, None
        if not is_same_origin():
            return cross_origin_response(), None
        return None, admin

    @bp.route("/api/admin/users", methods=["GET"])
    def list_users():
        error_resp, _admin = require_admin_access()
        if error_resp:
            return error_resp
        return _no_store(jsonify({"users": users_with_invite_info(get_services().store)}))

    @bp.route("/api/admin/users/<user_id>/ban", methods=["POST"])
    def toggle_ban(user_id: str):
        error_resp, admin = _admin_mutation()
        if error_resp:
            return error_resp
        if not is_valid_object_id(user_id):
            return jsonify({"error": "Invalid id."}), 400

        store = get_services().store
        target = store.get_user(user_id.lower())
        if target is None:
            return jsonify({"error": "User not found."}), 404
        if target.id == admin.id:
            return jsonify({"error": "Cannot ban yourself."}), 400

        new_role = ROLE_USER if target.role == ROLE_BANNED else ROLE_BANNED
        store.set_role(target.id, new_role)
        banned = new_role == ROLE_BANNED
        logger.info("Admin %s set role %s on user %s", admin.id, new_role, target.id)
        log_auth_event("user_ban" if banned else "user_unban", True, target.id, user_id=admin.id)
        return _no_store(
            jsonify(
                {
                    "success": True,
                    "role": new_role,
                    "message": "User has been banned." if banned else "User has been unbanned.",
                }
            )
        )

    @bp.route("/api/admin/invites", methods=["GET"])
    def list_invites():
        error_resp, _admin = require_admin_access()
        if error_resp:
            return error_resp
        invites = get_services().store.list_invites(limit=ADMIN_INVITE_LIST_LIMIT)
        payload = []
        for invite in invites:
            item = serialize_invite(invite)
            item["usedBy"] = invite.used_by
            item["ownedBy"] = invite.owned_by
            payload.append(item)
        return _no_store(jsonify({"invites": payload}))

    @bp.route("/api/admin/invites", methods=["POST"])
    def create_invite():
        error_resp, admin = _admin_mutation()
        if error_resp:
            return error_resp

        services = get_services()
        limit = services.rate_limiter.hit(ADMIN_INVITE, admin.id, _get_rate_limit_key())
        if not limit.allowed:
            return rate_limited_response(
                limit, services.now(), ADMIN_INVITE.name, "Too many invite requests. Try again later."
            )

        invite = services.store.create_invite(created_by=admin.id)
        log_auth_event("invite_create", True, invite.id, user_id=admin.id)
        return _no_store(
            jsonify(
                {"invite": {"id": invite.id, "code": invite.code, "createdAt": _iso(invite.created_at)}}
            )
        )

    @bp.route("/api/admin/invites/<invite_id>", methods=["DELETE"])
    def delete_invite(invite_id: str):
        error_resp, admin = _admin_mutation()
        if error_resp:
            return error_resp
        if not is_valid_object_id(invite_id):
            return jsonify({"error": "Invalid id."}), 400

        store = get_services().store
        invite = store.get_invite(invite_id.lower())
        if invite is None:
            return jsonify({"error": "Invite not found."}), 404
        if invite.is_used or not store.delete_unused_invite(invite.id):
            return jsonify({"error": "Cannot delete a used invite."}), 400

        log_auth_event("invite_delete", True, invite.id, user_id=admin.id)
        return _no_store(jsonify({"success": True}))

    @bp.route("/api/admin/invites/gift", methods=["POST"])
    def gift():
        error_resp, admin = _admin_mutation()
        if error_resp:
            return error_resp

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        username = payload.get("username")
        if not isinstance(username, str) or not username.strip():
            return jsonify({"error": "Username is required."}), 400

        store = get_services().store
        target = store.find_user_by_username(normalize_username(username))
        if target is None:
            return jsonify({"error": "User not found."}), 404

        invites = gift_invites(store, admin, target, payload.get("count", 1))
        log_auth_event("invite_gift", True, f"{target.id}:{len(invites)}", user_id=admin.id)
        return _no_store(
            jsonify(
                {
                    "success": True,
                    "invites": [
                        {"id": invite.id, "code": invite.code, "createdAt": _iso(invite.created_at)}
                        for invite in invites
                    ],
                    "message": f"Gifted {_plural(len(invites), 'invite')} to {target.username}.",
                }
            )
        )

    @bp.route("/api/admin/invites/wave", methods=["POST"])
    def wave():
        error_resp, admin = _admin_mutation()
        if error_resp:
            return error_resp

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        store = get_services().store
        users, created = wave_invites(store, admin, payload.get("count", 1))
        if users == 0:
            return jsonify({"error": "No users found."}), 404

        per_user = created // users
        log_auth_event("invite_wave", True, f"{users}:{created}", user_id=admin.id)
        return _no_store(
            jsonify(
                {
                    "success": True,
                    "message": (
                        f"Gifted {_plural(per_user, 'invite')} to {_plural(users, 'user')} "
                        f"({created} total)."
                    ),
                    "totalUsers": users,
                    "invitesPerUser": per_user,
                    "totalCreated": created,
                }
            )
        )

    return bp

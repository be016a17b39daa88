from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, redirect, request, stream_with_context

from .. import metrics
from ..middleware.rate_limit import RATE_LIMIT_DOWNLOADS, RATE_LIMIT_PUBLIC_READS, limiter
from ..services.access import VISIBILITIES, can_mutate, can_read
from ..services.blob import BlobConfigError, BlobError, StoredBlob
from ..services.container import get_services
from ..services.downloads import cache_control_for, content_disposition, open_media, should_redirect
from ..services.rate_limiter import DELETE_MEDIA, UPDATE_MEDIA
from ..services.users import _iso
from ..utils.request import (
    _get_rate_limit_key,
    cross_origin_response,
    get_base_url,
    is_same_origin,
    rate_limited_response,
)
from ..utils.validation import is_valid_object_id

logger = logging.getLogger("lemon.media")

MEDIA_LIST_DEFAULT = 50
MEDIA_LIST_MAX = 200


def _media_payload(media) -> dict:
    return {
        "id": media.id,
        "originalName": media.original_name,
        "contentType": media.content_type,
        "size": media.size,
        "visibility": media.visibility,
        "createdAt": _iso(media.created_at),
    }


def _parse_limit(raw) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return MEDIA_LIST_DEFAULT
    return min(max(value, 1), MEDIA_LIST_MAX)


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _blob_error(operation: str) -> None:
    if metrics.BLOB_ERRORS is not None:
        metrics.BLOB_ERRORS.labels(operation=operation).inc()


def _load_readable_media(media_id: str, get_current_user):
    """Shared lookup for the download gateway and the share link.

    Returns ``(error_response, media)``.
    """
    if not is_valid_object_id(media_id):
        return (jsonify({"error": "Invalid id."}), 400), None
    services = get_services()
    media = services.store.get_media(media_id.lower())
    if media is None:
        return (jsonify({"error": "Not found."}), 404), None
    if not can_read(media, get_current_user()):
        return (jsonify({"error": "Forbidden."}), 403), None
    return None, media


def create_media_blueprint(require_user, deps: dict):
    get_current_user = deps["get_current_user"]
    log_auth_event = deps["log_auth_event"]

    bp = Blueprint("media", __name__)

    @bp.route("/api/media", methods=["GET"])
    def list_media():
        error_resp, user = require_user()
        if error_resp:
            return error_resp

        limit = _parse_limit(request.args.get("limit", MEDIA_LIST_DEFAULT))
        items = get_services().store.list_media_for_user(user.id, limit=limit)
        return _no_store(jsonify({"media": [_media_payload(item) for item in items]}))

    def _mutation_preamble(media_id: str, rule, message: str):
        if not is_valid_object_id(media_id):
            return (jsonify({"error": "Invalid id."}), 400), None, None
        error_resp, user = require_user()
        if error_resp:
            return error_resp, None, None
        if not is_same_origin():
            return cross_origin_response(), None, None

        services = get_services()
        limit = services.rate_limiter.hit(rule, user.id, _get_rate_limit_key())
        if not limit.allowed:
            return rate_limited_response(limit, services.now(), rule.name, message), None, None

        media = services.store.get_media(media_id.lower())
        if media is None:
            return (jsonify({"error": "Not found."}), 404), None, None
        if not can_mutate(media, user):
            return (jsonify({"error": "Forbidden."}), 403), None, None
        return None, user, media

    @bp.route("/api/media/<media_id>", methods=["PATCH"])
    def update_media(media_id: str):
        error_resp, user, media = _mutation_preamble(
            media_id, UPDATE_MEDIA, "Too many update requests. Try again later."
        )
        if error_resp:
            return error_resp

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON."}), 400

        visibility = payload.get("visibility")
        if visibility and visibility not in VISIBILITIES:
            return jsonify({"error": "Invalid visibility value."}), 400

        if visibility and visibility != media.visibility:
            get_services().store.set_media_visibility(media.id, visibility)
            logger.info("Media %s set to %s by %s", media.id, visibility, user.id)

        return _no_store(jsonify({"ok": True, "visibility": visibility or media.visibility}))

    @bp.route("/api/media/<media_id>", methods=["DELETE"])
    def delete_media(media_id: str):
        error_resp, user, media = _mutation_preamble(
            media_id, DELETE_MEDIA, "Too many delete requests. Try again later."
        )
        if error_resp:
            return error_resp

        services = get_services()
        # Blob first: if it fails the row stays so the object is never lost track of.
        try:
            services.blob.delete(StoredBlob(url=media.blob_url, pathname=media.blob_pathname))
        except BlobError as exc:
            _blob_error("delete")
            logger.error("Failed to delete blob for media %s: %s", media.id, exc)
            return jsonify({"error": "Failed to delete blob."}), 502

        services.store.delete_media(media.id)
        log_auth_event("media_delete", True, media.id, user_id=user.id)
        return _no_store(jsonify({"ok": True}))

    @bp.route("/api/media/<media_id>/download", methods=["GET"])
    @limiter.limit(RATE_LIMIT_DOWNLOADS)
    def download_media(media_id: str):
        error_resp, media = _load_readable_media(media_id, get_current_user)
        if error_resp:
            return error_resp

        if should_redirect(media):
            return redirect(media.blob_url, code=302)

        try:
            upstream = open_media(get_services().blob, media)
        except BlobConfigError:
            logger.error("Private download for %s needs a blob token", media.id)
            return jsonify({"error": "Missing blob token."}), 500
        except BlobError as exc:
            _blob_error("get")
            logger.error("Failed to fetch blob for media %s: %s", media.id, exc)
            return jsonify({"error": "Failed to fetch file."}), 502

        def generate():
            try:
                yield from upstream.iter_chunks()
            finally:
                upstream.close()

        headers = {
            "Content-Disposition": content_disposition(media.original_name),
            "Cache-Control": cache_control_for(media),
            "X-Content-Type-Options": "nosniff",
        }
        if upstream.content_length is not None:
            headers["Content-Length"] = str(upstream.content_length)
        resp = Response(
            stream_with_context(generate()),
            status=200,
            content_type=upstream.content_type or media.content_type,
            headers=headers,
        )
        # HEAD and aborted responses never run the generator.
        resp.call_on_close(upstream.close)
        return resp

    @bp.route("/file/<media_id>", methods=["GET"])
    @limiter.limit(RATE_LIMIT_PUBLIC_READS)
    def share_link(media_id: str):
        error_resp, media = _load_readable_media(media_id, get_current_user)
        if error_resp:
            return error_resp

        owner = get_services().store.get_user(media.owner_id)
        payload = _media_payload(media)
        payload.update(
            {
                "owner": owner.username if owner else None,
                "downloadUrl": f"{get_base_url()}/api/media/{media.id}/download",
            }
        )
        resp = jsonify(payload)
        resp.headers["Cache-Control"] = cache_control_for(media)
        return resp

    return bp

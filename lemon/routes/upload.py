from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request

from .. import metrics
from ..middleware.rate_limit import limiter
from ..services.blob import BlobConfigError, BlobError
from ..services.container import get_services
from ..services.rate_limiter import UPLOAD_PER_IP, UPLOAD_PER_USER
from ..services.uploads import extract_upload_key, find_uploader, prepare_upload, store_upload
from ..utils.request import _get_rate_limit_key, get_base_url, rate_limited_response
from ..utils.validation import UploadValidationError

logger = logging.getLogger("lemon.upload")


def _count(status: int) -> None:
    if metrics.UPLOAD_COUNT is not None:
        metrics.UPLOAD_COUNT.labels(status=str(status)).inc()


def _error(message: str, status: int):
    _count(status)
    resp = jsonify({"error": message})
    resp.status_code = status
    resp.headers["Cache-Control"] = "no-store"
    return resp


def create_upload_blueprint(deps: dict):
    log_auth_event = deps["log_auth_event"]

    bp = Blueprint("upload", __name__)

    @bp.route("/api/upload", methods=["POST"])
    @bp.route("/upload", methods=["POST"])
    @limiter.exempt
    def upload():
        services = get_services()

        if request.mimetype != "multipart/form-data":
            return _error("Invalid form data.", 400)

        upload_key = extract_upload_key(request)
        if not upload_key:
            return _error("Missing upload key.", 401)

        ip = _get_rate_limit_key()
        limit = services.rate_limiter.hit(UPLOAD_PER_IP, ip)
        if not limit.allowed:
            _count(429)
            return rate_limited_response(limit, services.now(), "upload-ip", "Too many uploads.")

        try:
            upload_file = prepare_upload(request.files.get("file"))
        except UploadValidationError as exc:
            return _error(str(exc), exc.status_code)

        owner = find_uploader(services.store, upload_key)
        if owner is None:
            log_auth_event("upload_key", False, "invalid_or_banned")
            return _error("Invalid upload key.", 401)

        limit = services.rate_limiter.hit(UPLOAD_PER_USER, owner.id)
        if not limit.allowed:
            _count(429)
            return rate_limited_response(limit, services.now(), "upload-user", "Too many uploads.")

        try:
            media = store_upload(services.store, services.blob, owner, upload_file)
        except BlobConfigError:
            logger.error("Upload rejected: blob storage is not configured")
            if metrics.BLOB_ERRORS is not None:
                metrics.BLOB_ERRORS.labels(operation="put").inc()
            return _error("Blob storage is not configured.", 500)
        except BlobError as exc:
            logger.error("Blob upload failed for user %s: %s", owner.id, exc)
            if metrics.BLOB_ERRORS is not None:
                metrics.BLOB_ERRORS.labels(operation="put").inc()
            return _error("Upload failed.", 502)

        _count(200)
        if metrics.UPLOAD_BYTES is not None:
            metrics.UPLOAD_BYTES.inc(media.size)
        logger.info("Stored upload %s (%s bytes) for user %s", media.id, media.size, owner.id)

        file_url = f"{get_base_url()}/file/{media.id}"
        if request.args.get("format") == "text":
            resp = Response(file_url, content_type="text/plain; charset=utf-8")
        else:
            resp = jsonify(
                {
                    "id": media.id,
                    "url": file_url,
                    "visibility": media.visibility,
                    "name": media.original_name,
                    "size": media.size,
                }
            )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    return bp

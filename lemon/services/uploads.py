from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from ..config import UPLOAD_MAX_BYTES
from ..utils.validation import (
    UploadValidationError,
    _detect_content_type,
    _extract_extension,
    _read_with_limit,
    sanitize_filename,
)
from .access import is_banned
from .credentials import hash_upload_key

logger = logging.getLogger("lemon.upload")

SNIFF_BYTES = 32


def _key_from_header(req) -> str | None:
    return req.headers.get("X-Upload-Key")


def _key_from_bearer(req) -> str | None:
    auth = req.headers.get("Authorization") or ""
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):]
    return None


def _key_from_query(req) -> str | None:
    return req.args.get("key")


def _key_from_form(req) -> str | None:
    return req.form.get("key")


# ShareX setups put the key in any of these places; order matters.
UPLOAD_KEY_EXTRACTORS: tuple[Callable, ...] = (
    _key_from_header,
    _key_from_bearer,
    _key_from_query,
    _key_from_form,
)


def extract_upload_key(req) -> str | None:
    for extractor in UPLOAD_KEY_EXTRACTORS:
        value = (extractor(req) or "").strip()
        if value:
            return value
    return None


@dataclass(frozen=True)
class PreparedUpload:
    data: bytes
    name: str
    extension: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def prepare_upload(file_storage, max_bytes: int = UPLOAD_MAX_BYTES) -> PreparedUpload:
    """
    Read and describe an uploaded file.

    Raises ``UploadValidationError`` (413) as soon as the body runs past
    ``max_bytes``; nothing is buffered beyond one extra byte.
    """
    if file_storage is None:
        raise UploadValidationError("Missing file.", 400)

    too_large = f"File exceeds {max_bytes / (1024 * 1024):g}MB limit."
    size_hint = getattr(file_storage, "content_length", None)
    if size_hint and size_hint > max_bytes:
        raise UploadValidationError(too_large, 413)

    data = _read_with_limit(file_storage.stream, max_bytes, message=too_large)

    name = sanitize_filename(file_storage.filename)
    content_type = _detect_content_type(file_storage.mimetype, data[:SNIFF_BYTES], name)
    return PreparedUpload(
        data=data,
        name=name,
        extension=_extract_extension(name),
        content_type=content_type,
    )


def build_storage_path(owner_id: str, extension: str) -> str:
    return f"{owner_id}/{uuid.uuid4()}.{extension}"


def find_uploader(store, upload_key: str):
    """Owner of ``upload_key``, or ``None`` when unknown or banned."""
    user = store.find_user_by_upload_key_hash(hash_upload_key(upload_key))
    if user is None or is_banned(user):
        return None
    return user


def store_upload(store, blob, owner, upload: PreparedUpload):
    """
    Write the blob, then the metadata row.

    A blob failure propagates as ``BlobError`` before any row exists.
    """
    pathname = build_storage_path(owner.id, upload.extension)
    stored = blob.put(pathname, upload.data, upload.content_type)
    try:
        return store.create_media(
            owner_id=owner.id,
            visibility=owner.default_visibility,
            original_name=upload.name,
            content_type=upload.content_type,
            size=upload.size,
            blob_url=stored.url,
            blob_pathname=stored.pathname,
        )
    except Exception:
        logger.exception("Media insert failed after blob write; orphaned blob %s", stored.pathname)
        raise

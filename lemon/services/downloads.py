from __future__ import annotations

import os

from ..config import parse_bool, parse_int
from ..utils.validation import safe_header_filename
from .access import VISIBILITY_PUBLIC
from .blob import BlobConfigError, StoredBlob

PUBLIC_REDIRECT = parse_bool(os.environ.get("LEMON_PUBLIC_REDIRECT", "false"))
PUBLIC_CACHE_SECONDS = parse_int(os.environ.get("LEMON_PUBLIC_CACHE_SECONDS"), 300, minimum=0)


def content_disposition(name: str | None) -> str:
    return f'attachment; filename="{safe_header_filename(name)}"'


def cache_control_for(media) -> str:
    if media.visibility == VISIBILITY_PUBLIC:
        return f"private, max-age={PUBLIC_CACHE_SECONDS}"
    return "no-store"


def should_redirect(media) -> bool:
    return PUBLIC_REDIRECT and media.visibility == VISIBILITY_PUBLIC


def open_media(blob, media):
    """
    Open the upstream object for ``media``.

    Private objects need the storage credential; its absence raises
    ``BlobConfigError``. Upstream failures raise ``BlobError``.
    """
    private = media.visibility != VISIBILITY_PUBLIC
    if private and not blob.can_read_private:
        raise BlobConfigError("Missing blob token.")
    return blob.open(StoredBlob(url=media.blob_url, pathname=media.blob_pathname), private=private)

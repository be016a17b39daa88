from __future__ import annotations

import ipaddress
import mimetypes
import os
import re

OBJECT_ID_RE = re.compile(r"^[a-f0-9]{24}$")
UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")
HEADER_FILENAME_STRIP_RE = re.compile(r'[\r\n"]')
HEADER_FILENAME_SLASH_RE = re.compile(r"[\\/]")
EXTENSION_RE = re.compile(r"^[a-z0-9]{1,16}$")

MAX_FILENAME_LENGTH = 120
MAX_HEADER_FILENAME_LENGTH = 150
DEFAULT_FILENAME = "upload"
DEFAULT_EXTENSION = "bin"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

mimetypes.add_type("image/avif", ".avif")
mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/heif", ".heif")
mimetypes.add_type("image/webp", ".webp")


class UploadValidationError(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def is_valid_object_id(value: str | None) -> bool:
    if not value:
        return False
    return bool(OBJECT_ID_RE.fullmatch(str(value).lower()))


def _normalize_ip(value: str | None) -> str | None:
    if not value:
        return None

    value = (value.split(",")[0] if "," in value else value).strip()

    if value.startswith("[") and "]" in value:
        value = value[1 : value.index("]")]
    elif re.fullmatch(r"\d+\.\d+\.\d+\.\d+:\d+", value):
        value = value.split(":")[0]

    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def sanitize_filename(name: str | None) -> str:
    """
    Replace every character outside ``[A-Za-z0-9._-]`` with ``_`` and cap the
    result at ``MAX_FILENAME_LENGTH`` characters, keeping the extension when
    the stem has to be shortened.
    """
    raw = os.path.basename(str(name or "").replace("\\", "/")).strip()
    safe = UNSAFE_FILENAME_CHARS_RE.sub("_", raw) or DEFAULT_FILENAME
    if len(safe) <= MAX_FILENAME_LENGTH:
        return safe

    stem, dot, ext = safe.rpartition(".")
    if dot and stem and len(ext) < MAX_FILENAME_LENGTH // 2:
        return stem[: MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
    return safe[:MAX_FILENAME_LENGTH]


def _extract_extension(name: str | None) -> str:
    """Lowercase extension of a sanitized name, ``bin`` when there is none."""
    stem, dot, ext = str(name or "").rpartition(".")
    ext = ext.lower()
    if not dot or not ext or not EXTENSION_RE.fullmatch(ext):
        return DEFAULT_EXTENSION
    return ext


def safe_header_filename(value: str | None) -> str:
    sanitized = HEADER_FILENAME_STRIP_RE.sub("", str(value or ""))
    sanitized = HEADER_FILENAME_SLASH_RE.sub("_", sanitized).strip()
    return sanitized[:MAX_HEADER_FILENAME_LENGTH] or "download"


def _normalize_mime_type(value: str | None) -> str | None:
    if not value:
        return None
    return value.split(";", 1)[0].strip().lower() or None


def _sniff_mime_type(sample: bytes) -> str | None:
    if not sample:
        return None

    if sample.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if sample.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if sample.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if sample.startswith(b"BM"):
        return "image/bmp"
    if len(sample) >= 12 and sample[0:4] == b"RIFF" and sample[8:12] == b"WEBP":
        return "image/webp"
    if sample.startswith(b"%PDF-"):
        return "application/pdf"
    if sample.startswith(b"OggS"):
        return "video/ogg"
    if sample.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/x-matroska"
    if len(sample) >= 12 and sample[0:4] == b"RIFF" and sample[8:12] == b"AVI ":
        return "video/x-msvideo"
    if len(sample) >= 12 and sample[4:8] == b"ftyp":
        brand = sample[8:12].decode("latin1", "ignore")
        if brand in {"avif", "avis"}:
            return "image/avif"
        if brand in {"heic", "heix", "hevc", "hevx", "mif1", "msf1"}:
            return "image/heif"
        if brand.strip().startswith("qt"):
            return "video/quicktime"
        return "video/mp4"

    return None


def _detect_content_type(declared: str | None, sample: bytes, filename: str) -> str:
    """Declared type first, then magic bytes, then the extension."""
    reported = _normalize_mime_type(declared)
    if reported and reported != DEFAULT_CONTENT_TYPE:
        return reported
    sniffed = _sniff_mime_type(sample)
    if sniffed:
        return sniffed
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE


def _read_with_limit(
    stream, max_bytes: int, chunk_size: int = 1024 * 1024, message: str = "File is too large."
) -> bytes:
    """Read ``stream`` fully, raising 413 as soon as more than ``max_bytes`` arrive."""
    chunks = []
    total = 0
    while True:
        chunk = stream.read(min(chunk_size, max_bytes + 1 - total))
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise UploadValidationError(message, 413)
        chunks.append(chunk)
    return b"".join(chunks)

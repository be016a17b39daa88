from __future__ import annotations

import re
from datetime import datetime, timezone

from .access import is_admin, is_banned

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_RE = re.compile(r"^[a-z0-9_-]{3,20}$")
PASSWORD_LETTER_RE = re.compile(r"[A-Za-z]")
PASSWORD_DIGIT_RE = re.compile(r"\d")

MAX_EMAIL_LENGTH = 254
PASSWORD_MIN_LEN = 10
PASSWORD_MAX_LEN = 128
MAX_INVITE_CODE_LENGTH = 64
MAX_RAW_PASSWORD_LENGTH = 1024


def normalize_email(value) -> str:
    return str(value or "").strip().lower()


def normalize_username(value) -> str:
    return str(value or "").strip().lower()


def normalize_invite_code(value) -> str:
    return str(value or "").strip().upper()


def is_valid_email(value: str) -> bool:
    return len(value) <= MAX_EMAIL_LENGTH and bool(EMAIL_RE.fullmatch(value))


def is_valid_username(value: str) -> bool:
    return bool(USERNAME_RE.fullmatch(value))


def _password_rules_error(password) -> str | None:
    if not isinstance(password, str) or not password:
        return "Missing password."
    if len(password) < PASSWORD_MIN_LEN or len(password) > PASSWORD_MAX_LEN:
        return f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters."
    if not PASSWORD_LETTER_RE.search(password) or not PASSWORD_DIGIT_RE.search(password):
        return "Password must include a letter and a number."
    return None


def _iso(timestamp: int | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def serialize_user(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "role": user.role,
        "isAdmin": is_admin(user),
        "isBanned": is_banned(user),
        "defaultVisibility": user.default_visibility,
        "hasUploadKey": user.has_upload_key,
        "createdAt": _iso(user.created_at),
    }


def serialize_invite(invite) -> dict:
    return {
        "id": invite.id,
        "code": invite.code,
        "createdAt": _iso(invite.created_at),
        "usedAt": _iso(invite.used_at),
        "isUsed": invite.is_used,
    }

from __future__ import annotations

import hashlib
import os
import secrets

from werkzeug.security import check_password_hash, generate_password_hash

from ..config import parse_int

PASSWORD_HASH_ITERATIONS = parse_int(
    os.environ.get("LEMON_PASSWORD_HASH_ITERATIONS"), 600000, minimum=1000
)
SESSION_TOKEN_BYTES = 32
UPLOAD_KEY_BYTES = 24
INVITE_CODE_PREFIX = "LEMON-"
INVITE_CODE_BYTES = 5


def hash_password(password: str) -> str:
    """Salted, iterated one-way hash; the iteration count is the work factor."""
    return generate_password_hash(
        password, method=f"pbkdf2:sha256:{PASSWORD_HASH_ITERATIONS}", salt_length=16
    )


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        return False


def generate_token(num_bytes: int = SESSION_TOKEN_BYTES) -> str:
    return secrets.token_hex(num_bytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_upload_key() -> str:
    return generate_token(UPLOAD_KEY_BYTES)


def hash_upload_key(key: str) -> str:
    return hash_token(key)


def generate_invite_code() -> str:
    return f"{INVITE_CODE_PREFIX}{secrets.token_hex(INVITE_CODE_BYTES).upper()}"


def generate_object_id() -> str:
    return secrets.token_hex(12)

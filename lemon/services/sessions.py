from __future__ import annotations

import os

from ..config import IS_PRODUCTION, parse_int
from .credentials import generate_token, hash_token

SESSION_COOKIE_NAME = (os.environ.get("LEMON_SESSION_COOKIE") or "lemon_session").strip() or "lemon_session"
SESSION_TTL_DAYS = parse_int(os.environ.get("LEMON_SESSION_TTL_DAYS"), 30, minimum=1)
SESSION_TTL_SECONDS = SESSION_TTL_DAYS * 24 * 60 * 60


def create_session(store, user_id: str, now: float) -> tuple[str, int]:
    """Persist a new session and return ``(raw_token, expires_at)``.

    Only the token hash is stored; the raw token goes to the cookie and nowhere else.
    """
    token = generate_token()
    expires_at = int(now) + SESSION_TTL_SECONDS
    store.create_session(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at)
    return token, expires_at


def resolve_session(store, token: str | None, now: float):
    """
    Map a presented cookie value to its user, or ``None``.

    Missing cookie, unknown hash, expired session and a session whose user
    has vanished all come back as ``None`` without distinction.
    """
    if not token:
        return None
    session = store.find_live_session(hash_token(token), int(now))
    if session is None:
        return None
    return store.get_user(session.user_id)


def destroy_session(store, token: str | None) -> bool:
    if not token:
        return False
    return store.delete_session(hash_token(token))


def set_session_cookie(resp, token: str, expires_at: int) -> None:
    resp.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        expires=expires_at,
        path="/",
        httponly=True,
        samesite="Lax",
        secure=IS_PRODUCTION,
    )


def clear_session_cookie(resp) -> None:
    resp.set_cookie(
        SESSION_COOKIE_NAME,
        "",
        expires=0,
        max_age=0,
        path="/",
        httponly=True,
        samesite="Lax",
        secure=IS_PRODUCTION,
    )

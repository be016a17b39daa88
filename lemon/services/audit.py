from __future__ import annotations

import logging

from flask import has_request_context

from ..utils.request import _get_request_ip

logger = logging.getLogger("lemon.audit")


def _log_auth_event(
    event_type: str, success: bool, detail: str | None = None, user_id: str | None = None
) -> None:
    """
    Record a security-relevant event on the ``lemon.audit`` logger.

    Only ids and outcomes go here, never tokens, upload keys or passwords.
    """
    ip = _get_request_ip() if has_request_context() else None
    logger.info(
        "%s %s",
        event_type,
        "ok" if success else "denied",
        extra={
            "audit": {
                "event": event_type,
                "success": success,
                "detail": detail,
                "user_id": user_id,
                "ip": ip,
            }
        },
    )

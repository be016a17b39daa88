from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import MediaRecord, UserRecord

ROLE_BANNED = -1
ROLE_USER = 0
ROLE_ADMIN = 1

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"
VISIBILITIES = (VISIBILITY_PUBLIC, VISIBILITY_PRIVATE)


def is_admin(user: UserRecord | None) -> bool:
    return user is not None and user.role == ROLE_ADMIN


def is_banned(user: UserRecord | None) -> bool:
    return user is not None and user.role == ROLE_BANNED


def is_active(user: UserRecord | None) -> bool:
    return user is not None and not is_banned(user)


def is_active_admin(user: UserRecord | None) -> bool:
    return is_active(user) and is_admin(user)


def can_mutate(media: MediaRecord, requester: UserRecord | None) -> bool:
    # A banned owner loses access to their own media; sessions issued before
    # the ban stay valid, so this must not rely on login-time checks.
    if not is_active(requester):
        return False
    return is_admin(requester) or requester.id == media.owner_id


def can_read(media: MediaRecord, requester: UserRecord | None) -> bool:
    if media.visibility == VISIBILITY_PUBLIC:
        return True
    return can_mutate(media, requester)

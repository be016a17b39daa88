from __future__ import annotations

import logging

from .users import _iso

logger = logging.getLogger("lemon.invites")

GIFT_MAX_COUNT = 10
WAVE_MAX_COUNT = 5


def clamp_count(value, maximum: int) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = 1
    return min(max(1, count), maximum)


def gift_invites(store, admin, target, count: int) -> list:
    count = clamp_count(count, GIFT_MAX_COUNT)
    invites = [store.create_invite(created_by=admin.id, owned_by=target.id) for _ in range(count)]
    logger.info("Gifted %s invites to %s", len(invites), target.id)
    return invites


def wave_invites(store, admin, count: int) -> tuple[int, int]:
    """Give ``count`` invites to every active user except ``admin``.

    Returns ``(users, invites_created)``.
    """
    count = clamp_count(count, WAVE_MAX_COUNT)
    user_ids = store.list_active_user_ids(exclude=admin.id)
    created = 0
    for user_id in user_ids:
        for _ in range(count):
            store.create_invite(created_by=admin.id, owned_by=user_id)
            created += 1
    logger.info("Invite wave: %s invites to %s users", created, len(user_ids))
    return len(user_ids), created


def users_with_invite_info(store) -> list[dict]:
    users = store.list_users()
    usernames = {user.id: user.username for user in users}
    redeemed = {invite.used_by: invite for invite in store.list_used_invites()}

    rows = []
    for user in users:
        invite = redeemed.get(user.id)
        rows.append(
            {
                "id": user.id,
                "email": user.email,
                "username": user.username,
                "role": user.role,
                "createdAt": _iso(user.created_at),
                "updatedAt": _iso(user.updated_at),
                "invitedBy": usernames.get(invite.created_by) if invite else None,
                "inviteCode": invite.code if invite else None,
            }
        )
    return rows

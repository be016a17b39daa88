from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError

from ..models import build_session_factory, init_db
from ..models.invite import Invite
from ..models.media import Media
from ..models.session import Session
from ..models.user import User
from .access import ROLE_BANNED, ROLE_USER, VISIBILITY_PUBLIC
from .credentials import generate_invite_code, generate_object_id

logger = logging.getLogger("lemon.store")

INVITE_CODE_MAX_ATTEMPTS = 20


class ConflictError(ValueError):
    pass


class InviteUnavailableError(LookupError):
    pass


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    username: str
    password_hash: str
    upload_key_hash: str | None
    role: int
    default_visibility: str
    created_at: int
    updated_at: int

    @property
    def has_upload_key(self) -> bool:
        return bool(self.upload_key_hash)


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    token_hash: str
    expires_at: int


@dataclass(frozen=True)
class MediaRecord:
    id: str
    owner_id: str
    visibility: str
    original_name: str
    content_type: str
    size: int
    blob_url: str
    blob_pathname: str
    created_at: int


@dataclass(frozen=True)
class InviteRecord:
    id: str
    code: str
    created_by: str
    owned_by: str | None
    used_by: str | None
    used_at: int | None
    created_at: int

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        upload_key_hash=row.upload_key_hash,
        role=int(row.role or 0),
        default_visibility=row.default_visibility or VISIBILITY_PUBLIC,
        created_at=int(row.created_at),
        updated_at=int(row.updated_at),
    )


def _session_record(row: Session) -> SessionRecord:
    return SessionRecord(
        id=row.id, user_id=row.user_id, token_hash=row.token_hash, expires_at=int(row.expires_at)
    )


def _media_record(row: Media) -> MediaRecord:
    return MediaRecord(
        id=row.id,
        owner_id=row.user_id,
        visibility=row.visibility,
        original_name=row.original_name,
        content_type=row.content_type,
        size=int(row.size),
        blob_url=row.blob_url,
        blob_pathname=row.blob_pathname,
        created_at=int(row.created_at),
    )


def _invite_record(row: Invite) -> InviteRecord:
    return InviteRecord(
        id=row.id,
        code=row.code,
        created_by=row.created_by,
        owned_by=row.owned_by,
        used_by=row.used_by,
        used_at=int(row.used_at) if row.used_at is not None else None,
        created_at=int(row.created_at),
    )


class Store:
    """
    Persistence for users, sessions, media and invites.

    Every public method opens its own short transaction and returns plain
    records; ORM instances never leave this class.
    """

    def __init__(self, engine, *, clock: Callable[[], float] = time.time, create_schema: bool = True) -> None:
        self.engine = engine
        self._session_factory = build_session_factory(engine)
        self._clock = clock
        if create_schema:
            init_db(engine)

    def _now(self) -> int:
        return int(self._clock())

    @contextmanager
    def _session(self) -> Iterator:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # Users

    def get_user(self, user_id: str) -> UserRecord | None:
        with self._session() as db:
            row = db.get(User, user_id)
            return _user_record(row) if row else None

    def find_user_by_identifier(self, identifier: str) -> UserRecord | None:
        with self._session() as db:
            row = db.execute(
                select(User).where(or_(User.email == identifier, User.username == identifier)).limit(1)
            ).scalar_one_or_none()
            return _user_record(row) if row else None

    def find_user_by_username(self, username: str) -> UserRecord | None:
        with self._session() as db:
            row = db.execute(
                select(User).where(func.lower(User.username) == username.lower()).limit(1)
            ).scalar_one_or_none()
            return _user_record(row) if row else None

    def find_user_by_upload_key_hash(self, key_hash: str) -> UserRecord | None:
        with self._session() as db:
            row = db.execute(
                select(User).where(User.upload_key_hash == key_hash).limit(1)
            ).scalar_one_or_none()
            return _user_record(row) if row else None

    def list_users(self) -> list[UserRecord]:
        with self._session() as db:
            rows = db.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars()
            return [_user_record(row) for row in rows]

    def list_active_user_ids(self, *, exclude: str | None = None) -> list[str]:
        with self._session() as db:
            query = select(User.id).where(User.role != ROLE_BANNED)
            if exclude:
                query = query.where(User.id != exclude)
            return list(db.execute(query.order_by(User.created_at)).scalars())

    def create_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        upload_key_hash: str | None = None,
        role: int = ROLE_USER,
    ) -> UserRecord:
        now = self._now()
        try:
            with self._session() as db:
                self._ensure_identity_free(db, email, username)
                row = User(
                    id=generate_object_id(),
                    email=email,
                    username=username,
                    password_hash=password_hash,
                    upload_key_hash=upload_key_hash,
                    role=role,
                    default_visibility=VISIBILITY_PUBLIC,
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
                db.flush()
                return _user_record(row)
        except IntegrityError as exc:
            raise ConflictError("Email or username already in use.") from exc

    def register_user(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        upload_key_hash: str,
        invite_code: str,
    ) -> tuple[UserRecord, InviteRecord]:
        """
        Create a standard user and redeem ``invite_code`` in one transaction.

        Raises ``InviteUnavailableError`` when the code does not exist or has
        already been redeemed, and ``ConflictError`` when the email or
        username is taken. Nothing is written in either case.
        """
        now = self._now()
        try:
            with self._session() as db:
                invite = db.execute(
                    select(Invite).where(Invite.code == invite_code, Invite.used_at.is_(None)).limit(1)
                ).scalar_one_or_none()
                if invite is None:
                    raise InviteUnavailableError("Invite code is invalid or used.")

                self._ensure_identity_free(db, email, username)
                user = User(
                    id=generate_object_id(),
                    email=email,
                    username=username,
                    password_hash=password_hash,
                    upload_key_hash=upload_key_hash,
                    role=ROLE_USER,
                    default_visibility=VISIBILITY_PUBLIC,
                    created_at=now,
                    updated_at=now,
                )
                db.add(user)
                db.flush()

                result = db.execute(
                    update(Invite)
                    .where(Invite.id == invite.id, Invite.used_at.is_(None))
                    .values(used_by=user.id, used_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InviteUnavailableError("Invite code is invalid or used.")

                db.refresh(invite)
                return _user_record(user), _invite_record(invite)
        except IntegrityError as exc:
            raise ConflictError("Email or username already in use.") from exc

    def _ensure_identity_free(self, db, email: str, username: str) -> None:
        existing = db.execute(
            select(User.id).where(or_(User.email == email, User.username == username)).limit(1)
        ).first()
        if existing is not None:
            raise ConflictError("Email or username already in use.")

    def _update_user(self, user_id: str, **values) -> bool:
        values["updated_at"] = self._now()
        with self._session() as db:
            result = db.execute(update(User).where(User.id == user_id).values(**values))
            return result.rowcount > 0

    def set_upload_key_hash(self, user_id: str, key_hash: str) -> bool:
        return self._update_user(user_id, upload_key_hash=key_hash)

    def set_default_visibility(self, user_id: str, visibility: str) -> bool:
        return self._update_user(user_id, default_visibility=visibility)

    def set_password_hash(self, user_id: str, password_hash: str) -> bool:
        return self._update_user(user_id, password_hash=password_hash)

    def set_role(self, user_id: str, role: int) -> bool:
        return self._update_user(user_id, role=role)

    def set_username(self, user_id: str, username: str) -> bool:
        try:
            with self._session() as db:
                taken = db.execute(
                    select(User.id).where(User.username == username, User.id != user_id).limit(1)
                ).first()
                if taken is not None:
                    raise ConflictError("Username is already taken.")
                result = db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(username=username, updated_at=self._now())
                )
                return result.rowcount > 0
        except IntegrityError as exc:
            raise ConflictError("Username is already taken.") from exc

    # Sessions

    def create_session(self, *, user_id: str, token_hash: str, expires_at: int) -> SessionRecord:
        with self._session() as db:
            row = Session(
                id=generate_object_id(),
                user_id=user_id,
                token_hash=token_hash,
                expires_at=int(expires_at),
                created_at=self._now(),
            )
            db.add(row)
            db.flush()
            return _session_record(row)

    def find_live_session(self, token_hash: str, now: int) -> SessionRecord | None:
        with self._session() as db:
            row = db.execute(
                select(Session).where(Session.token_hash == token_hash, Session.expires_at > now).limit(1)
            ).scalar_one_or_none()
            return _session_record(row) if row else None

    def delete_session(self, token_hash: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(Session).where(Session.token_hash == token_hash))
            return result.rowcount > 0

    def purge_expired_sessions(self, now: int) -> int:
        with self._session() as db:
            result = db.execute(delete(Session).where(Session.expires_at <= now))
            return result.rowcount or 0

    # Media

    def create_media(
        self,
        *,
        owner_id: str,
        visibility: str,
        original_name: str,
        content_type: str,
        size: int,
        blob_url: str,
        blob_pathname: str,
    ) -> MediaRecord:
        now = self._now()
        with self._session() as db:
            row = Media(
                id=generate_object_id(),
                user_id=owner_id,
                visibility=visibility,
                original_name=original_name,
                content_type=content_type,
                size=int(size),
                blob_url=blob_url,
                blob_pathname=blob_pathname,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.flush()
            return _media_record(row)

    def get_media(self, media_id: str) -> MediaRecord | None:
        with self._session() as db:
            row = db.get(Media, media_id)
            return _media_record(row) if row else None

    def list_media_for_user(
        self, owner_id: str, *, limit: int = 50, include_private: bool = True
    ) -> list[MediaRecord]:
        with self._session() as db:
            query = select(Media).where(Media.user_id == owner_id)
            if not include_private:
                query = query.where(Media.visibility == VISIBILITY_PUBLIC)
            query = query.order_by(Media.created_at.desc(), Media.id.desc()).limit(limit)
            return [_media_record(row) for row in db.execute(query).scalars()]

    def set_media_visibility(self, media_id: str, visibility: str) -> bool:
        with self._session() as db:
            result = db.execute(
                update(Media)
                .where(Media.id == media_id)
                .values(visibility=visibility, updated_at=self._now())
            )
            return result.rowcount > 0

    def delete_media(self, media_id: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(Media).where(Media.id == media_id))
            return result.rowcount > 0

    # Invites

    def create_invite(self, *, created_by: str, owned_by: str | None = None) -> InviteRecord:
        for _ in range(INVITE_CODE_MAX_ATTEMPTS):
            code = generate_invite_code()
            try:
                with self._session() as db:
                    taken = db.execute(select(Invite.id).where(Invite.code == code).limit(1)).first()
                    if taken is not None:
                        continue
                    row = Invite(
                        id=generate_object_id(),
                        code=code,
                        created_by=created_by,
                        owned_by=owned_by,
                        created_at=self._now(),
                    )
                    db.add(row)
                    db.flush()
                    return _invite_record(row)
            except IntegrityError:
                logger.info("Invite code collision, retrying")
                continue
        raise RuntimeError("Failed to generate a unique invite code")

    def get_invite(self, invite_id: str) -> InviteRecord | None:
        with self._session() as db:
            row = db.get(Invite, invite_id)
            return _invite_record(row) if row else None

    def list_invites(self, *, limit: int = 100) -> list[InviteRecord]:
        with self._session() as db:
            rows = db.execute(
                select(Invite).order_by(Invite.created_at.desc(), Invite.id.desc()).limit(limit)
            ).scalars()
            return [_invite_record(row) for row in rows]

    def list_used_invites(self) -> list[InviteRecord]:
        with self._session() as db:
            rows = db.execute(select(Invite).where(Invite.used_by.is_not(None))).scalars()
            return [_invite_record(row) for row in rows]

    def list_unused_invites_owned_by(self, user_id: str) -> list[InviteRecord]:
        with self._session() as db:
            rows = db.execute(
                select(Invite)
                .where(Invite.owned_by == user_id, Invite.used_at.is_(None))
                .order_by(Invite.created_at.desc(), Invite.id.desc())
            ).scalars()
            return [_invite_record(row) for row in rows]

    def delete_unused_invite(self, invite_id: str) -> bool:
        """Delete an invite only if it was never redeemed."""
        with self._session() as db:
            result = db.execute(
                delete(Invite).where(Invite.id == invite_id, Invite.used_at.is_(None))
            )
            return result.rowcount > 0

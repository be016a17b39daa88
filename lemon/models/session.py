from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String

from . import Base


class Session(Base):
    __tablename__ = "sessions"

    id = Column(String(24), primary_key=True)
    user_id = Column(String(24), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    expires_at = Column(Integer, nullable=False)
    created_at = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_sessions_user_id", "user_id"),
        Index("idx_sessions_expires_at", "expires_at"),
    )

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from . import Base


class Invite(Base):
    __tablename__ = "invites"

    id = Column(String(24), primary_key=True)
    code = Column(Text, nullable=False, unique=True)
    created_by = Column(String(24), ForeignKey("users.id"), nullable=False)
    owned_by = Column(String(24), ForeignKey("users.id"))
    used_by = Column(String(24), ForeignKey("users.id"))
    used_at = Column(Integer)
    created_at = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_invites_owned_by", "owned_by"),
        Index("idx_invites_used_by", "used_by"),
        Index("idx_invites_created_at", "created_at"),
    )

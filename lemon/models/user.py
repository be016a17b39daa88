from __future__ import annotations

from sqlalchemy import Column, Index, Integer, String, Text

from . import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(24), primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    username = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    upload_key_hash = Column(String(64), unique=True)
    role = Column(Integer, nullable=False, default=0)
    default_visibility = Column(String(16), nullable=False, default="public")
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)

    __table_args__ = (Index("idx_users_created_at", "created_at"),)

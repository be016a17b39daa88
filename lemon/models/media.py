from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from . import Base


class Media(Base):
    __tablename__ = "media"

    id = Column(String(24), primary_key=True)
    user_id = Column(String(24), ForeignKey("users.id"), nullable=False)
    visibility = Column(String(16), nullable=False, default="public")
    original_name = Column(Text, nullable=False)
    content_type = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)
    blob_url = Column(Text, nullable=False)
    blob_pathname = Column(Text, nullable=False)
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_media_user_id_created_at", "user_id", "created_at"),
    )

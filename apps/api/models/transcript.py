"""Episode transcript model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from database import Base


class Transcript(Base):
    """Latest transcript acquisition outcome for an episode (one row per episode)."""

    __tablename__ = "transcripts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    episode_id = Column(String, ForeignKey("podcast_episodes.id"), nullable=False, unique=True)
    status = Column(String, nullable=False, index=True)
    tier_kind = Column(String, nullable=True)
    source = Column(String, nullable=True)
    transcript_text = Column(Text, nullable=True)
    word_count = Column(Integer, nullable=True)
    error_category = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    credits_consumed = Column(Integer, nullable=False, default=0)
    asr_invoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

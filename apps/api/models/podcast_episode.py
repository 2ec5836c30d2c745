"""Podcast episode model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class PodcastEpisode(Base):
    """An episode discovered from a show's RSS feed."""

    __tablename__ = "podcast_episodes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    show_id = Column(String, ForeignKey("podcast_shows.id"), nullable=False, index=True)
    guid = Column(String, nullable=True)
    episode_url = Column(String, nullable=True)
    title = Column(String, nullable=True)
    pub_date = Column(DateTime(timezone=True), nullable=True, index=True)
    duration_sec = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

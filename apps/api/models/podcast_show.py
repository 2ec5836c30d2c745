"""Podcast show model."""

import uuid

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


class PodcastShow(Base):
    """A subscribed podcast feed."""

    __tablename__ = "podcast_shows"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=True)
    rss_url = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

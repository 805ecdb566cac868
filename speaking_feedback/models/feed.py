"""Feed configuration model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from .base import Base


class ApiFeed(Base):
    """A configured multi-step evaluation pipeline for one criterion."""

    __tablename__ = "api_feeds"

    id = Column(Integer, primary_key=True, index=True)
    feed_title = Column(String(255), nullable=False, default="")
    feed_desc = Column(Text, nullable=True)
    apply_to = Column(String(32), nullable=False, default="speech", index=True)
    feedback_criteria = Column(String(128), nullable=False, default="general")
    process_order = Column(Integer, nullable=False, default=0)
    # {"steps": [{"step": "<kind>", "sections": [...]}, ...]}
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


__all__ = ["ApiFeed"]

"""Hosted link-preview pages."""

from sqlalchemy import Column, DateTime, String, Text

from gitlab_notifier.database import Base, utcnow


class WebPreview(Base):
    __tablename__ = "web_previews"

    token = Column(String, primary_key=True)
    title = Column(String, nullable=False, default="")
    headline = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    url = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

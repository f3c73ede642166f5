"""Scoped key-value cache entries with expiry."""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from gitlab_notifier.database import Base, utcnow


class CacheEntry(Base):
    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("scope", "key", name="uq_cache_scope_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value_json = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)

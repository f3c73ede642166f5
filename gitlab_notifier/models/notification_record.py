"""Correlation between GitLab event keys and sent chat messages."""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from gitlab_notifier.database import Base, utcnow


class NotificationRecord(Base):
    __tablename__ = "notification_records"
    __table_args__ = (UniqueConstraint("chat_id", "event_key", name="uq_chat_event_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Integer, nullable=False, index=True)
    event_key = Column(String, nullable=False)
    message_id = Column(Integer, nullable=False)
    # Rendered text as sent; the base for later in-place edits
    text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

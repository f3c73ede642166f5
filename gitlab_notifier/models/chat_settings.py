"""Per-chat notification toggles."""

from sqlalchemy import Column, DateTime, Integer, Text

from gitlab_notifier.database import Base, utcnow


class ChatSettingsRecord(Base):
    __tablename__ = "chat_settings"

    chat_id = Column(Integer, primary_key=True, autoincrement=False)
    settings_json = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

"""OAuth applications per GitLab instance and user tokens."""

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from gitlab_notifier.database import Base, utcnow


class OAuthApp(Base):
    __tablename__ = "oauth_apps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_url = Column(String, unique=True, nullable=False)
    app_id = Column(String, nullable=False)
    app_secret = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class OAuthToken(Base):
    __tablename__ = "oauth_tokens"
    __table_args__ = (UniqueConstraint("user_id", "base_url", name="uq_token_user_base"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    base_url = Column(String, nullable=False)
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

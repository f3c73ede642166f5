"""Pending reply intents: the chat's reply binding and per-user after-auth actions."""

from sqlalchemy import Column, DateTime, Integer, String, Text

from gitlab_notifier.database import Base, utcnow


class ReplyBinding(Base):
    """The single reply intent a chat currently honours."""

    __tablename__ = "reply_bindings"

    chat_id = Column(Integer, primary_key=True, autoincrement=False)
    message_id = Column(Integer, nullable=False)
    # When set, the next message from this user consumes the binding even if
    # it is not a reply (reply keyboards, private-chat prompts)
    awaiting_user_id = Column(Integer, nullable=True)
    handler = Column(String, nullable=False)
    args_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class AfterAuthAction(Base):
    """Intent to resume once the user finishes OAuth."""

    __tablename__ = "after_auth_actions"

    user_id = Column(Integer, primary_key=True, autoincrement=False)
    handler = Column(String, nullable=False)
    args_json = Column(Text, nullable=False)
    context_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

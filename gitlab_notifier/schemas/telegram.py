"""Pydantic models for the subset of Telegram Bot API updates we consume."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_Payload):
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: str = ""


class TelegramChat(_Payload):
    id: int
    type: str = "private"


class TelegramMessage(_Payload):
    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: str = ""
    reply_to_message: Optional[TelegramMessage] = None
    new_chat_members: list[TelegramUser] = Field(default_factory=list)


class CallbackQuery(_Payload):
    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: str = ""


class TelegramUpdate(_Payload):
    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[CallbackQuery] = None


class MessageContext(BaseModel):
    """Who said what, where; the input every reply handler receives."""

    chat_id: int
    user_id: int
    username: str = ""
    first_name: str = ""
    message_id: int = 0
    text: str = ""
    reply_to_message_id: Optional[int] = None

    @classmethod
    def from_message(cls, message: TelegramMessage) -> MessageContext:
        sender = message.from_user or TelegramUser(id=message.chat.id)
        return cls(
            chat_id=message.chat.id,
            user_id=sender.id,
            username=sender.username,
            first_name=sender.first_name,
            message_id=message.message_id,
            text=message.text,
            reply_to_message_id=(
                message.reply_to_message.message_id if message.reply_to_message else None
            ),
        )

    def mention(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.first_name or str(self.user_id)

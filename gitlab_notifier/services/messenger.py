"""Outgoing chat messages with correlation and reply bindings attached."""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.telegram_client import TelegramClient, TelegramError
from gitlab_notifier.services.correlation import find_message, remember_message
from gitlab_notifier.services.intents import ReplyIntent, bind_reply

logger = logging.getLogger(__name__)


async def send_message(
    db: AsyncSession,
    chat_id: int,
    text: str,
    *,
    reply_to: int | None = None,
    event_keys: tuple[str, ...] = (),
    reply_intent: ReplyIntent | None = None,
    awaiting_user_id: int | None = None,
    reply_markup: dict | None = None,
    force_reply: bool = False,
    disable_preview: bool = False,
    backup_chat_id: int | None = None,
) -> int:
    """Send ``text`` and record what the message stands for.

    ``event_keys`` are registered against the new message for later
    threading and edits. ``reply_intent`` becomes the receiving chat's reply
    binding. With ``backup_chat_id`` a message the bot cannot deliver to
    ``chat_id`` (user never started a private chat) goes there instead.
    """
    if force_reply and reply_markup is None:
        reply_markup = {"force_reply": True, "selective": True}

    telegram = TelegramClient()
    try:
        try:
            message_id = await telegram.send_message(
                chat_id,
                text,
                reply_to=reply_to,
                reply_markup=reply_markup,
                disable_preview=disable_preview,
            )
        except TelegramError:
            if backup_chat_id is None or backup_chat_id == chat_id:
                raise
            logger.warning("Could not reach chat %d, falling back to %d", chat_id, backup_chat_id)
            chat_id = backup_chat_id
            message_id = await telegram.send_message(
                chat_id,
                text,
                reply_markup=reply_markup,
                disable_preview=disable_preview,
            )
    finally:
        with suppress(Exception):
            await telegram.close()

    for event_key in event_keys:
        await remember_message(db, chat_id, event_key, message_id, text)
    if reply_intent is not None:
        await bind_reply(db, chat_id, message_id, reply_intent, awaiting_user_id)
    return message_id


async def edit_message_by_event_key(db: AsyncSession, chat_id: int, event_key: str, text: str) -> int | None:
    """Replace the text of the message recorded for ``event_key``."""
    record = await find_message(db, chat_id, event_key)
    if record is None:
        return None
    telegram = TelegramClient()
    try:
        await telegram.edit_message_text(chat_id, record.message_id, text)
    finally:
        with suppress(Exception):
            await telegram.close()
    return record.message_id

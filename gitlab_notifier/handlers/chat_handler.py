"""Incoming Telegram updates: commands, settings buttons and replies."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.handlers.reply_handler import handle_reply
from gitlab_notifier.handlers.settings_handler import open_settings, settings_keyboard_pressed
from gitlab_notifier.schemas.telegram import MessageContext, TelegramMessage, TelegramUpdate
from gitlab_notifier.services.hook_tokens import hook_url
from gitlab_notifier.services.intents import clear_binding
from gitlab_notifier.services.messenger import send_message
from gitlab_notifier.templates.telegram_templates import (
    SETTINGS_CALLBACK_PREFIX,
    build_start_message,
    remove_keyboard,
)

logger = logging.getLogger(__name__)


def parse_command(text: str) -> tuple[str, str]:
    """``/start@bot silent`` -> ``("start", "silent")``; plain text gives empty command."""
    if not text.startswith("/"):
        return "", ""
    head, _, param = text.partition(" ")
    command, _, addressee = head[1:].partition("@")
    if addressee and settings.bot_username and addressee.lower() != settings.bot_username.lower():
        return "", ""
    return command.lower(), param.strip()


def _bot_added(message: TelegramMessage) -> bool:
    if not settings.bot_username:
        return False
    return any(
        member.is_bot and member.username.lower() == settings.bot_username.lower()
        for member in message.new_chat_members
    )


async def _handle_message(db: AsyncSession, message: TelegramMessage) -> str:
    ctx = MessageContext.from_message(message)
    command, param = parse_command(message.text)
    if _bot_added(message):
        command = "start"
    if param == "silent":
        command = ""

    if command == "start":
        await send_message(db, ctx.chat_id, build_start_message(hook_url(ctx.chat_id)))
        return "start"
    if command in ("cancel", "clean", "reset"):
        await clear_binding(db, ctx.chat_id)
        await send_message(db, ctx.chat_id, "Clean", reply_markup=remove_keyboard())
        return command
    if command == "settings":
        await open_settings(db, ctx.chat_id)
        return "settings"
    if command:
        return "ignored"

    if message.text and await handle_reply(db, ctx):
        return "reply"
    return "ignored"


async def handle_telegram_update(db: AsyncSession, update: TelegramUpdate) -> str:
    """Process one update; returns a short label of what was done.

    Failures are logged and swallowed so Telegram does not redeliver.
    """
    try:
        if update.callback_query is not None:
            callback = update.callback_query
            if not callback.data.startswith(SETTINGS_CALLBACK_PREFIX):
                logger.info("Ignoring callback %r", callback.data)
                return "ignored"
            await settings_keyboard_pressed(db, callback)
            outcome = "settings"
        elif update.message is not None:
            outcome = await _handle_message(db, update.message)
        else:
            return "ignored"
    except Exception as exc:
        logger.error("Telegram update %d failed: %s", update.update_id, exc)
        await db.rollback()
        return "failed"

    await db.commit()
    return outcome

"""The ``/settings`` inline keyboard."""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.telegram_client import TelegramClient
from gitlab_notifier.schemas.telegram import CallbackQuery
from gitlab_notifier.services.chat_settings import (
    CATEGORY_TOGGLES,
    Category,
    ChatSettings,
    Toggle,
    load_chat_settings,
    save_chat_settings,
)
from gitlab_notifier.services.messenger import send_message
from gitlab_notifier.templates.telegram_templates import (
    SETTINGS_CALLBACK_PREFIX,
    settings_categories_keyboard,
    settings_toggles_keyboard,
)

logger = logging.getLogger(__name__)


def apply_settings_press(chat_settings: ChatSettings, data: str) -> tuple[dict, bool]:
    """Apply one button press to ``chat_settings``.

    ``data`` is the callback payload without the ``settings:`` prefix:
    ``back``, ``<category>`` or ``<category>:<toggle>``. Returns the keyboard
    to show next and whether the settings changed.
    """
    if data == "back":
        return settings_categories_keyboard(), False
    category_value, _, toggle_value = data.partition(":")
    category = Category(category_value)
    if not toggle_value:
        return settings_toggles_keyboard(category, chat_settings), False
    toggle = Toggle(toggle_value)
    if toggle not in CATEGORY_TOGGLES[category]:
        raise ValueError(f"{toggle.value} is not a {category.value} toggle")
    chat_settings.flip(category, toggle)
    return settings_toggles_keyboard(category, chat_settings), True


async def open_settings(db: AsyncSession, chat_id: int) -> int:
    return await send_message(
        db, chat_id, "Tune the notifications", reply_markup=settings_categories_keyboard()
    )


async def settings_keyboard_pressed(db: AsyncSession, callback: CallbackQuery) -> None:
    if callback.message is None:
        logger.warning("Settings callback %s without a message", callback.id)
        return
    chat_id = callback.message.chat.id
    data = callback.data.removeprefix(f"{SETTINGS_CALLBACK_PREFIX}:")

    chat_settings = await load_chat_settings(db, chat_id)
    try:
        keyboard, changed = apply_settings_press(chat_settings, data)
    except ValueError:
        logger.warning("Unknown settings button %r in chat %d", callback.data, chat_id)
        return
    if changed:
        await save_chat_settings(db, chat_id, chat_settings)

    telegram = TelegramClient()
    try:
        await telegram.edit_message_reply_markup(chat_id, callback.message.message_id, keyboard)
        await telegram.answer_callback_query(callback.id)
    finally:
        with suppress(Exception):
            await telegram.close()

"""Tests for per-chat notification settings and the settings keyboard."""

import pytest

from gitlab_notifier.database import async_session
from gitlab_notifier.handlers.settings_handler import apply_settings_press, settings_keyboard_pressed
from gitlab_notifier.schemas.telegram import CallbackQuery
from gitlab_notifier.services.chat_settings import (
    Category,
    ChatSettings,
    Toggle,
    load_chat_settings,
    save_chat_settings,
)

CHAT_ID = -1001


def _labels(keyboard: dict) -> list[str]:
    return [row[0]["text"] for row in keyboard["inline_keyboard"]]


def _callback(data: str) -> CallbackQuery:
    return CallbackQuery.model_validate({
        "id": "cb-1",
        "from": {"id": 42, "username": "johnny"},
        "message": {"message_id": 100, "chat": {"id": CHAT_ID, "type": "group"}},
        "data": data,
    })


def test_defaults():
    chat_settings = ChatSettings()

    assert chat_settings.enabled(Category.CI, Toggle.SUCCESS) is False
    assert chat_settings.enabled(Category.CI, Toggle.FAIL) is True
    assert chat_settings.enabled(Category.CI, Toggle.CANCEL) is True
    for toggle in (Toggle.OPEN, Toggle.UPDATE, Toggle.MERGE, Toggle.CLOSE):
        assert chat_settings.enabled(Category.MERGE_REQUESTS, toggle) is True
    for toggle in (Toggle.OPEN, Toggle.UPDATE, Toggle.CLOSE, Toggle.REOPEN):
        assert chat_settings.enabled(Category.ISSUES, toggle) is True


def test_invalid_pair_rejected():
    with pytest.raises(KeyError):
        ChatSettings().enabled(Category.CI, Toggle.MERGE)


def test_from_json_fills_missing_toggles():
    chat_settings = ChatSettings.from_json('{"ci": {"success": true}, "issues": {"close": false}}')

    assert chat_settings.enabled(Category.CI, Toggle.SUCCESS) is True
    assert chat_settings.enabled(Category.ISSUES, Toggle.CLOSE) is False
    assert chat_settings.enabled(Category.ISSUES, Toggle.REOPEN) is True
    assert chat_settings.enabled(Category.MERGE_REQUESTS, Toggle.MERGE) is True


def test_keyboard_navigation():
    chat_settings = ChatSettings()

    keyboard, changed = apply_settings_press(chat_settings, "ci")
    assert changed is False
    assert _labels(keyboard) == ["← Back", "Success", "☑️ Fail", "☑️ Cancel"]

    keyboard, changed = apply_settings_press(chat_settings, "back")
    assert changed is False
    assert _labels(keyboard) == ["CI", "Merge requests", "Issues"]


def test_toggle_twice_restores_value():
    chat_settings = ChatSettings()

    keyboard, changed = apply_settings_press(chat_settings, "mr:merge")
    assert changed is True
    assert chat_settings.enabled(Category.MERGE_REQUESTS, Toggle.MERGE) is False
    assert "Merge" in _labels(keyboard)

    apply_settings_press(chat_settings, "mr:merge")
    assert chat_settings.enabled(Category.MERGE_REQUESTS, Toggle.MERGE) is True


def test_unknown_button_rejected():
    with pytest.raises(ValueError):
        apply_settings_press(ChatSettings(), "wiki")
    with pytest.raises(ValueError):
        apply_settings_press(ChatSettings(), "ci:merge")


async def test_settings_round_trip_through_storage():
    chat_settings = ChatSettings()
    chat_settings.flip(Category.CI, Toggle.SUCCESS)
    chat_settings.flip(Category.ISSUES, Toggle.UPDATE)

    async with async_session() as db:
        assert (await load_chat_settings(db, CHAT_ID)).toggles == ChatSettings().toggles
        await save_chat_settings(db, CHAT_ID, chat_settings)
        await db.commit()

    async with async_session() as db:
        assert (await load_chat_settings(db, CHAT_ID)).toggles == chat_settings.toggles


async def test_keyboard_press_persists_and_edits_markup(telegram):
    async with async_session() as db:
        await settings_keyboard_pressed(db, _callback("settings:ci:success"))
        await db.commit()

    async with async_session() as db:
        stored = await load_chat_settings(db, CHAT_ID)
    assert stored.enabled(Category.CI, Toggle.SUCCESS) is True

    chat_id, message_id, keyboard = telegram.edit_message_reply_markup.call_args.args
    assert (chat_id, message_id) == (CHAT_ID, 100)
    assert _labels(keyboard)[1] == "☑️ Success"
    telegram.answer_callback_query.assert_awaited_once_with("cb-1")

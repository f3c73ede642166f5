"""Per-chat notification settings: a category x toggle boolean table."""

from __future__ import annotations

import json
import logging
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.models.chat_settings import ChatSettingsRecord

logger = logging.getLogger(__name__)


class Category(str, Enum):
    CI = "ci"
    MERGE_REQUESTS = "mr"
    ISSUES = "issues"


class Toggle(str, Enum):
    OPEN = "open"
    UPDATE = "update"
    MERGE = "merge"
    CLOSE = "close"
    REOPEN = "reopen"
    SUCCESS = "success"
    FAIL = "fail"
    CANCEL = "cancel"


# Order is the order buttons are shown in
CATEGORY_TOGGLES: dict[Category, tuple[Toggle, ...]] = {
    Category.CI: (Toggle.SUCCESS, Toggle.FAIL, Toggle.CANCEL),
    Category.MERGE_REQUESTS: (Toggle.OPEN, Toggle.UPDATE, Toggle.MERGE, Toggle.CLOSE),
    Category.ISSUES: (Toggle.OPEN, Toggle.UPDATE, Toggle.CLOSE, Toggle.REOPEN),
}

_DEFAULT_OFF = {(Category.CI, Toggle.SUCCESS)}


def _defaults() -> dict[Category, dict[Toggle, bool]]:
    return {
        category: {toggle: (category, toggle) not in _DEFAULT_OFF for toggle in toggles}
        for category, toggles in CATEGORY_TOGGLES.items()
    }


class ChatSettings(BaseModel):
    toggles: dict[Category, dict[Toggle, bool]] = Field(default_factory=_defaults)

    def enabled(self, category: Category, toggle: Toggle) -> bool:
        if toggle not in CATEGORY_TOGGLES[category]:
            raise KeyError(f"{toggle.value} is not a {category.value} toggle")
        return self.toggles.get(category, {}).get(
            toggle, (category, toggle) not in _DEFAULT_OFF
        )

    def flip(self, category: Category, toggle: Toggle) -> bool:
        """Invert one toggle and return its new value."""
        value = not self.enabled(category, toggle)
        self.toggles.setdefault(category, {})[toggle] = value
        return value

    def to_json(self) -> str:
        return json.dumps({
            category.value: {toggle.value: enabled for toggle, enabled in values.items()}
            for category, values in self.toggles.items()
        })

    @classmethod
    def from_json(cls, raw: str) -> ChatSettings:
        """Decode stored settings, filling toggles missing from older records."""
        stored = json.loads(raw) if raw else {}
        table = _defaults()
        for category, toggles in CATEGORY_TOGGLES.items():
            values = stored.get(category.value) or {}
            for toggle in toggles:
                if isinstance(values.get(toggle.value), bool):
                    table[category][toggle] = values[toggle.value]
        return cls(toggles=table)


async def load_chat_settings(db: AsyncSession, chat_id: int) -> ChatSettings:
    record = await db.get(ChatSettingsRecord, chat_id)
    if record is None:
        return ChatSettings()
    return ChatSettings.from_json(record.settings_json)


async def save_chat_settings(db: AsyncSession, chat_id: int, chat_settings: ChatSettings) -> None:
    record = await db.get(ChatSettingsRecord, chat_id)
    if record is None:
        record = ChatSettingsRecord(chat_id=chat_id, settings_json=chat_settings.to_json())
        db.add(record)
    else:
        record.settings_json = chat_settings.to_json()
    await db.flush()
    logger.info("Notification settings saved for chat %d", chat_id)

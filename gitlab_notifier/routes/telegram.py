"""Telegram bot webhook route."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.database import get_db
from gitlab_notifier.handlers.chat_handler import handle_telegram_update
from gitlab_notifier.schemas.telegram import TelegramUpdate

router = APIRouter(tags=["telegram"])


@router.post("/telegram/updates")
async def telegram_update(
    update: TelegramUpdate,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Receive one update from the Telegram Bot API."""
    outcome = await handle_telegram_update(db, update)
    return {"ok": True, "result": outcome}

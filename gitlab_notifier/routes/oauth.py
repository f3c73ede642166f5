"""OAuth redirect target."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.oauth_client import OAuthExchangeError
from gitlab_notifier.config import settings
from gitlab_notifier.database import get_db
from gitlab_notifier.handlers.oauth_handler import OAuthCallbackError, complete_authorization

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


@router.get("/oauth/callback", response_class=HTMLResponse)
async def oauth_callback(
    code: str = "",
    state: str = "",
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    try:
        await complete_authorization(db, state, code)
    except OAuthCallbackError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OAuthExchangeError as exc:
        logger.error("OAuth code exchange failed: %s", exc)
        raise HTTPException(status_code=502, detail="GitLab rejected the authorization") from exc

    back = f"https://t.me/{settings.bot_username}" if settings.bot_username else ""
    link = f' <a href="{back}">Back to Telegram</a>' if back else ""
    return HTMLResponse(f"<html><body>Authorized. You can close this page.{link}</body></html>")

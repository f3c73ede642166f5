"""GitLab webhook route."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.database import get_db
from gitlab_notifier.handlers.webhook_handler import handle_gitlab_webhook
from gitlab_notifier.schemas.gitlab import WebhookResponse
from gitlab_notifier.services.hook_tokens import chat_id_from_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/gitlab/{hook_token}", response_model=WebhookResponse)
async def gitlab_webhook(
    hook_token: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookResponse:
    """Receive a GitLab project webhook for the chat the token was issued to.

    Always answers 200 for a valid token so GitLab keeps the hook enabled;
    the body reports what happened.
    """
    chat_id = chat_id_from_token(hook_token)
    if chat_id is None:
        raise HTTPException(status_code=404, detail="Unknown webhook")
    try:
        payload = await request.json()
    except ValueError:
        logger.error("GitLab webhook for chat %d is not JSON", chat_id)
        return WebhookResponse(status="malformed", errors=["body is not JSON"])
    return await handle_gitlab_webhook(db, chat_id, payload)

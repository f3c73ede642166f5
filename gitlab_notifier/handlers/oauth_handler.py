"""Completion of the OAuth authorization-code flow."""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.handlers.comment_jobs import CACHE_NICK_MAP
from gitlab_notifier.handlers.reply_handler import dispatch_intent
from gitlab_notifier.services.intents import pop_after_auth_action
from gitlab_notifier.services.jobs import job_queue
from gitlab_notifier.services.messenger import send_message
from gitlab_notifier.services.oauth import get_oauth_app, oauth_client, pop_pending_authorization, store_token

logger = logging.getLogger(__name__)


class OAuthCallbackError(ValueError):
    """The callback cannot be matched to a pending authorization."""


async def complete_authorization(db: AsyncSession, state: str, code: str) -> int:
    """Exchange ``code``, store the token and resume what the user was doing.

    Returns the Telegram user id that was authorized.
    """
    pending = await pop_pending_authorization(db, state)
    if pending is None:
        raise OAuthCallbackError("unknown or expired state")
    credentials = await get_oauth_app(db, pending.base_url)
    if credentials is None:
        raise OAuthCallbackError(f"no OAuth application for {pending.base_url}")

    client = oauth_client(credentials)
    try:
        token = await client.exchange(code)
    finally:
        with suppress(Exception):
            await client.close()

    ctx = pending.ctx
    await store_token(db, ctx.user_id, pending.base_url, token)
    await db.commit()

    job_queue.schedule(
        CACHE_NICK_MAP, ctx.user_id, pending.base_url, ctx.username,
        delay=settings.nick_map_job_delay_seconds,
    )
    await send_message(
        db,
        ctx.user_id,
        "Great! Now you can reply issues, commits, merge requests and snippets",
        backup_chat_id=ctx.chat_id,
    )

    action = await pop_after_auth_action(db, ctx.user_id)
    if action is not None:
        intent, action_ctx = action
        logger.info("Resuming %s for user %d after authorization", intent.handler.value, ctx.user_id)
        await dispatch_intent(db, action_ctx, intent)
    await db.commit()
    return ctx.user_id

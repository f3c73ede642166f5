"""Authorization gate for interactive replies.

Replying to GitLab from the chat needs an OAuth token for the user on the
GitLab instance the notification came from. Self-hosted instances first need
an OAuth application, which the user registers through a short dialogue.
"""

from __future__ import annotations

import logging
import re
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.oauth_client import OAuthExchangeError
from gitlab_notifier.schemas.telegram import MessageContext
from gitlab_notifier.services.intents import IntentHandler, ReplyIntent, clear_binding
from gitlab_notifier.services.messenger import send_message
from gitlab_notifier.services.oauth import (
    OAuthCredentials,
    begin_authorization,
    get_oauth_app,
    is_user_authorized,
    oauth_client,
    redirect_uri,
    save_oauth_app,
)
from gitlab_notifier.templates.markup import bold, fixed

logger = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def _setup_instructions(base_url: str) -> str:
    return (
        "To be able to use interactive replies in Telegram, first you need to add oauth application "
        f"on your hosted GitLab instance (admin privileges required): {base_url}/admin/applications/new\n"
        f"Add application with any name (f.e. Telegram) and specify this {bold('Redirect URI')}: \n"
        f"{fixed(redirect_uri())}\n\n"
        f"After you press {bold('Submit')} you will receive app info. First, send me the {bold('Application ID')}"
    )


async def _ask(db: AsyncSession, ctx: MessageContext, text: str, intent: ReplyIntent) -> None:
    """Ask the user in the current chat and wait for their answer there."""
    await send_message(
        db,
        ctx.chat_id,
        text,
        reply_intent=intent,
        awaiting_user_id=ctx.user_id,
        force_reply=True,
        disable_preview=True,
    )


async def must_be_authed(db: AsyncSession, ctx: MessageContext, base_url: str) -> bool:
    """True when the user may act on ``base_url``; otherwise prompts them and returns False.

    Prompts go to the user's private chat and fall back to the current chat
    when the user never started one with the bot.
    """
    credentials = await get_oauth_app(db, base_url)
    if credentials is None:
        logger.info("No OAuth application for %s, asking user %d to register one", base_url, ctx.user_id)
        await send_message(
            db,
            ctx.user_id,
            _setup_instructions(base_url),
            reply_intent=ReplyIntent(handler=IntentHandler.APP_ID_ENTERED, args=[base_url]),
            awaiting_user_id=ctx.user_id,
            force_reply=True,
            disable_preview=True,
            backup_chat_id=ctx.chat_id,
        )
        return False

    if not await is_user_authorized(db, ctx.user_id, base_url):
        auth_url = await begin_authorization(db, ctx, credentials)
        await send_message(
            db,
            ctx.user_id,
            f"You need to authorize me to use interactive replies: {auth_url}",
            disable_preview=True,
            backup_chat_id=ctx.chat_id,
        )
        return False

    return True


async def hosted_app_id_entered(db: AsyncSession, ctx: MessageContext, base_url: str) -> None:
    app_id = ctx.text.strip()
    if not _HEX64.match(app_id):
        logger.info("Rejected application ID from user %d (%d chars)", ctx.user_id, len(app_id))
        await _ask(
            db,
            ctx,
            f"Looks like this {bold('Application ID')} is incorrect. Must be a 64 HEX symbols. Please try again",
            ReplyIntent(handler=IntentHandler.APP_ID_ENTERED, args=[base_url]),
        )
        return
    await _ask(
        db,
        ctx,
        f"Great! Now write me the {bold('Secret')} for this application",
        ReplyIntent(handler=IntentHandler.APP_SECRET_ENTERED, args=[base_url, app_id]),
    )


async def _application_exists(credentials: OAuthCredentials) -> bool:
    """Probe the token endpoint with a dummy code.

    GitLab answers ``invalid_grant`` when the client credentials are valid but
    the code is not; any other failure means the credentials are wrong.
    """
    client = oauth_client(credentials)
    try:
        await client.exchange("-")
    except OAuthExchangeError as exc:
        return exc.invalid_grant
    finally:
        with suppress(Exception):
            await client.close()
    return True


async def hosted_app_secret_entered(db: AsyncSession, ctx: MessageContext, base_url: str, app_id: str) -> None:
    app_secret = ctx.text.strip()
    if not _HEX64.match(app_secret):
        logger.info("Rejected application secret from user %d (%d chars)", ctx.user_id, len(app_secret))
        await _ask(
            db,
            ctx,
            f"Looks like this {bold('Application Secret')} is incorrect. Must be a 64 HEX symbols. Please try again",
            ReplyIntent(handler=IntentHandler.APP_SECRET_ENTERED, args=[base_url, app_id]),
        )
        return

    credentials = OAuthCredentials(base_url=base_url, app_id=app_id, app_secret=app_secret)
    if await _application_exists(credentials):
        await save_oauth_app(db, base_url, app_id, app_secret)
        await clear_binding(db, ctx.chat_id)
        await must_be_authed(db, ctx, base_url)
        return

    logger.warning("OAuth application %s… rejected by %s", app_id[:8], base_url)
    await _ask(
        db,
        ctx,
        f"Application ID or Secret is incorrect. Please try again. Enter {bold('Application ID')}",
        ReplyIntent(handler=IntentHandler.APP_ID_ENTERED, args=[base_url]),
    )

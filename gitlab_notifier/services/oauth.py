"""OAuth applications, pending authorizations and user tokens."""

from __future__ import annotations

import logging
import secrets
from contextlib import suppress
from datetime import timedelta

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.oauth_client import GitLabOAuthClient, authorize_url
from gitlab_notifier.config import settings
from gitlab_notifier.database import utcnow
from gitlab_notifier.models.oauth import OAuthApp, OAuthToken
from gitlab_notifier.schemas.telegram import MessageContext
from gitlab_notifier.services.cache import cache_pop, cache_set

logger = logging.getLogger(__name__)

OAUTH_STATE_SCOPE = "oauth_state"
_STATE_TTL = timedelta(hours=1)


class OAuthCredentials(BaseModel):
    base_url: str
    app_id: str
    app_secret: str


class PendingAuthorization(BaseModel):
    base_url: str
    ctx: MessageContext


def redirect_uri() -> str:
    return f"{settings.public_url}{settings.api_prefix}/oauth/callback"


def oauth_client(credentials: OAuthCredentials) -> GitLabOAuthClient:
    return GitLabOAuthClient(
        credentials.base_url, credentials.app_id, credentials.app_secret, redirect_uri()
    )


async def get_oauth_app(db: AsyncSession, base_url: str) -> OAuthCredentials | None:
    """The OAuth app registered for ``base_url``; GitLab.com uses the configured one."""
    if base_url == settings.gitlab_base_url and settings.oauth_app_id and settings.oauth_app_secret:
        return OAuthCredentials(
            base_url=base_url,
            app_id=settings.oauth_app_id,
            app_secret=settings.oauth_app_secret,
        )
    result = await db.execute(select(OAuthApp).where(OAuthApp.base_url == base_url))
    app = result.scalar_one_or_none()
    if app is None:
        return None
    return OAuthCredentials(base_url=app.base_url, app_id=app.app_id, app_secret=app.app_secret)


async def save_oauth_app(db: AsyncSession, base_url: str, app_id: str, app_secret: str) -> None:
    result = await db.execute(select(OAuthApp).where(OAuthApp.base_url == base_url))
    app = result.scalar_one_or_none()
    if app is None:
        app = OAuthApp(base_url=base_url)
        db.add(app)
    app.app_id = app_id
    app.app_secret = app_secret
    await db.flush()
    logger.info("OAuth application saved for %s", base_url)


async def begin_authorization(
    db: AsyncSession,
    ctx: MessageContext,
    credentials: OAuthCredentials,
) -> str:
    """Authorization URL for the user in ``ctx``; the state token remembers who asked."""
    state = secrets.token_urlsafe(24)
    # Only who asked is kept; the message text may be a freshly entered app secret
    pending = PendingAuthorization(base_url=credentials.base_url, ctx=ctx.model_copy(update={"text": ""}))
    await cache_set(db, OAUTH_STATE_SCOPE, state, pending.model_dump(mode="json"), _STATE_TTL)
    return authorize_url(credentials.base_url, credentials.app_id, redirect_uri(), state)


async def pop_pending_authorization(db: AsyncSession, state: str) -> PendingAuthorization | None:
    raw = await cache_pop(db, OAUTH_STATE_SCOPE, state)
    if raw is None:
        return None
    return PendingAuthorization.model_validate(raw)


async def _get_token(db: AsyncSession, user_id: int, base_url: str) -> OAuthToken | None:
    result = await db.execute(
        select(OAuthToken).where(OAuthToken.user_id == user_id, OAuthToken.base_url == base_url)
    )
    return result.scalar_one_or_none()


async def store_token(db: AsyncSession, user_id: int, base_url: str, token: dict) -> None:
    record = await _get_token(db, user_id, base_url)
    if record is None:
        record = OAuthToken(user_id=user_id, base_url=base_url)
        db.add(record)
    record.access_token = token["access_token"]
    record.refresh_token = token.get("refresh_token") or record.refresh_token
    expires_in = token.get("expires_in")
    record.expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
    await db.flush()
    logger.info("OAuth token stored for user %d on %s", user_id, base_url)


async def is_user_authorized(db: AsyncSession, user_id: int, base_url: str) -> bool:
    record = await _get_token(db, user_id, base_url)
    if record is None:
        return False
    if record.expires_at is None or record.expires_at > utcnow():
        return True
    return bool(record.refresh_token)


async def get_access_token(db: AsyncSession, user_id: int, base_url: str) -> str | None:
    """A usable access token, refreshing an expired one when possible."""
    record = await _get_token(db, user_id, base_url)
    if record is None:
        return None
    if record.expires_at is None or record.expires_at > utcnow():
        return record.access_token
    if not record.refresh_token:
        return None
    credentials = await get_oauth_app(db, base_url)
    if credentials is None:
        return None
    client = oauth_client(credentials)
    try:
        token = await client.refresh(record.refresh_token)
    finally:
        with suppress(Exception):
            await client.close()
    await store_token(db, user_id, base_url, token)
    return token["access_token"]

"""Background jobs that write to GitLab on behalf of chat users.

Each job opens its own session: it runs after the request that queued it
has committed. The chat message that carried a comment is registered under
the created note's key so the webhook echoing that note is recognised as a
duplicate.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.clients.gitlab_client import GitLabAPIError, GitLabClient
from gitlab_notifier.config import settings
from gitlab_notifier.database import async_session
from gitlab_notifier.schemas.telegram import MessageContext
from gitlab_notifier.services.cache import cache_get, cache_set, remember_nickname, user_scope
from gitlab_notifier.services.correlation import normalize_timestamp, note_key, remember_message
from gitlab_notifier.services.jobs import PermanentJobError, job_queue
from gitlab_notifier.services.oauth import get_access_token

logger = logging.getLogger(__name__)

SEND_ISSUE_COMMENT = "send_issue_comment"
SEND_MR_COMMENT = "send_mr_comment"
SEND_SNIPPET_COMMENT = "send_snippet_comment"
SEND_COMMIT_COMMENT = "send_commit_comment"
CACHE_NICK_MAP = "cache_nick_map"


async def gitlab_client(db: AsyncSession, user_id: int, base_url: str) -> GitLabClient:
    token = await get_access_token(db, user_id, base_url)
    if token is None:
        raise PermanentJobError(f"user {user_id} has no usable token for {base_url}")
    return GitLabClient(base_url, token)


async def _post_note(ctx: MessageContext, base_url: str, project_id: int, post) -> None:
    """Run ``post(client)`` and register the resulting note against ``ctx``'s message."""
    async with async_session() as db:
        client = await gitlab_client(db, ctx.user_id, base_url)
        try:
            note = await post(client)
        except GitLabAPIError as exc:
            if not exc.retryable:
                raise PermanentJobError(str(exc)) from exc
            raise
        finally:
            with suppress(Exception):
                await client.close()

        if note.get("id") is not None:
            note_id = note["id"]
        else:
            # Commit comments come back without an id
            note_id = normalize_timestamp(note.get("created_at") or "")
        await remember_message(db, ctx.chat_id, note_key(project_id, note_id), ctx.message_id, ctx.text)
        await db.commit()


@job_queue.job(SEND_ISSUE_COMMENT)
async def send_issue_comment(ctx: MessageContext, base_url: str, project_id: int, issue_iid: int, text: str) -> None:
    await _post_note(
        ctx, base_url, project_id,
        lambda client: client.create_issue_note(project_id, issue_iid, text),
    )


@job_queue.job(SEND_MR_COMMENT)
async def send_mr_comment(ctx: MessageContext, base_url: str, project_id: int, mr_iid: int, text: str) -> None:
    await _post_note(
        ctx, base_url, project_id,
        lambda client: client.create_merge_request_note(project_id, mr_iid, text),
    )


@job_queue.job(SEND_SNIPPET_COMMENT)
async def send_snippet_comment(ctx: MessageContext, base_url: str, project_id: int, snippet_id: int, text: str) -> None:
    await _post_note(
        ctx, base_url, project_id,
        lambda client: client.create_snippet_note(project_id, snippet_id, text),
    )


@job_queue.job(SEND_COMMIT_COMMENT)
async def send_commit_comment(ctx: MessageContext, base_url: str, project_id: int, sha: str, text: str) -> None:
    await _post_note(
        ctx, base_url, project_id,
        lambda client: client.create_commit_comment(project_id, sha, text),
    )


async def current_gitlab_user(db: AsyncSession, user_id: int, base_url: str) -> dict:
    """The GitLab account behind ``user_id``'s token, cached per user."""
    key = f"me:{base_url}"
    cached = await cache_get(db, user_scope(user_id), key)
    if cached:
        return cached
    client = await gitlab_client(db, user_id, base_url)
    try:
        me = await client.current_user()
    finally:
        with suppress(Exception):
            await client.close()
    await cache_set(db, user_scope(user_id), key, me, timedelta(days=settings.user_cache_ttl_days))
    return me


@job_queue.job(CACHE_NICK_MAP)
async def cache_nick_map(user_id: int, base_url: str, telegram_username: str) -> None:
    """Map the user's GitLab username and email to their Telegram handle for mentions."""
    if not telegram_username:
        logger.info("User %d has no Telegram username, skipping nick map", user_id)
        return
    async with async_session() as db:
        me = await current_gitlab_user(db, user_id, base_url)
        await remember_nickname(db, [me.get("username", ""), me.get("email", "")], telegram_username)
        await db.commit()
    logger.info("Nick map cached for %s", telegram_username)

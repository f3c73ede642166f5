"""Reply intents: what a chat message answering a notification should do.

Every handler takes the session, the incoming message context and the
intent's stored arguments. Handlers that post to GitLab check authorization
first; when the user still has to authorize, the intent is parked together
with the message so it can be replayed once OAuth completes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.handlers.auth import hosted_app_id_entered, hosted_app_secret_entered, must_be_authed
from gitlab_notifier.handlers.comment_jobs import (
    SEND_COMMIT_COMMENT,
    SEND_ISSUE_COMMENT,
    SEND_MR_COMMENT,
    SEND_SNIPPET_COMMENT,
)
from gitlab_notifier.schemas.telegram import MessageContext
from gitlab_notifier.services.intents import (
    IntentHandler,
    ReplyIntent,
    bind_reply,
    clear_binding,
    match_binding,
    set_after_auth_action,
)
from gitlab_notifier.services.jobs import job_queue
from gitlab_notifier.services.messenger import send_message
from gitlab_notifier.templates.markup import esc
from gitlab_notifier.templates.telegram_templates import commit_choice_label, reply_keyboard

logger = logging.getLogger(__name__)

_MIN_SHA_PREFIX = 7


async def _comment(
    db: AsyncSession,
    ctx: MessageContext,
    intent: ReplyIntent,
    base_url: str,
    job_name: str,
    project_id: int,
    target: int | str,
) -> None:
    """Queue ``ctx.text`` as a comment, or park the intent until the user authorizes."""
    if not await must_be_authed(db, ctx, base_url):
        await set_after_auth_action(db, ctx, intent)
        return
    # Replies to the user's own comment continue the same thread
    await bind_reply(db, ctx.chat_id, ctx.message_id, intent)
    job_queue.enqueue_on_commit(db, job_name, ctx, base_url, project_id, target, ctx.text)


async def issue_replied(db: AsyncSession, ctx: MessageContext, base_url: str, project_id: int, issue_iid: int) -> None:
    intent = ReplyIntent(handler=IntentHandler.ISSUE_REPLIED, args=[base_url, project_id, issue_iid])
    await _comment(db, ctx, intent, base_url, SEND_ISSUE_COMMENT, project_id, issue_iid)


async def mr_replied(db: AsyncSession, ctx: MessageContext, base_url: str, project_id: int, mr_iid: int) -> None:
    intent = ReplyIntent(handler=IntentHandler.MR_REPLIED, args=[base_url, project_id, mr_iid])
    await _comment(db, ctx, intent, base_url, SEND_MR_COMMENT, project_id, mr_iid)


async def snippet_replied(db: AsyncSession, ctx: MessageContext, base_url: str, project_id: int, snippet_id: int) -> None:
    intent = ReplyIntent(handler=IntentHandler.SNIPPET_REPLIED, args=[base_url, project_id, snippet_id])
    await _comment(db, ctx, intent, base_url, SEND_SNIPPET_COMMENT, project_id, snippet_id)


async def commit_replied(db: AsyncSession, ctx: MessageContext, base_url: str, project_id: int, sha: str) -> None:
    intent = ReplyIntent(handler=IntentHandler.COMMIT_REPLIED, args=[base_url, project_id, sha])
    await _comment(db, ctx, intent, base_url, SEND_COMMIT_COMMENT, project_id, sha)


async def _ask_for_commit(
    db: AsyncSession,
    ctx: MessageContext,
    base_url: str,
    project_id: int,
    comment_text: str,
    comment_message_id: int,
    choices: dict[str, str],
) -> None:
    await send_message(
        db,
        ctx.chat_id,
        f"{esc(ctx.mention())} please specify commit to comment",
        reply_to=comment_message_id,
        reply_markup=reply_keyboard(list(choices)),
        reply_intent=ReplyIntent(
            handler=IntentHandler.COMMIT_SELECTED,
            args=[base_url, project_id, comment_text, comment_message_id, choices],
        ),
        awaiting_user_id=ctx.user_id,
    )


async def commits_replied(
    db: AsyncSession,
    ctx: MessageContext,
    base_url: str,
    project_id: int,
    commits: list[dict],
) -> None:
    """A reply to a multi-commit push: ask which commit the comment is for."""
    await _ask_for_commit(db, ctx, base_url, project_id, ctx.text, ctx.message_id, commit_choices(commits))


def commit_choices(commits: list[dict]) -> dict[str, str]:
    """Keyboard label to sha for each commit. Labels that would collide carry the full sha."""
    labels = [commit_choice_label(c["id"], c.get("message", "")) for c in commits]
    choices: dict[str, str] = {}
    for commit, label in zip(commits, labels):
        if labels.count(label) > 1:
            label = commit_choice_label(commit["id"], commit.get("message", ""), sha_length=len(commit["id"]))
        choices[label] = commit["id"]
    return choices


def resolve_commit_choice(answer: str, choices: dict[str, str]) -> str | None:
    """Match a keyboard answer, or a typed sha prefix, against the offered commits."""
    answer = answer.strip()
    if answer in choices:
        return choices[answer]
    if len(answer) >= _MIN_SHA_PREFIX:
        matches = {sha for sha in choices.values() if sha.startswith(answer.lower())}
        if len(matches) == 1:
            return matches.pop()
    return None


async def commit_selected(
    db: AsyncSession,
    ctx: MessageContext,
    base_url: str,
    project_id: int,
    comment_text: str,
    comment_message_id: int,
    choices: dict[str, str],
) -> None:
    sha = resolve_commit_choice(ctx.text, choices)
    if sha is None:
        logger.info("User %d picked an unknown commit %r", ctx.user_id, ctx.text)
        await _ask_for_commit(db, ctx, base_url, project_id, comment_text, comment_message_id, choices)
        return
    await clear_binding(db, ctx.chat_id)
    # The comment is the message that started the exchange, not the keyboard answer
    comment_ctx = ctx.model_copy(update={"text": comment_text, "message_id": comment_message_id})
    await commit_replied(db, comment_ctx, base_url, project_id, sha)


IntentCallable = Callable[..., Awaitable[None]]

INTENT_HANDLERS: dict[IntentHandler, IntentCallable] = {
    IntentHandler.APP_ID_ENTERED: hosted_app_id_entered,
    IntentHandler.APP_SECRET_ENTERED: hosted_app_secret_entered,
    IntentHandler.ISSUE_REPLIED: issue_replied,
    IntentHandler.MR_REPLIED: mr_replied,
    IntentHandler.SNIPPET_REPLIED: snippet_replied,
    IntentHandler.COMMIT_REPLIED: commit_replied,
    IntentHandler.COMMITS_REPLIED: commits_replied,
    IntentHandler.COMMIT_SELECTED: commit_selected,
}


async def dispatch_intent(db: AsyncSession, ctx: MessageContext, intent: ReplyIntent) -> None:
    logger.info("Dispatching %s for user %d in chat %d", intent.handler.value, ctx.user_id, ctx.chat_id)
    await INTENT_HANDLERS[intent.handler](db, ctx, *intent.args)


async def handle_reply(db: AsyncSession, ctx: MessageContext) -> bool:
    """Run the chat's reply binding if ``ctx`` answers it. Returns False when nothing matched."""
    intent = await match_binding(db, ctx)
    if intent is None:
        return False
    await dispatch_intent(db, ctx, intent)
    return True

"""Storage for reply intents.

An intent is a handler tag plus a JSON argument list. A chat honours exactly
one reply binding at a time; each user holds at most one after-auth action.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.models.reply_intent import AfterAuthAction, ReplyBinding
from gitlab_notifier.schemas.telegram import MessageContext

logger = logging.getLogger(__name__)


class IntentHandler(str, Enum):
    APP_ID_ENTERED = "hosted_app_id_entered"
    APP_SECRET_ENTERED = "hosted_app_secret_entered"
    ISSUE_REPLIED = "issue_replied"
    MR_REPLIED = "mr_replied"
    SNIPPET_REPLIED = "snippet_replied"
    COMMIT_REPLIED = "commit_replied"
    COMMITS_REPLIED = "commits_replied"
    COMMIT_SELECTED = "commit_to_reply_selected"


class IntentState(str, Enum):
    IDLE = "idle"
    AWAITING_AUTH_APP_ID = "awaiting_auth_app_id"
    AWAITING_AUTH_SECRET = "awaiting_auth_secret"
    AWAITING_TARGET = "awaiting_target"
    AUTHORIZED = "authorized"


_STATES = {
    IntentHandler.APP_ID_ENTERED: IntentState.AWAITING_AUTH_APP_ID,
    IntentHandler.APP_SECRET_ENTERED: IntentState.AWAITING_AUTH_SECRET,
    IntentHandler.COMMITS_REPLIED: IntentState.AWAITING_TARGET,
    IntentHandler.COMMIT_SELECTED: IntentState.AWAITING_TARGET,
}


class ReplyIntent(BaseModel):
    handler: IntentHandler
    args: list[Any] = Field(default_factory=list)

    @property
    def state(self) -> IntentState:
        return _STATES.get(self.handler, IntentState.AUTHORIZED)


def intent_state(intent: ReplyIntent | None) -> IntentState:
    return intent.state if intent is not None else IntentState.IDLE


async def bind_reply(
    db: AsyncSession,
    chat_id: int,
    message_id: int,
    intent: ReplyIntent,
    awaiting_user_id: int | None = None,
) -> None:
    """Make ``intent`` the chat's reply binding, replacing any earlier one."""
    binding = await db.get(ReplyBinding, chat_id)
    if binding is None:
        binding = ReplyBinding(chat_id=chat_id)
        db.add(binding)
    binding.message_id = message_id
    binding.awaiting_user_id = awaiting_user_id
    binding.handler = intent.handler.value
    binding.args_json = json.dumps(intent.args)
    await db.flush()
    logger.debug("Chat %d bound to %s on message %d", chat_id, intent.handler.value, message_id)


async def current_binding(db: AsyncSession, chat_id: int) -> ReplyIntent | None:
    binding = await db.get(ReplyBinding, chat_id)
    if binding is None:
        return None
    return ReplyIntent(handler=IntentHandler(binding.handler), args=json.loads(binding.args_json))


async def match_binding(db: AsyncSession, ctx: MessageContext) -> ReplyIntent | None:
    """The chat's binding if ``ctx`` answers it, else None."""
    binding = await db.get(ReplyBinding, ctx.chat_id)
    if binding is None:
        return None
    replies_to_bound = ctx.reply_to_message_id is not None and ctx.reply_to_message_id == binding.message_id
    awaited = binding.awaiting_user_id is not None and binding.awaiting_user_id == ctx.user_id
    if not (replies_to_bound or awaited):
        return None
    return ReplyIntent(handler=IntentHandler(binding.handler), args=json.loads(binding.args_json))


async def clear_binding(db: AsyncSession, chat_id: int) -> None:
    binding = await db.get(ReplyBinding, chat_id)
    if binding is not None:
        await db.delete(binding)
        await db.flush()


async def set_after_auth_action(db: AsyncSession, ctx: MessageContext, intent: ReplyIntent) -> None:
    """Park ``intent`` with the message that triggered it until OAuth completes."""
    action = await db.get(AfterAuthAction, ctx.user_id)
    if action is None:
        action = AfterAuthAction(user_id=ctx.user_id)
        db.add(action)
    action.handler = intent.handler.value
    action.args_json = json.dumps(intent.args)
    action.context_json = ctx.model_dump_json()
    await db.flush()
    logger.info("After-auth action %s stored for user %d", intent.handler.value, ctx.user_id)


async def pop_after_auth_action(db: AsyncSession, user_id: int) -> tuple[ReplyIntent, MessageContext] | None:
    action = await db.get(AfterAuthAction, user_id)
    if action is None:
        return None
    intent = ReplyIntent(handler=IntentHandler(action.handler), args=json.loads(action.args_json))
    ctx = MessageContext.model_validate_json(action.context_json)
    await db.delete(action)
    await db.flush()
    return intent, ctx

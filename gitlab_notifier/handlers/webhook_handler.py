"""Classifies GitLab webhooks and turns them into chat notifications.

Each event produces at most one action in the chat: a new message, a reply
threaded under the notification the event relates to, an in-place edit of
that notification, or nothing (duplicate, muted by settings, unsupported).
Correlation misses are never errors; the event is sent standalone with a
synthesized preview of the resource instead.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.models.notification_record import NotificationRecord
from gitlab_notifier.schemas.gitlab import ZERO_SHA, GitLabWebhook, WebhookResponse
from gitlab_notifier.services.cache import lookup_nickname
from gitlab_notifier.services.chat_settings import Category, Toggle, load_chat_settings
from gitlab_notifier.services.correlation import (
    commit_key,
    find_message,
    issue_key,
    mr_key,
    normalize_timestamp,
    note_key,
    snippet_key,
)
from gitlab_notifier.services.intents import IntentHandler, ReplyIntent
from gitlab_notifier.services.messenger import edit_message_by_event_key, send_message
from gitlab_notifier.services.previews import web_preview
from gitlab_notifier.templates.markup import bold, esc, url
from gitlab_notifier.templates.telegram_templates import (
    build_branch_message,
    build_ci_status_line,
    build_issue_followup,
    build_issue_opened,
    build_mr_followup,
    build_mr_opened,
    build_note_message,
    build_push_message,
    build_tag_push_message,
    compare_url,
    files_summary,
    project_label,
)

logger = logging.getLogger(__name__)


class MalformedEvent(ValueError):
    """Payload lacks a record its kind requires."""


_ISSUE_TOGGLES = {
    "open": Toggle.OPEN,
    "update": Toggle.UPDATE,
    "close": Toggle.CLOSE,
    "reopen": Toggle.REOPEN,
}

_ISSUE_VERBS = {"reopen": "reopened", "close": "closed"}

_MR_TOGGLES = {
    "open": Toggle.OPEN,
    "reopen": Toggle.OPEN,
    "update": Toggle.UPDATE,
    "merge": Toggle.MERGE,
    "close": Toggle.CLOSE,
}

_BUILD_TOGGLES = {
    "success": Toggle.SUCCESS,
    "failed": Toggle.FAIL,
    "canceled": Toggle.CANCEL,
}


async def mention(db: AsyncSession, name: str, email: str = "") -> str:
    """``@nick`` for GitLab users we know the Telegram handle of, bold name otherwise."""
    nickname = await lookup_nickname(db, name, email)
    if nickname:
        return "@" + esc(nickname)
    return bold(name)


def service_base_url(event: GitLabWebhook) -> str:
    """Scheme and host of the GitLab instance that sent ``event``."""
    candidates = [event.repository.homepage, event.project.web_url]
    if event.object_attributes is not None:
        candidates.append(event.object_attributes.url)
    if event.commit is not None:
        candidates.append(event.commit.url)
    for candidate in candidates:
        parts = urlsplit(candidate or "")
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    logger.error("GitLab webhook (%s) carries no URL, assuming %s", event.object_kind, settings.gitlab_base_url)
    return settings.gitlab_base_url


def branch_name(ref: str) -> str:
    if ref.startswith("refs/heads/"):
        return ref.removeprefix("refs/heads/")
    return ref.rsplit("/", 1)[-1]


def _require_attributes(event: GitLabWebhook):
    if event.object_attributes is None:
        raise MalformedEvent(f"{event.object_kind} event without object_attributes")
    return event.object_attributes


def _is_other_author(event: GitLabWebhook, author_name: str, author_email: str) -> bool:
    return author_email != event.user_email and author_name != event.user_name


async def _handle_push(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    if not event.ref:
        raise MalformedEvent("push event without ref")
    branch = branch_name(event.ref)
    pusher = await mention(db, event.user_username or event.user_name, event.user_email or "")

    if not event.commits:
        created = bool(event.after) and event.after != ZERO_SHA
        text = build_branch_message(event, branch, pusher, created)
        message_id = await send_message(db, chat_id, text)
        return WebhookResponse(status="processed", message_id=message_id)

    prefixes: list[str | None] = []
    modified = added = removed = 0
    for commit in event.commits:
        if _is_other_author(event, commit.author.name, commit.author.email):
            prefixes.append(await mention(db, commit.author.name, commit.author.email))
        else:
            prefixes.append(None)
        modified += len(commit.modified)
        added += len(commit.added)
        removed += len(commit.removed)
    summary = files_summary(modified, added, removed)

    project_id = event.project_id or event.project.id
    last = event.commits[-1]
    if len(event.commits) > 1:
        pushed_link = await web_preview(
            db,
            f"{len(event.commits)} commits",
            f"@{event.before[:10]} ... @{event.after[:10]}",
            summary,
            compare_url(event.repository.homepage, event.before, event.after),
        )
        intent = ReplyIntent(
            handler=IntentHandler.COMMITS_REPLIED,
            args=[base_url, project_id, [{"id": c.id, "message": c.message} for c in event.commits]],
        )
    else:
        pushed_link = await web_preview(db, "Commit", f"@{event.after[:10]}", summary, last.url)
        intent = ReplyIntent(handler=IntentHandler.COMMIT_REPLIED, args=[base_url, project_id, last.id])

    text = build_push_message(event, branch, pusher, prefixes, pushed_link)
    # Keyed by the last commit: CI builds run for the pushed head
    message_id = await send_message(
        db, chat_id, text, event_keys=(commit_key(last.id),), reply_intent=intent
    )
    return WebhookResponse(status="processed", message_id=message_id)


async def _handle_tag_push(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    segments = event.ref.split("/")
    if len(segments) < 2:
        raise MalformedEvent(f"tag_push event with ref {event.ref!r}")
    item_type = {"tags": "tag", "heads": "branch"}.get(segments[-2], segments[-2])
    pusher = await mention(db, event.user_username or event.user_name, event.user_email or "")
    text = build_tag_push_message(event, pusher, item_type, segments[-1])
    message_id = await send_message(db, chat_id, text, disable_preview=True)
    return WebhookResponse(status="processed", message_id=message_id)


async def _handle_issue(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    attrs = _require_attributes(event)
    action = attrs.action or "update"
    toggle = _ISSUE_TOGGLES.get(action)
    chat_settings = await load_chat_settings(db, chat_id)
    if toggle is not None and not chat_settings.enabled(Category.ISSUES, toggle):
        logger.info("Issue %s notification muted in chat %d", action, chat_id)
        return WebhookResponse(status="suppressed")

    project_id = attrs.project_id or event.project.id
    intent = ReplyIntent(handler=IntentHandler.ISSUE_REPLIED, args=[base_url, project_id, attrs.iid])

    if action == "open":
        actor = await mention(db, event.user.username, event.user.email or event.user_email or "")
        message_id = await send_message(
            db,
            chat_id,
            build_issue_opened(event, actor),
            event_keys=(issue_key(attrs.id),),
            reply_intent=intent,
            disable_preview=True,
        )
        return WebhookResponse(status="processed", message_id=message_id)

    verb = _ISSUE_VERBS.get(action, "updated")
    actor = await mention(db, event.user.username)
    original = await find_message(db, chat_id, issue_key(attrs.id))
    if original is not None:
        message_id = await send_message(
            db,
            chat_id,
            build_issue_followup(verb, actor),
            reply_to=original.message_id,
            reply_intent=intent,
            disable_preview=True,
        )
        return WebhookResponse(status="processed", message_id=message_id)

    preview = await web_preview(db, "Issue", attrs.title, project_label(event), attrs.url)
    message_id = await send_message(
        db, chat_id, build_issue_followup(verb, actor, preview), reply_intent=intent
    )
    return WebhookResponse(status="processed", message_id=message_id)


async def _handle_merge_request(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    attrs = _require_attributes(event)
    action = attrs.action or "update"
    toggle = _MR_TOGGLES.get(action)
    chat_settings = await load_chat_settings(db, chat_id)
    if toggle is not None and not chat_settings.enabled(Category.MERGE_REQUESTS, toggle):
        logger.info("Merge request %s notification muted in chat %d", action, chat_id)
        return WebhookResponse(status="suppressed")

    project_id = attrs.target_project_id or attrs.project_id or event.project.id
    intent = ReplyIntent(handler=IntentHandler.MR_REPLIED, args=[base_url, project_id, attrs.iid])
    actor = await mention(db, event.user.username, event.user.email or event.user_email or "")

    if action == "open":
        message_id = await send_message(
            db,
            chat_id,
            build_mr_opened(event, actor),
            event_keys=(mr_key(attrs.id),),
            reply_intent=intent,
            disable_preview=True,
        )
        return WebhookResponse(status="processed", message_id=message_id)

    original = await find_message(db, chat_id, mr_key(attrs.id))
    if original is not None:
        message_id = await send_message(
            db,
            chat_id,
            build_mr_followup(event, actor),
            reply_to=original.message_id,
            reply_intent=intent,
            disable_preview=True,
        )
        return WebhookResponse(status="processed", message_id=message_id)

    preview = await web_preview(db, "Merge Request", attrs.title, attrs.description or "", attrs.url)
    message_id = await send_message(
        db, chat_id, build_mr_followup(event, actor, preview), reply_intent=intent
    )
    return WebhookResponse(status="processed", message_id=message_id)


async def _handle_note(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    attrs = _require_attributes(event)
    project_id = attrs.project_id or event.project.id
    noteable = attrs.noteable_type

    # Commit comments created through the API come back without an id, so
    # both directions key them by creation time
    note_id: int | str = attrs.id
    if noteable == "Commit" and attrs.created_at:
        note_id = normalize_timestamp(attrs.created_at)
    own_key = note_key(project_id, note_id)
    if await find_message(db, chat_id, own_key) is not None:
        logger.info("Note %s already notified in chat %d", own_key, chat_id)
        return WebhookResponse(status="duplicate")

    note_type = noteable.lower()
    parent_key: str | None = None
    preview_args: tuple[str, str] | None = None
    intent: ReplyIntent | None = None
    label = project_label(event)

    if noteable == "Commit":
        note_type = "commit"
        commit_id = attrs.commit_id or (str(event.commit.id) if event.commit and event.commit.id else "")
        if commit_id:
            parent_key = commit_key(commit_id)
            preview_args = ("Commit", f"@{commit_id[:10]}")
            intent = ReplyIntent(handler=IntentHandler.COMMIT_REPLIED, args=[base_url, project_id, commit_id])
    elif noteable == "MergeRequest":
        note_type = "merge request"
        if event.merge_request is not None:
            parent_key = mr_key(event.merge_request.id)
            preview_args = ("Merge Request", event.merge_request.title)
            intent = ReplyIntent(
                handler=IntentHandler.MR_REPLIED, args=[base_url, project_id, event.merge_request.iid]
            )
    elif noteable == "Issue":
        note_type = "issue"
        if event.issue is not None:
            parent_key = issue_key(event.issue.id)
            preview_args = ("Issue", event.issue.title)
            intent = ReplyIntent(handler=IntentHandler.ISSUE_REPLIED, args=[base_url, project_id, event.issue.iid])
    elif noteable == "Snippet":
        note_type = "snippet"
        if event.snippet is not None:
            parent_key = snippet_key(event.snippet.id)
            preview_args = ("Snippet", event.snippet.title)
            intent = ReplyIntent(
                handler=IntentHandler.SNIPPET_REPLIED, args=[base_url, project_id, event.snippet.id]
            )

    actor = await mention(db, event.user.username)
    original = await find_message(db, chat_id, parent_key) if parent_key else None
    if original is not None:
        message_id = await send_message(
            db,
            chat_id,
            build_note_message(event, actor, note_type),
            reply_to=original.message_id,
            event_keys=(own_key,),
            reply_intent=intent,
            disable_preview=True,
        )
        return WebhookResponse(status="processed", message_id=message_id)

    if preview_args is not None:
        link = await web_preview(db, preview_args[0], preview_args[1], label, attrs.url)
    else:
        link = attrs.url
    event_keys: tuple[str, ...] = (own_key,)
    # Later comments on the same issue, MR or snippet thread under this one;
    # commit keys stay reserved for push notifications that CI edits
    if parent_key and noteable != "Commit":
        event_keys += (parent_key,)
    message_id = await send_message(
        db,
        chat_id,
        build_note_message(event, actor, note_type or "comment", link),
        event_keys=event_keys,
        reply_intent=intent,
    )
    return WebhookResponse(status="processed", message_id=message_id)


async def _find_push_notification(db: AsyncSession, chat_id: int, sha: str) -> NotificationRecord | None:
    """Look up the push notification for ``sha``, waiting briefly for a racing push webhook."""
    attempts = max(settings.build_correlation_attempts, 1)
    for attempt in range(attempts):
        record = await find_message(db, chat_id, commit_key(sha))
        if record is not None:
            return record
        if attempt + 1 < attempts:
            # End the read snapshot so a push committed meanwhile becomes visible
            await db.rollback()
            await asyncio.sleep(settings.build_correlation_delay_seconds)
    return None


def _build_enabled(event: GitLabWebhook, chat_settings) -> bool:
    if event.build_status == "failed" and event.build_allow_failure:
        return True
    toggle = _BUILD_TOGGLES.get(event.build_status)
    return toggle is not None and chat_settings.enabled(Category.CI, toggle)


async def _handle_build(db: AsyncSession, chat_id: int, event: GitLabWebhook, base_url: str) -> WebhookResponse:
    if not event.sha:
        raise MalformedEvent("build event without sha")
    original = await _find_push_notification(db, chat_id, event.sha)

    homepage = event.repository.homepage
    stage = event.build_stage or event.build_name or "build"
    build_url = f"{homepage}/builds/{event.build_id}"
    commit_link = ""
    if original is not None:
        build_link = url(stage[:1].upper() + stage[1:], build_url)
    else:
        segments = homepage.rstrip("/").split("/")
        namespace = segments[-2] if len(segments) >= 2 else ""
        preview = await web_preview(
            db,
            "Commit",
            f"@{event.sha[:10]}",
            f"{namespace} / {event.repository.name}",
            f"{homepage}/commit/{event.sha}",
        )
        commit_link = url("Commit", preview)
        build_link = url(stage, build_url)
    if event.build_name and event.build_name.lower() != stage.lower():
        build_link += " #" + esc(event.build_name)

    canceller = ""
    if event.build_status == "canceled":
        canceller = await mention(db, event.user.username or event.user.name)
    line = build_ci_status_line(event, build_link, commit_link, canceller)
    if line is None:
        logger.info("Ignoring build status %r for %s", event.build_status, event.sha[:10])
        return WebhookResponse(status="ignored")

    if original is not None:
        # Silent edit: each status replaces the previous one under the push text
        message_id = await edit_message_by_event_key(
            db, chat_id, commit_key(event.sha), f"{original.text}\n{line}"
        )
        return WebhookResponse(status="processed", message_id=message_id)

    chat_settings = await load_chat_settings(db, chat_id)
    if not _build_enabled(event, chat_settings):
        logger.info("CI %s notification muted in chat %d", event.build_status, chat_id)
        return WebhookResponse(status="suppressed")
    message_id = await send_message(db, chat_id, line)
    return WebhookResponse(status="processed", message_id=message_id)


_HANDLERS = {
    "push": _handle_push,
    "tag_push": _handle_tag_push,
    "issue": _handle_issue,
    "merge_request": _handle_merge_request,
    "note": _handle_note,
    "build": _handle_build,
}


async def handle_gitlab_webhook(db: AsyncSession, chat_id: int, payload: object) -> WebhookResponse:
    """Process one GitLab webhook delivery for ``chat_id``.

    Malformed payloads are logged and dropped; GitLab does not redeliver them.
    """
    try:
        event = GitLabWebhook.model_validate(payload)
    except ValidationError as exc:
        logger.error("Malformed GitLab webhook for chat %d: %s", chat_id, exc)
        return WebhookResponse(status="malformed", errors=[f"payload: {exc.error_count()} validation error(s)"])

    handler = _HANDLERS.get(event.object_kind)
    if handler is None:
        logger.info("Unsupported GitLab event %r for chat %d", event.object_kind, chat_id)
        return WebhookResponse(status="ignored")

    base_url = service_base_url(event)
    try:
        response = await handler(db, chat_id, event, base_url)
    except MalformedEvent as exc:
        logger.error("Malformed GitLab %s webhook for chat %d: %s", event.object_kind, chat_id, exc)
        await db.rollback()
        return WebhookResponse(status="malformed", errors=[str(exc)])
    except Exception as exc:
        logger.error("GitLab %s notification failed for chat %d: %s", event.object_kind, chat_id, exc)
        await db.rollback()
        return WebhookResponse(status="failed", errors=[f"{event.object_kind}: {exc}"])

    await db.commit()
    return response

"""Event key -> sent message correlation.

Append-only: the first message recorded for a key wins until the entry
expires. A key that already exists means the event was already notified.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.database import utcnow
from gitlab_notifier.models.notification_record import NotificationRecord

logger = logging.getLogger(__name__)


def commit_key(sha: str) -> str:
    return f"commit_{sha}"


def issue_key(issue_id: int) -> str:
    return f"issue_{issue_id}"


def mr_key(mr_id: int) -> str:
    return f"mr_{mr_id}"


def snippet_key(snippet_id: int) -> str:
    return f"snippet_{snippet_id}"


def note_key(project_id: int, note_id: int | str) -> str:
    return f"note_{project_id}_{note_id}"


def normalize_timestamp(raw: str) -> str:
    """Canonical form for note timestamps used in place of a note id.

    Webhooks send ``2016-01-19 09:44:55 UTC`` while the API answers
    ``2016-01-19T09:44:55.600Z``; both collapse to ``20160119T094455``.
    Second resolution only, so same-second comments on one project collide.
    """
    value = raw.strip()
    if not value:
        return value
    candidate = value.replace(" UTC", "+00:00").replace("Z", "+00:00")
    if " " in candidate and "T" not in candidate:
        candidate = candidate.replace(" ", "T", 1)
    candidate = candidate.replace(" ", "")
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y%m%dT%H%M%S")


async def find_message(db: AsyncSession, chat_id: int, event_key: str) -> NotificationRecord | None:
    result = await db.execute(
        select(NotificationRecord).where(
            NotificationRecord.chat_id == chat_id,
            NotificationRecord.event_key == event_key,
        )
    )
    record = result.scalar_one_or_none()
    if record is None or record.expires_at <= utcnow():
        return None
    return record


async def remember_message(
    db: AsyncSession,
    chat_id: int,
    event_key: str,
    message_id: int,
    text: str = "",
) -> bool:
    """Record ``event_key`` for ``message_id``. Returns False if the key is taken."""
    result = await db.execute(
        select(NotificationRecord).where(
            NotificationRecord.chat_id == chat_id,
            NotificationRecord.event_key == event_key,
        )
    )
    record = result.scalar_one_or_none()
    expires_at = utcnow() + timedelta(days=settings.correlation_ttl_days)
    if record is not None:
        if record.expires_at > utcnow():
            logger.debug("Event key %s already recorded in chat %d", event_key, chat_id)
            return False
        record.message_id = message_id
        record.text = text
        record.expires_at = expires_at
    else:
        db.add(NotificationRecord(
            chat_id=chat_id,
            event_key=event_key,
            message_id=message_id,
            text=text,
            expires_at=expires_at,
        ))
    await db.flush()
    return True

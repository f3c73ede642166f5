"""Scoped key-value cache with TTL.

Every call names its scope explicitly (``service``, ``user:<id>``,
``chat:<id>``); there is no shared in-process state.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.database import utcnow
from gitlab_notifier.models.cache_entry import CacheEntry

SERVICE_SCOPE = "service"


def user_scope(user_id: int) -> str:
    return f"user:{user_id}"


def chat_scope(chat_id: int) -> str:
    return f"chat:{chat_id}"


async def cache_get(db: AsyncSession, scope: str, key: str) -> Any | None:
    result = await db.execute(
        select(CacheEntry).where(CacheEntry.scope == scope, CacheEntry.key == key)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return None
    if entry.expires_at is not None and entry.expires_at <= utcnow():
        return None
    return json.loads(entry.value_json)


async def cache_set(
    db: AsyncSession,
    scope: str,
    key: str,
    value: Any,
    ttl: timedelta | None = None,
) -> None:
    """Insert or overwrite one entry (last writer wins)."""
    result = await db.execute(
        select(CacheEntry).where(CacheEntry.scope == scope, CacheEntry.key == key)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = CacheEntry(scope=scope, key=key)
        db.add(entry)
    entry.value_json = json.dumps(value)
    entry.expires_at = utcnow() + ttl if ttl is not None else None
    await db.flush()


async def cache_pop(db: AsyncSession, scope: str, key: str) -> Any | None:
    """Read and delete one entry."""
    result = await db.execute(
        select(CacheEntry).where(CacheEntry.scope == scope, CacheEntry.key == key)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return None
    expired = entry.expires_at is not None and entry.expires_at <= utcnow()
    value = None if expired else json.loads(entry.value_json)
    await db.delete(entry)
    await db.flush()
    return value


def _nick_key(identity: str) -> str:
    return f"nick_map_{identity}"


async def lookup_nickname(db: AsyncSession, name: str, email: str = "") -> str | None:
    """Telegram username registered for a GitLab username or email, if any."""
    if name:
        nickname = await cache_get(db, SERVICE_SCOPE, _nick_key(name))
        if nickname:
            return nickname
    if email:
        nickname = await cache_get(db, SERVICE_SCOPE, _nick_key(email))
        if nickname:
            return nickname
    return None


async def remember_nickname(db: AsyncSession, identities: list[str], telegram_username: str) -> None:
    ttl = timedelta(days=settings.nick_map_ttl_days)
    for identity in identities:
        if identity:
            await cache_set(db, SERVICE_SCOPE, _nick_key(identity), telegram_username, ttl)

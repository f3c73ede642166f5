"""Tests for the correlation store, scoped cache and signed hook tokens."""

from datetime import timedelta

from sqlalchemy import update

from gitlab_notifier.database import async_session, utcnow
from gitlab_notifier.models.notification_record import NotificationRecord
from gitlab_notifier.services.cache import (
    SERVICE_SCOPE,
    cache_get,
    cache_pop,
    cache_set,
    chat_scope,
    lookup_nickname,
    remember_nickname,
    user_scope,
)
from gitlab_notifier.services.correlation import find_message, normalize_timestamp, note_key, remember_message
from gitlab_notifier.services.hook_tokens import chat_id_from_token, hook_token, hook_url


async def test_first_message_for_key_wins():
    async with async_session() as db:
        assert await remember_message(db, 1, "issue_5", 100, "opened") is True
        assert await remember_message(db, 1, "issue_5", 200, "again") is False
        # Keys are per chat
        assert await remember_message(db, 2, "issue_5", 300) is True
        await db.commit()

    async with async_session() as db:
        record = await find_message(db, 1, "issue_5")
    assert record.message_id == 100
    assert record.text == "opened"


async def test_expired_key_is_a_miss_and_can_be_reused():
    async with async_session() as db:
        await remember_message(db, 1, "mr_9", 100)
        await db.execute(update(NotificationRecord).values(expires_at=utcnow() - timedelta(seconds=1)))
        await db.commit()

    async with async_session() as db:
        assert await find_message(db, 1, "mr_9") is None
        assert await remember_message(db, 1, "mr_9", 150) is True
        await db.commit()

    async with async_session() as db:
        assert (await find_message(db, 1, "mr_9")).message_id == 150


def test_note_timestamps_normalize_across_formats():
    assert normalize_timestamp("2016-01-19 09:44:55 UTC") == "20160119T094455"
    assert normalize_timestamp("2016-01-19T09:44:55.600Z") == "20160119T094455"
    assert normalize_timestamp("2016-01-19T11:44:55+02:00") == "20160119T094455"
    assert normalize_timestamp("yesterday") == "yesterday"
    assert note_key(15, normalize_timestamp("2016-01-19 09:44:55 UTC")) == "note_15_20160119T094455"


async def test_cache_scopes_are_isolated():
    async with async_session() as db:
        await cache_set(db, user_scope(1), "me", {"username": "a"})
        await cache_set(db, user_scope(2), "me", {"username": "b"})
        await cache_set(db, chat_scope(1), "me", "chat")

        assert await cache_get(db, user_scope(1), "me") == {"username": "a"}
        assert await cache_get(db, user_scope(2), "me") == {"username": "b"}
        assert await cache_get(db, chat_scope(1), "me") == "chat"
        assert await cache_get(db, SERVICE_SCOPE, "me") is None


async def test_cache_ttl_and_pop():
    async with async_session() as db:
        await cache_set(db, SERVICE_SCOPE, "gone", 1, timedelta(seconds=-1))
        await cache_set(db, SERVICE_SCOPE, "once", 2, timedelta(hours=1))

        assert await cache_get(db, SERVICE_SCOPE, "gone") is None
        assert await cache_pop(db, SERVICE_SCOPE, "once") == 2
        assert await cache_pop(db, SERVICE_SCOPE, "once") is None


async def test_nickname_lookup_prefers_username_then_email():
    async with async_session() as db:
        assert await lookup_nickname(db, "jsmith", "john@example.com") is None

        await remember_nickname(db, ["", "john@example.com"], "johnny")
        assert await lookup_nickname(db, "jsmith", "john@example.com") == "johnny"

        await remember_nickname(db, ["jsmith"], "john_tg")
        assert await lookup_nickname(db, "jsmith", "john@example.com") == "john_tg"


def test_hook_tokens_are_signed():
    token = hook_token(-1001)

    assert chat_id_from_token(token) == -1001
    assert chat_id_from_token(token.replace("-1001", "-1002")) is None
    assert chat_id_from_token("garbage") is None
    assert hook_url(-1001) == f"https://notifier.test/api/v1/webhooks/gitlab/{token}"

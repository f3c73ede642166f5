"""Tests for GitLab webhook classification, correlation and rendering."""

from unittest.mock import AsyncMock, patch

from gitlab_notifier.clients.telegram_client import TelegramError
from gitlab_notifier.database import async_session
from gitlab_notifier.handlers.webhook_handler import branch_name, handle_gitlab_webhook
from gitlab_notifier.services.cache import remember_nickname
from gitlab_notifier.services.chat_settings import Category, ChatSettings, Toggle, save_chat_settings
from gitlab_notifier.services.correlation import commit_key, find_message, issue_key, remember_message
from gitlab_notifier.services.intents import IntentHandler, current_binding

CHAT_ID = -1001
HOMEPAGE = "https://gitlab.example.com/mike/diaspora"
BASE_URL = "https://gitlab.example.com"
SHA_1 = "b6568db1bc1dcd7f8b4d5a946b0b91f9dacd7327"
SHA_2 = "da1560886d4f094c3e6c9ef40349f7d38b5d27d7"
SHA_3 = "c5feabde2d8cd023215af4d2ceeb7a64839fc428"


def _project() -> dict:
    return {
        "id": 15,
        "name": "Diaspora",
        "path_with_namespace": "mike/diaspora",
        "web_url": HOMEPAGE,
    }


def _repository() -> dict:
    return {"name": "Diaspora", "url": "git@gitlab.example.com:mike/diaspora.git", "homepage": HOMEPAGE}


def _commit(sha: str, message: str, name: str = "John Smith", email: str = "john@example.com") -> dict:
    return {
        "id": sha,
        "message": message,
        "timestamp": "2011-12-12T14:27:31+02:00",
        "url": f"{HOMEPAGE}/commit/{sha}",
        "author": {"name": name, "email": email},
        "added": ["CHANGELOG"],
        "modified": ["app/controller/application.rb"],
        "removed": [],
    }


def _push(commits: list[dict], **overrides) -> dict:
    payload = {
        "object_kind": "push",
        "before": "95790bf891e76fee5e1747ab589903a6a1f80f22",
        "after": commits[-1]["id"] if commits else SHA_1,
        "ref": "refs/heads/master",
        "user_id": 4,
        "user_name": "John Smith",
        "user_username": "jsmith",
        "user_email": "john@example.com",
        "project_id": 15,
        "project": _project(),
        "repository": _repository(),
        "commits": commits,
    }
    payload.update(overrides)
    return payload


def _build(sha: str, status: str, allow_failure: bool = False) -> dict:
    return {
        "object_kind": "build",
        "ref": "master",
        "sha": sha,
        "build_id": 379,
        "build_name": "rspec",
        "build_stage": "test",
        "build_status": status,
        "build_duration": 12.5,
        "build_allow_failure": allow_failure,
        "project_id": 15,
        "user": {"name": "John Smith", "username": "jsmith", "email": "john@example.com"},
        "commit": {"id": 2366, "sha": sha, "message": "test", "author_name": "John Smith"},
        "repository": _repository(),
    }


def _issue(action: str, state: str, **attrs) -> dict:
    object_attributes = {
        "id": 301,
        "iid": 23,
        "title": "New API: create/update/delete file",
        "description": "Create new API for manipulations with repository",
        "project_id": 15,
        "state": state,
        "action": action,
        "url": f"{HOMEPAGE}/issues/23",
    }
    object_attributes.update(attrs)
    return {
        "object_kind": "issue",
        "user": {"name": "Administrator", "username": "root", "email": "admin@example.com"},
        "project": _project(),
        "repository": _repository(),
        "object_attributes": object_attributes,
    }


def _merge_request(action: str, state: str) -> dict:
    return {
        "object_kind": "merge_request",
        "user": {"name": "Administrator", "username": "root", "email": "admin@example.com"},
        "project": _project(),
        "repository": _repository(),
        "object_attributes": {
            "id": 99,
            "iid": 1,
            "target_project_id": 15,
            "title": "MS-Viewport",
            "description": "",
            "state": state,
            "action": action,
            "url": f"{HOMEPAGE}/merge_requests/1",
        },
    }


def _issue_note(note_id: int, note: str = "Hello world") -> dict:
    return {
        "object_kind": "note",
        "user": {"name": "Administrator", "username": "root"},
        "project_id": 15,
        "project": _project(),
        "repository": _repository(),
        "object_attributes": {
            "id": note_id,
            "note": note,
            "noteable_type": "Issue",
            "project_id": 15,
            "created_at": "2015-05-17 17:06:40 UTC",
            "url": f"{HOMEPAGE}/issues/23#note_{note_id}",
        },
        "issue": {"id": 301, "iid": 23, "title": "New API: create/update/delete file", "state": "opened"},
    }


def _commit_note(note_id: int, created_at: str, note: str = "This is a commit comment") -> dict:
    return {
        "object_kind": "note",
        "user": {"name": "Administrator", "username": "root"},
        "project_id": 15,
        "project": _project(),
        "repository": _repository(),
        "object_attributes": {
            "id": note_id,
            "note": note,
            "noteable_type": "Commit",
            "project_id": 15,
            "commit_id": SHA_1,
            "created_at": created_at,
            "url": f"{HOMEPAGE}/commit/{SHA_1}#note_{note_id}",
        },
        "commit": {"id": SHA_1, "message": "Added changelog", "url": f"{HOMEPAGE}/commit/{SHA_1}"},
    }


async def _handle(payload) -> object:
    async with async_session() as db:
        return await handle_gitlab_webhook(db, CHAT_ID, payload)


async def _save_settings(chat_settings: ChatSettings) -> None:
    async with async_session() as db:
        await save_chat_settings(db, CHAT_ID, chat_settings)
        await db.commit()


def _sent_text(telegram, index: int = -1) -> str:
    return telegram.send_message.call_args_list[index].args[1]


async def test_single_commit_push_by_pusher_has_no_author_prefix(telegram):
    result = await _handle(_push([_commit(SHA_1, "Update Catalan translation")]))

    assert result.status == "processed"
    assert result.message_id == 100
    lines = _sent_text(telegram).splitlines()
    assert lines[0].startswith("<b>jsmith</b> ")
    assert "mike/diaspora/master" in lines[0]
    assert lines[1] == f'<a href="{HOMEPAGE}/commit/{SHA_1}">Update Catalan translation</a>'

    async with async_session() as db:
        record = await find_message(db, CHAT_ID, commit_key(SHA_1))
        intent = await current_binding(db, CHAT_ID)
    assert record.message_id == 100
    assert intent.handler == IntentHandler.COMMIT_REPLIED
    assert intent.args == [BASE_URL, 15, SHA_1]


async def test_multi_commit_push_mentions_only_other_authors(telegram):
    commits = [
        _commit(SHA_1, "Fix typo", name="Jane Roe", email="jane@example.com"),
        _commit(SHA_2, "Add tests"),
        _commit(SHA_3, "Refactor", name="Jane Roe", email="jane@example.com"),
    ]
    async with async_session() as db:
        await remember_nickname(db, ["jane@example.com"], "jane_tg")
        await db.commit()

    result = await _handle(_push(commits))

    assert result.status == "processed"
    text = _sent_text(telegram)
    assert text.count("@jane_tg: ") == 2
    assert "Add tests" in text.splitlines()[2]
    assert not text.splitlines()[2].startswith("@")

    async with async_session() as db:
        intent = await current_binding(db, CHAT_ID)
        last = await find_message(db, CHAT_ID, commit_key(SHA_3))
    assert intent.handler == IntentHandler.COMMITS_REPLIED
    assert [c["id"] for c in intent.args[2]] == [SHA_1, SHA_2, SHA_3]
    assert last is not None


async def test_push_without_commits_reports_branch_creation(telegram):
    result = await _handle(_push([], ref="refs/heads/feature/login", after=SHA_2))

    assert result.status == "processed"
    assert "created branch" in _sent_text(telegram)
    assert "Diaspora/feature/login" in _sent_text(telegram)


async def test_tag_push_names_the_tag(telegram):
    payload = _push([], ref="refs/tags/v1.0.0")
    payload["object_kind"] = "tag_push"

    result = await _handle(payload)

    assert result.status == "processed"
    assert "pushed new" in _sent_text(telegram)
    assert "tag v1.0.0" in _sent_text(telegram)


async def test_build_edits_push_notification(telegram):
    await _handle(_push([_commit(SHA_1, "Update Catalan translation")]))
    push_text = _sent_text(telegram)

    result = await _handle(_build(SHA_1, "running"))
    assert result.status == "processed"
    assert result.message_id == 100

    result = await _handle(_build(SHA_1, "success"))
    assert result.message_id == 100

    assert telegram.send_message.call_count == 1
    assert telegram.edit_message_text.call_count == 2
    chat_id, message_id, text = telegram.edit_message_text.call_args.args
    assert (chat_id, message_id) == (CHAT_ID, 100)
    # Each status replaces the previous one under the unchanged push text
    assert text == push_text + f'\n✅ CI: <a href="{HOMEPAGE}/builds/379">Test</a> #rspec succeeded after 12.5 sec'


async def test_standalone_build_success_muted_by_default(telegram):
    result = await _handle(_build(SHA_2, "success"))

    assert result.status == "suppressed"
    telegram.send_message.assert_not_called()


async def test_allowed_failure_sent_even_when_fail_muted(telegram):
    chat_settings = ChatSettings()
    chat_settings.flip(Category.CI, Toggle.FAIL)
    await _save_settings(chat_settings)

    result = await _handle(_build(SHA_2, "failed", allow_failure=True))

    assert result.status == "processed"
    text = _sent_text(telegram)
    assert text.startswith("❕ CI:")
    assert text.endswith("(allowed to fail)")


async def test_standalone_build_failure_respects_setting(telegram):
    chat_settings = ChatSettings()
    chat_settings.flip(Category.CI, Toggle.FAIL)
    await _save_settings(chat_settings)

    result = await _handle(_build(SHA_2, "failed"))

    assert result.status == "suppressed"
    telegram.send_message.assert_not_called()


async def test_unreported_build_status_is_ignored(telegram):
    result = await _handle(_build(SHA_2, "created"))

    assert result.status == "ignored"
    telegram.send_message.assert_not_called()


async def test_issue_followup_threads_under_opening(telegram):
    opened = await _handle(_issue("open", "opened"))
    closed = await _handle(_issue("close", "closed"))

    assert opened.message_id == 100
    assert closed.status == "processed"
    call = telegram.send_message.call_args
    assert call.kwargs["reply_to"] == 100
    assert call.args[1] == "<b>closed</b> by <b>root</b>"


async def test_issue_followup_without_opening_links_preview(telegram):
    result = await _handle(_issue("reopen", "opened"))

    assert result.status == "processed"
    call = telegram.send_message.call_args
    assert call.kwargs["reply_to"] is None
    assert call.args[1].startswith('<a href="https://notifier.test/wp/')
    assert call.args[1].endswith(">reopened</a> by <b>root</b>")


async def test_issue_action_muted_by_settings(telegram):
    chat_settings = ChatSettings()
    chat_settings.flip(Category.ISSUES, Toggle.CLOSE)
    await _save_settings(chat_settings)

    result = await _handle(_issue("close", "closed"))

    assert result.status == "suppressed"
    telegram.send_message.assert_not_called()


async def test_merge_request_merge_threads_under_opening(telegram):
    await _handle(_merge_request("open", "opened"))
    result = await _handle(_merge_request("merge", "merged"))

    assert result.status == "processed"
    call = telegram.send_message.call_args
    assert call.kwargs["reply_to"] == 100
    assert "merged by <b>root</b>" in call.args[1]

    async with async_session() as db:
        intent = await current_binding(db, CHAT_ID)
    assert intent.handler == IntentHandler.MR_REPLIED
    assert intent.args == [BASE_URL, 15, 1]


async def test_redelivered_note_is_deduplicated(telegram):
    first = await _handle(_issue_note(1241))
    second = await _handle(_issue_note(1241))

    assert first.status == "processed"
    assert second.status == "duplicate"
    assert telegram.send_message.call_count == 1


async def test_standalone_note_becomes_thread_root(telegram):
    note = await _handle(_issue_note(1241))
    await _handle(_issue("close", "closed"))

    assert note.message_id == 100
    assert telegram.send_message.call_args.kwargs["reply_to"] == 100
    async with async_session() as db:
        assert (await find_message(db, CHAT_ID, issue_key(301))).message_id == 100


async def test_commit_notes_keyed_by_creation_time(telegram):
    await _handle(_push([_commit(SHA_1, "Added changelog")]))

    first = await _handle(_commit_note(1243, "2015-05-17 18:08:09 UTC"))
    second = await _handle(_commit_note(1244, "2015-05-17 18:09:30 UTC"))
    same_second = await _handle(_commit_note(1245, "2015-05-17 18:09:30 UTC"))

    assert first.status == "processed"
    assert second.status == "processed"
    assert same_second.status == "duplicate"
    # Notes reply under the push notification
    assert telegram.send_message.call_args.kwargs["reply_to"] == 100


async def test_build_waits_for_racing_push(telegram):
    async def push_lands(delay):
        async with async_session() as db:
            await remember_message(db, CHAT_ID, commit_key(SHA_2), 555, "pushed")
            await db.commit()

    with patch("gitlab_notifier.handlers.webhook_handler.asyncio.sleep", new=AsyncMock(side_effect=push_lands)) as sleep:
        result = await _handle(_build(SHA_2, "running"))

    sleep.assert_awaited_once()
    assert result.status == "processed"
    assert result.message_id == 555
    telegram.send_message.assert_not_called()
    chat_id, message_id, text = telegram.edit_message_text.call_args.args
    assert (chat_id, message_id) == (CHAT_ID, 555)
    assert text.startswith("pushed\n")


async def test_build_without_push_gives_up_after_bounded_wait(telegram):
    chat_settings = ChatSettings()
    chat_settings.flip(Category.CI, Toggle.SUCCESS)
    await _save_settings(chat_settings)

    with patch("gitlab_notifier.handlers.webhook_handler.asyncio.sleep", new=AsyncMock()) as sleep:
        result = await _handle(_build(SHA_2, "success"))

    assert sleep.await_count == 2
    assert result.status == "processed"
    telegram.edit_message_text.assert_not_called()
    assert _sent_text(telegram).startswith("✅ CI:")


async def test_null_fields_from_gitlab_are_accepted(telegram):
    opened = _issue("open", "opened", description=None, milestone_id=None)
    opened["user"]["email"] = None
    note = _issue_note(1241)
    note["object_attributes"].update(commit_id=None, noteable_id=None, updated_at=None)
    note["commit"] = None
    note["snippet"] = None

    opened_result = await _handle(opened)
    note_result = await _handle(note)

    assert opened_result.status == "processed"
    assert note_result.status == "processed"
    assert telegram.send_message.call_args.kwargs["reply_to"] == opened_result.message_id


async def test_missing_ref_is_malformed(telegram):
    result = await _handle({"object_kind": "push", "repository": _repository()})

    assert result.status == "malformed"
    telegram.send_message.assert_not_called()


async def test_non_object_payload_is_malformed(telegram):
    result = await _handle(["not", "a", "webhook"])

    assert result.status == "malformed"


async def test_unknown_kind_is_ignored(telegram):
    result = await _handle({"object_kind": "wiki_page", "repository": _repository()})

    assert result.status == "ignored"


async def test_delivery_failure_reports_failed(telegram):
    telegram.send_message.side_effect = TelegramError("Telegram API error: chat not found")

    result = await _handle(_issue("open", "opened"))

    assert result.status == "failed"
    assert "chat not found" in result.errors[0]
    async with async_session() as db:
        assert await find_message(db, CHAT_ID, issue_key(301)) is None


def test_branch_name():
    assert branch_name("refs/heads/feature/login") == "feature/login"
    assert branch_name("master") == "master"

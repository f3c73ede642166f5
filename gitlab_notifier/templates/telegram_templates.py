"""Telegram message and keyboard builders for GitLab events."""

from __future__ import annotations

from urllib.parse import quote

from gitlab_notifier.schemas.gitlab import GitLabWebhook
from gitlab_notifier.services.chat_settings import CATEGORY_TOGGLES, Category, ChatSettings
from gitlab_notifier.templates.markup import bold, esc, fixed, trim, url

SETTINGS_CALLBACK_PREFIX = "settings"

_CATEGORY_LABELS = {
    Category.CI: "CI",
    Category.MERGE_REQUESTS: "Merge requests",
    Category.ISSUES: "Issues",
}


def tree_url(homepage: str, ref: str) -> str:
    return f"{homepage}/tree/{quote(ref, safe='')}"


def compare_url(homepage: str, before: str, after: str) -> str:
    return f"{homepage}/compare/{before}...{after}"


def files_summary(modified: int, added: int, removed: int) -> str:
    """``3 files modified 1 added``: the first count names the noun."""
    summary = ""
    for count, verb in ((modified, "modified"), (added, "added"), (removed, "removed")):
        if count <= 0:
            continue
        summary += f" {count} {verb}" if summary else f"{count} files {verb}"
    return summary


def project_label(event: GitLabWebhook) -> str:
    return f"{event.user.username} / {event.repository.name}"


def build_push_message(
    event: GitLabWebhook,
    branch: str,
    pusher: str,
    author_prefixes: list[str | None],
    pushed_link: str,
) -> str:
    """Aggregated push notification; ``author_prefixes[i]`` is set for commits by someone other than the pusher."""
    lines = []
    for commit, prefix in zip(event.commits, author_prefixes):
        line = f"{prefix}: " if prefix else ""
        lines.append(line + url(commit.message.rstrip("\n"), commit.url))
    destination = event.project.path_with_namespace or event.repository.name
    header = "{} {} to {}".format(
        pusher,
        url("pushed", pushed_link),
        url(f"{destination}/{branch}", tree_url(event.repository.homepage, branch)),
    )
    return header + "\n" + "\n".join(lines)


def build_branch_message(event: GitLabWebhook, branch: str, pusher: str, created: bool) -> str:
    name = f"{event.repository.name}/{branch}"
    if created:
        return f"{pusher} created branch {url(name, tree_url(event.repository.homepage, branch))}"
    return f"{pusher} deleted branch {bold(name)}"


def build_tag_push_message(event: GitLabWebhook, pusher: str, item_type: str, name: str) -> str:
    destination = event.project.path_with_namespace or f"{event.user_name} / {event.repository.name}"
    return "{} pushed new {} at {}".format(
        pusher,
        url(f"{item_type} {name}", tree_url(event.repository.homepage, name)),
        url(destination, event.repository.homepage),
    )


def build_issue_opened(event: GitLabWebhook, actor: str) -> str:
    attrs = event.object_attributes
    text = "{} {} {} at {}:\n{}".format(
        actor,
        esc(attrs.state),
        url("issue", attrs.url),
        url(project_label(event), event.repository.homepage),
        bold(attrs.title),
    )
    if attrs.description:
        text += "\n" + esc(attrs.description)
    return text


def build_issue_followup(action: str, actor: str, preview_link: str | None = None) -> str:
    """``closed by X``; standalone variants link the action word to a preview."""
    if preview_link is None:
        return f"{bold(action)} by {actor}"
    return f"{url(action, preview_link)} by {actor}"


def build_mr_opened(event: GitLabWebhook, actor: str) -> str:
    attrs = event.object_attributes
    text = "{} {} {} at {}:\n{}".format(
        actor,
        esc(attrs.state),
        url("merge request", attrs.url),
        url(project_label(event), event.repository.homepage),
        bold(attrs.title),
    )
    if attrs.description:
        text += "\n" + esc(attrs.description)
    return text


def build_mr_followup(event: GitLabWebhook, actor: str, preview_link: str | None = None) -> str:
    attrs = event.object_attributes
    if preview_link is None:
        return f"{url('merge request', attrs.url)} {esc(attrs.state)} by {actor}"
    return f"{url('Merge request', preview_link)} {esc(attrs.state)} by {actor}"


def build_note_message(event: GitLabWebhook, actor: str, note_type: str, preview_link: str | None = None) -> str:
    note = esc(event.object_attributes.note)
    if preview_link is None:
        return f"{actor}: {note}"
    return f"{actor} commented on {url(note_type, preview_link)}: {note}"


def build_ci_status_line(
    event: GitLabWebhook,
    build_link: str,
    commit_link: str = "",
    canceller: str = "",
) -> str | None:
    """One CI status line, or None for statuses we do not report."""
    duration = event.build_duration or 0.0
    subject = f"{commit_link} {build_link}" if commit_link else build_link
    status = event.build_status
    if status == "pending":
        return f"⏳ CI: {subject} is pending"
    if status == "running":
        return f"⚙ CI: {subject} is running"
    if status == "success":
        return f"✅ CI: {subject} succeeded after {duration:.1f} sec"
    if status == "failed":
        if event.build_allow_failure:
            return f"❕ CI: {subject} failed after {duration:.1f} sec (allowed to fail)"
        return f"‼️ CI: {subject} failed after {duration:.1f} sec"
    if status == "canceled":
        return f"🔚 CI: {subject} canceled by {canceller} after {duration:.1f} sec"
    return None


def build_start_message(hook_url: str) -> str:
    return (
        f"Hi here! To setup notifications {bold('for this chat')} your GitLab project(repo), "
        f"open Settings -> Web Hooks and add this URL:\n{fixed(hook_url)}"
    )


def commit_choice_label(commit_id: str, message: str, sha_length: int = 8) -> str:
    return f"{commit_id[:sha_length]} {trim(message.strip().splitlines()[0] if message.strip() else '', 40)}".strip()


def reply_keyboard(labels: list[str]) -> dict:
    return {
        "keyboard": [[{"text": label}] for label in labels],
        "one_time_keyboard": True,
        "resize_keyboard": True,
        "selective": True,
    }


def remove_keyboard() -> dict:
    return {"remove_keyboard": True}


def _inline_button(data: str, text: str) -> list[dict]:
    return [{"text": text, "callback_data": f"{SETTINGS_CALLBACK_PREFIX}:{data}"}]


def settings_categories_keyboard() -> dict:
    return {
        "inline_keyboard": [
            _inline_button(category.value, label) for category, label in _CATEGORY_LABELS.items()
        ]
    }


def settings_toggles_keyboard(category: Category, chat_settings: ChatSettings) -> dict:
    rows = [_inline_button("back", "← Back")]
    for toggle in CATEGORY_TOGGLES[category]:
        mark = "☑️ " if chat_settings.enabled(category, toggle) else ""
        rows.append(_inline_button(f"{category.value}:{toggle.value}", mark + toggle.value.capitalize()))
    return {"inline_keyboard": rows}

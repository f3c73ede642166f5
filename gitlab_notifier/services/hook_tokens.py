"""Signed per-chat webhook tokens."""

from __future__ import annotations

import hashlib
import hmac

from gitlab_notifier.config import settings


def _signature(chat_id: int) -> str:
    return hmac.new(
        settings.secret_key.encode(), str(chat_id).encode(), hashlib.sha256
    ).hexdigest()[:24]


def hook_token(chat_id: int) -> str:
    return f"{chat_id}.{_signature(chat_id)}"


def chat_id_from_token(token: str) -> int | None:
    """Chat id encoded in ``token``, or None if the token is forged or garbled."""
    raw_id, _, signature = token.partition(".")
    try:
        chat_id = int(raw_id)
    except ValueError:
        return None
    if not hmac.compare_digest(signature, _signature(chat_id)):
        return None
    return chat_id


def hook_url(chat_id: int) -> str:
    return f"{settings.public_url}{settings.api_prefix}/webhooks/gitlab/{hook_token(chat_id)}"

"""Hosted link previews for notifications whose original message is unknown."""

from __future__ import annotations

import hashlib

from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings
from gitlab_notifier.models.web_preview import WebPreview


def _token(title: str, headline: str, description: str, url: str) -> str:
    digest = hashlib.sha1("\x00".join((title, headline, description, url)).encode())
    return digest.hexdigest()[:20]


async def web_preview(
    db: AsyncSession,
    title: str,
    headline: str,
    description: str,
    url: str,
) -> str:
    """URL of a page whose link preview shows the given summary.

    Identical summaries share one page. Without a public URL the target
    itself is returned.
    """
    if not settings.public_url:
        return url
    token = _token(title, headline, description or "", url)
    if await db.get(WebPreview, token) is None:
        db.add(WebPreview(
            token=token,
            title=title,
            headline=headline,
            description=description or "",
            url=url,
        ))
        await db.flush()
    return f"{settings.public_url}/wp/{token}"


async def get_preview(db: AsyncSession, token: str) -> WebPreview | None:
    return await db.get(WebPreview, token)

"""Telegram HTML formatting primitives."""

from __future__ import annotations

from html import escape


def esc(text: str | None) -> str:
    return escape(text or "", quote=False)


def bold(text: str | None) -> str:
    return f"<b>{esc(text)}</b>"


def url(text: str | None, href: str | None) -> str:
    if not href:
        return esc(text)
    return f'<a href="{escape(href, quote=True)}">{esc(text)}</a>'


def fixed(text: str | None) -> str:
    return f"<code>{esc(text)}</code>"


def trim(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "…"
    return text

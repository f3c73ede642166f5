"""Telegram Bot API client (bot token, HTML parse mode)."""

from __future__ import annotations

import logging

import httpx

from gitlab_notifier.config import settings

logger = logging.getLogger(__name__)


class TelegramError(RuntimeError):
    """Telegram answered ``ok: false`` or the request failed."""


class TelegramClient:
    """Send and edit messages via the Telegram Bot API."""

    def __init__(self) -> None:
        if not settings.bot_token:
            raise RuntimeError("Telegram not configured — set GITLAB_BOT_TOKEN")
        self._base_url = f"{settings.telegram_api_url}/bot{settings.bot_token}"
        self._client = httpx.AsyncClient(timeout=10.0)

    async def _call(self, method: str, payload: dict) -> dict:
        """Call one Bot API method and return its ``result``."""
        try:
            resp = await self._client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.HTTPError as exc:
            raise TelegramError(f"Telegram {method} failed: {exc}") from exc
        data = resp.json()
        if not data.get("ok"):
            description = data.get("description", "unknown_error")
            logger.error("Telegram API error [%s]: %s", method, description)
            raise TelegramError(f"Telegram API error: {description}")
        return data.get("result", {})

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        html: bool = True,
        reply_to: int | None = None,
        reply_markup: dict | None = None,
        disable_preview: bool = False,
    ) -> int:
        """Send a message and return its message_id."""
        payload: dict = {"chat_id": chat_id, "text": text}
        if html:
            payload["parse_mode"] = "HTML"
        if reply_to:
            payload["reply_to_message_id"] = reply_to
            payload["allow_sending_without_reply"] = True
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if disable_preview:
            payload["disable_web_page_preview"] = True

        result = await self._call("sendMessage", payload)
        message_id = result["message_id"]
        logger.info("Telegram message %d sent to %d", message_id, chat_id)
        return message_id

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        html: bool = True,
        disable_preview: bool = True,
    ) -> None:
        payload: dict = {"chat_id": chat_id, "message_id": message_id, "text": text}
        if html:
            payload["parse_mode"] = "HTML"
        if disable_preview:
            payload["disable_web_page_preview"] = True
        await self._call("editMessageText", payload)
        logger.info("Telegram message %d edited in %d", message_id, chat_id)

    async def edit_message_reply_markup(self, chat_id: int, message_id: int, reply_markup: dict) -> None:
        await self._call("editMessageReplyMarkup", {
            "chat_id": chat_id,
            "message_id": message_id,
            "reply_markup": reply_markup,
        })

    async def answer_callback_query(self, callback_query_id: str, text: str = "") -> None:
        payload: dict = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)

    async def close(self) -> None:
        await self._client.aclose()

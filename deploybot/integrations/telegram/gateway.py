"""Telegram Bot API transport for outbound chat actions."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Tuple

import httpx

from deploybot.core.config import get_settings
from deploybot.core.logger import get_logger
from deploybot.integrations.telegram.formatting import escape_markdown, unescape_markdown


logger = get_logger("deploybot.telegram")

TELEGRAM_MESSAGE_LIMIT = 4096
TRUNCATED_SUFFIX = "...(truncated)"
MARKDOWN_TRUNCATED_SUFFIX = "\n" + escape_markdown(TRUNCATED_SUFFIX)


class MessagingGateway(Protocol):
    def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        markdown: bool = False,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]: ...

    def edit_message_markup(self, chat_id: str, message_id: str, reply_markup: Dict[str, Any]) -> bool: ...

    def delete_message(self, chat_id: str, message_id: str) -> bool: ...

    def answer_callback(self, callback_id: str, text: Optional[str] = None) -> bool: ...


def _truncate_message(text: str, *, markdown: bool = False) -> Tuple[str, bool]:
    """Fit text into one Bot API message; returns the text and whether it is still MarkdownV2.

    MarkdownV2 is cut at a line break, since entities and escapes never span
    lines in our messages. A single over-long line falls back to plain text.
    """

    if len(text) <= TELEGRAM_MESSAGE_LIMIT:
        return text, markdown
    if markdown:
        cut = text.rfind("\n", 0, TELEGRAM_MESSAGE_LIMIT - len(MARKDOWN_TRUNCATED_SUFFIX) + 1)
        if cut > 0:
            return text[:cut] + MARKDOWN_TRUNCATED_SUFFIX, True
        return _truncate_message(unescape_markdown(text))
    return text[: TELEGRAM_MESSAGE_LIMIT - len(TRUNCATED_SUFFIX)] + TRUNCATED_SUFFIX, False


class TelegramGateway:
    """Best-effort Bot API calls; transport failures are logged, never raised."""

    def __init__(
        self,
        *,
        bot_token: str,
        api_base_url: str = "https://api.telegram.org",
        timeout_seconds: int = 10,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bot_token = bot_token.strip()
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _call(self, method: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.bot_token:
            logger.warning("telegram_bot_token_missing", method=method)
            return None

        url = f"{self.api_base_url}/bot{self.bot_token}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("telegram_transport_failed", method=method, error=str(exc))
            return None

        if response.status_code >= 400:
            logger.warning(
                "telegram_call_failed",
                method=method,
                status_code=response.status_code,
                response_text=response.text[:255],
            )
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        markdown: bool = False,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        normalized_chat_id = (chat_id or "").strip()
        normalized_text = (text or "").strip()
        if not normalized_chat_id or not normalized_text:
            return None

        fitted_text, markdown = _truncate_message(normalized_text, markdown=markdown)
        payload: Dict[str, Any] = {
            "chat_id": normalized_chat_id,
            "text": fitted_text,
            "disable_web_page_preview": True,
        }
        if markdown:
            payload["parse_mode"] = "MarkdownV2"
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup

        body = self._call("sendMessage", payload)
        result = body.get("result") if body else None
        if isinstance(result, dict) and result.get("message_id") is not None:
            return str(result["message_id"])
        return None

    def edit_message_markup(self, chat_id: str, message_id: str, reply_markup: Dict[str, Any]) -> bool:
        body = self._call(
            "editMessageReplyMarkup",
            {"chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup},
        )
        return body is not None

    def delete_message(self, chat_id: str, message_id: str) -> bool:
        body = self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})
        return body is not None

    def answer_callback(self, callback_id: str, text: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            payload["text"] = text
        return self._call("answerCallbackQuery", payload) is not None


def get_telegram_gateway() -> TelegramGateway:
    settings = get_settings()
    return TelegramGateway(
        bot_token=settings.telegram_bot_token,
        api_base_url=settings.telegram_api_base_url,
        timeout_seconds=settings.telegram_api_timeout_seconds,
    )

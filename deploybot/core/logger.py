"""structlog setup for the bot.

Every record carries the conversation it belongs to (``chat_id``, ``user_id``,
``update_id``) so one deployment can be followed across webhook calls and the
background run. Records never carry Cloudflare credentials or the bot token:
``redact_secrets`` masks known secret fields and bot-token URLs before
rendering.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import structlog

from deploybot.core.config import get_settings


CONVERSATION_FIELDS = ("request_id", "chat_id", "user_id", "update_id")
SECRET_FIELDS = frozenset(
    {
        "api_token",
        "global_key",
        "api_key",
        "bot_token",
        "encrypted_token",
        "tr_pass",
        "password",
        "authorization",
        "text",
    }
)
REDACTED = "[redacted]"
_BOT_TOKEN_IN_URL = re.compile(r"/bot\d+:[A-Za-z0-9_-]+")

_CONFIGURED = False


def _add_conversation_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    del logger, method_name
    for name in CONVERSATION_FIELDS:
        event_dict.setdefault(name, None)
    return event_dict


def redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    del logger, method_name
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_FIELDS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "/bot" in value:
            # httpx errors echo the Bot API URL, which embeds the token.
            event_dict[key] = _BOT_TOKEN_IN_URL.sub("/bot" + REDACTED, value)
    return event_dict


def configure_logging() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_conversation_context,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def bind_conversation_context(
    request_id: str,
    *,
    chat_id: Optional[str] = None,
    user_id: Optional[str] = None,
    update_id: Optional[str] = None,
) -> None:
    """Attach the current update's identifiers to every record logged on this context."""

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        chat_id=chat_id,
        user_id=user_id,
        update_id=update_id,
    )


def clear_conversation_context() -> None:
    structlog.contextvars.clear_contextvars()

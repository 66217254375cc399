"""Inbound Telegram event parsing and shared router contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from deploybot.deploy.plan import DeploymentRequest


@dataclass(frozen=True)
class InboundEvent:
    kind: str
    update_id: str
    chat_id: str
    user_id: str
    message_id: Optional[str] = None
    text: str = ""
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    callback_id: Optional[str] = None
    callback_data: Optional[str] = None

    def __repr__(self) -> str:
        # Text may carry a token or key typed by the user.
        return (
            f"InboundEvent(kind={self.kind!r}, update_id={self.update_id!r}, chat_id={self.chat_id!r}, "
            f"command={self.command!r}, callback_data={self.callback_data!r})"
        )


@dataclass(frozen=True)
class ChatReply:
    text: str
    markdown: bool = False
    reply_markup: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ControlResponse:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    reply: Optional[ChatReply] = None
    deployment: Optional["DeploymentRequest"] = None


def normalize_command_name(raw: str) -> str:
    cleaned = raw.strip().lower()
    if not cleaned.startswith("/"):
        return ""
    token = cleaned[1:]
    if "@" in token:
        token = token.split("@", 1)[0]
    return token


def _split_command(text: str) -> tuple[Optional[str], List[str]]:
    stripped = (text or "").strip()
    if not stripped.startswith("/"):
        return None, []
    parts = stripped.split()
    name = normalize_command_name(parts[0])
    if not name:
        return None, []
    return name, parts[1:]


def parse_update(payload: Dict[str, Any]) -> Optional[InboundEvent]:
    update_id = str(payload.get("update_id", "unknown-update"))

    callback = payload.get("callback_query")
    if isinstance(callback, dict):
        message = callback.get("message") if isinstance(callback.get("message"), dict) else {}
        chat = message.get("chat") or {}
        sender = callback.get("from") or {}
        chat_id = str(chat.get("id") or sender.get("id") or "")
        if not chat_id:
            return None
        return InboundEvent(
            kind="button",
            update_id=update_id,
            chat_id=chat_id,
            user_id=str(sender.get("id") or chat_id),
            message_id=str(message["message_id"]) if message.get("message_id") is not None else None,
            callback_id=str(callback.get("id") or ""),
            callback_data=str(callback.get("data") or ""),
        )

    message = payload.get("message")
    if not isinstance(message, dict):
        return None
    text = message.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    chat = message.get("chat") or {}
    sender = message.get("from") or {}
    chat_id = str(chat.get("id") or "")
    if not chat_id:
        return None
    message_id = message.get("message_id")

    command, args = _split_command(text)
    return InboundEvent(
        kind="command" if command is not None else "text",
        update_id=update_id,
        chat_id=chat_id,
        user_id=str(sender.get("id") or chat_id),
        message_id=str(message_id) if message_id is not None else None,
        text=text.strip(),
        command=command,
        args=args,
    )

"""/forget: delete the sender's saved credentials."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.core.logger import get_logger
from deploybot.storage.credentials import delete_stored_user

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


logger = get_logger("deploybot.control.forget")

FORGOTTEN_TEXT = "🗑️ Your saved Cloudflare credentials have been deleted."


def handle(context: "CommandContext") -> ControlResponse:
    with context.runtime.session_factory() as db:
        removed = delete_stored_user(db, user_id=context.event.user_id)
    context.runtime.session_store.delete(context.event.chat_id)
    logger.info("credentials_forgotten", user_id=context.event.user_id, removed=removed)
    return ControlResponse(
        success=True,
        message="credentials_forgotten",
        data={"removed": removed},
        reply=ChatReply(FORGOTTEN_TEXT),
    )

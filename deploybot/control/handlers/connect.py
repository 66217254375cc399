"""/connect <accountId>: start saving an API token for later deployments."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.control.handlers.wizard import advance_session
from deploybot.control.prompts import PROMPTS
from deploybot.sessions.models import EventKind, SessionEvent

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


USAGE = "Usage: /connect <accountId>"


def handle(context: "CommandContext") -> ControlResponse:
    args = context.event.args
    if not args:
        return ControlResponse(success=False, message="usage", data={"usage": USAGE}, reply=ChatReply(USAGE))

    if context.runtime.session_store.get(context.event.chat_id) is not None:
        return ControlResponse(
            success=False,
            message="setup_in_progress",
            reply=ChatReply(PROMPTS["setup_in_progress"]),
        )

    transition = advance_session(context, SessionEvent(kind=EventKind.START_CONNECT, value=args[0]))
    return ControlResponse(
        success=transition.action == "ask_connect_token",
        message=transition.action,
        reply=ChatReply(PROMPTS[transition.action]),
    )

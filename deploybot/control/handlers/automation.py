"""/automation and /cancel."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.control.handlers.wizard import advance_session, load_stored_user
from deploybot.control.prompts import PROMPTS, auth_method_keyboard
from deploybot.sessions.models import EventKind, SessionEvent

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


def handle(context: "CommandContext") -> ControlResponse:
    if context.runtime.session_store.get(context.event.chat_id) is not None:
        return ControlResponse(
            success=False,
            message="setup_in_progress",
            reply=ChatReply(PROMPTS["setup_in_progress"]),
        )

    transition = advance_session(context, SessionEvent(kind=EventKind.START_AUTOMATION))
    include_saved = load_stored_user(context) is not None
    return ControlResponse(
        success=True,
        message=transition.action,
        data={"saved_connection": include_saved},
        reply=ChatReply(
            PROMPTS["ask_auth_method"],
            reply_markup=auth_method_keyboard(include_saved=include_saved),
        ),
    )


def handle_cancel(context: "CommandContext") -> ControlResponse:
    transition = advance_session(context, SessionEvent(kind=EventKind.CANCEL_COMMAND))
    if not transition.handled:
        return ControlResponse(
            success=False,
            message="nothing_to_cancel",
            reply=ChatReply(PROMPTS["nothing_to_cancel"]),
        )
    return ControlResponse(success=True, message="cancelled", reply=ChatReply(PROMPTS["cancelled"]))

"""Start and help command handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.control.prompts import HELP_LINES, WELCOME_TEXT

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


def handle_start(context: "CommandContext") -> ControlResponse:
    del context
    return ControlResponse(success=True, message="welcome", reply=ChatReply(WELCOME_TEXT))


def handle(context: "CommandContext") -> ControlResponse:
    del context
    return ControlResponse(
        success=True,
        message="available_commands",
        data={"commands": HELP_LINES},
        reply=ChatReply("📖 Available commands:\n" + "\n".join(HELP_LINES)),
    )

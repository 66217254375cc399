"""Route inbound chat events to command and wizard handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict

from deploybot.control.command_schema import ControlResponse, InboundEvent
from deploybot.control.handlers import automation, connect, forget, help as help_handler, status, wizard
from deploybot.control.runtime import BotRuntime


@dataclass(frozen=True)
class CommandContext:
    runtime: BotRuntime
    event: InboundEvent
    request_id: str


Handler = Callable[[CommandContext], ControlResponse]


_HANDLER_MAP: Dict[str, Handler] = {
    "start": help_handler.handle_start,
    "help": help_handler.handle,
    "connect": connect.handle,
    "automation": automation.handle,
    "cancel": automation.handle_cancel,
    "status": status.handle,
    "forget": forget.handle,
}


def dispatch_event(context: CommandContext) -> ControlResponse:
    event = context.event
    if event.kind == "button":
        return wizard.handle_button(context)
    if event.kind == "text":
        return wizard.handle_text(context)

    handler = _HANDLER_MAP.get(event.command or "")
    if handler is None:
        return ControlResponse(success=False, message="unknown_command", data={"command": event.command})
    return handler(context)

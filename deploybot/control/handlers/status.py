"""/status: saved connection and wizard progress for the sender."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.control.handlers.wizard import load_stored_user

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


def handle(context: "CommandContext") -> ControlResponse:
    stored = load_stored_user(context)
    session = context.runtime.session_store.get(context.event.chat_id)

    data = {
        "connected": stored is not None,
        "account_id": stored.cloud_account_id if stored else None,
        "worker_name": stored.worker_name if stored else None,
        "session_state": session.state.value if session else None,
    }

    lines = ["📊 Status"]
    if stored is None:
        lines.append("Saved connection: none (use /connect <accountId>)")
    else:
        lines.append(f"Saved connection: account {stored.cloud_account_id}")
        lines.append(f"Last worker: {stored.worker_name or 'none yet'}")
    lines.append(f"Setup in progress: {session.state.value if session else 'no'}")

    return ControlResponse(success=True, message="status", data=data, reply=ChatReply("\n".join(lines)))

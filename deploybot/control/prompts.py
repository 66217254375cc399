"""Wizard prompts, keyboards and callback identifiers."""

from __future__ import annotations

from typing import Any, Dict

from deploybot.integrations.telegram.formatting import escape_markdown, inline_keyboard
from deploybot.sessions.models import AuthMethod


AUTH_CALLBACK_PREFIX = "auth:"
CONFIRM_CALLBACK = "deploy:confirm"
CANCEL_CALLBACK = "deploy:cancel"

WELCOME_TEXT = (
    "👋 Welcome! I deploy a BPB panel worker to your own Cloudflare account.\n\n"
    "• /automation - guided deployment, credentials are kept only for this run\n"
    "• /connect <accountId> - save an API token for future deployments\n"
    "• /help - list every command"
)

HELP_LINES = [
    "/start - welcome message",
    "/help - this list",
    "/automation - guided deployment wizard",
    "/connect <accountId> - save an encrypted API token",
    "/status - show your saved connection",
    "/forget - delete your saved credentials",
    "/cancel - abort the current setup",
]

AUTH_LABELS = {
    AuthMethod.TOKEN: "API token",
    AuthMethod.GLOBAL_KEY: "Global API Key",
    AuthMethod.SAVED: "saved connection",
}

SENSITIVE_NOTE = "🔒 I will delete your message right after reading it."


def auth_method_keyboard(*, include_saved: bool) -> Dict[str, Any]:
    rows = [
        [("🔑 API Token", f"{AUTH_CALLBACK_PREFIX}{AuthMethod.TOKEN.value}")],
        [("🗝️ Global API Key", f"{AUTH_CALLBACK_PREFIX}{AuthMethod.GLOBAL_KEY.value}")],
    ]
    if include_saved:
        rows.append([("💾 Use saved connection", f"{AUTH_CALLBACK_PREFIX}{AuthMethod.SAVED.value}")])
    return inline_keyboard(rows)


def confirm_keyboard() -> Dict[str, Any]:
    return inline_keyboard([[("🚀 Deploy", CONFIRM_CALLBACK), ("✖️ Cancel", CANCEL_CALLBACK)]])


PROMPTS = {
    "ask_auth_method": "🔐 How do you want to authenticate with Cloudflare?",
    "ask_account_id": "🆔 Send your Cloudflare Account ID.\nYou can find it on the dashboard overview page.",
    "ask_api_token": f"🔑 Send your Cloudflare API token.\n{SENSITIVE_NOTE}",
    "ask_email": f"📧 Send the email address of your Cloudflare account.\n{SENSITIVE_NOTE}",
    "ask_global_key": f"🗝️ Send your Global API Key.\n{SENSITIVE_NOTE}",
    "ask_connect_token": f"🔑 Send the API token for this account.\n{SENSITIVE_NOTE}",
    "invalid_account_id": "⚠️ That does not look like an Account ID. Please send it again.",
    "invalid_api_token": "⚠️ That does not look like an API token. Please send it again.",
    "invalid_email": "⚠️ That does not look like an email address. Please send it again.",
    "invalid_global_key": "⚠️ That does not look like a Global API Key. Please send it again.",
    "cancelled": "✖️ Setup cancelled. Start again with /automation.",
    "setup_in_progress": "⏳ A setup is already in progress. Finish it or send /cancel.",
    "nothing_to_cancel": "Nothing to cancel.",
    "deploy_running": "⏳ A deployment is already running for this chat. Please wait for it to finish.",
    "deploy_started": "🚀 Deployment started. I will report every step here.",
    "no_saved_connection": "⚠️ No saved connection found. Use /connect <accountId> first.",
    "saved_credentials_unreadable": "⚠️ Your saved credentials could not be read. Please run /connect again.",
}


def confirm_text(*, account_id: str, auth_method: AuthMethod) -> str:
    return "\n".join(
        [
            "📋 *Ready to deploy*",
            "",
            f"Account ID: `{escape_markdown(account_id)}`",
            f"Authentication: {escape_markdown(AUTH_LABELS[auth_method])}",
            "",
            "Press *Deploy* to start or *Cancel* to abort\\.",
        ]
    )

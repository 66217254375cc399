"""Chat text for deployment progress and terminal outcomes."""

from __future__ import annotations

from deploybot.deploy.plan import DeploymentOutcome, OutcomeStatus
from deploybot.integrations.telegram.formatting import escape_markdown


def _link(url: str) -> str:
    # Inside the (...) part of a MarkdownV2 link only ")" and "\" need escaping.
    target = url.replace("\\", "\\\\").replace(")", "\\)")
    return f"[{escape_markdown(url)}]({target})"


def render_success(outcome: DeploymentOutcome) -> str:
    assert outcome.secrets is not None
    return "\n".join(
        [
            "🎉 *BPB Worker Panel Deployed Successfully\\!*",
            "",
            f"🌐 *Panel URL:* {_link(outcome.panel_url or '')}",
            "",
            "🔧 *Credentials:*",
            f"🆔 UUID: `{escape_markdown(outcome.secrets.uuid)}`",
            f"🔒 Trojan Pass: `{escape_markdown(outcome.secrets.tr_pass)}`",
            "",
            "📋 *Worker Info:*",
            f"📛 Name: `{escape_markdown(outcome.worker_name)}`",
            f"🔗 Worker URL: {_link(outcome.worker_url or '')}",
            f"🗄️ KV Namespace: `{escape_markdown(outcome.kv_title)}`",
            "",
            "✅ *Setup Complete\\!* Your panel is ready to use\\.",
            "🔒 Your Cloudflare credentials have been removed from memory\\.",
        ]
    )


def render_manual_followup(outcome: DeploymentOutcome) -> str:
    return "\n".join(
        [
            "⚠️ *Worker deployed, but the panel credentials could not be read automatically\\.*",
            "",
            f"🌐 *Panel URL:* {_link(outcome.panel_url or '')}",
            f"📛 Name: `{escape_markdown(outcome.worker_name)}`",
            "",
            "*Finish the setup by hand:*",
            "1\\. Open the panel URL above and copy the generated UUID and Trojan password\\.",
            "2\\. In the Cloudflare dashboard open *Workers & Pages* → your worker → *Settings* → *Variables and Secrets*\\.",
            "3\\. Add a secret named `UUID` and a secret named `TR_PASS` with those values\\.",
            "4\\. Reload the panel\\.",
            "",
            "🔒 Your Cloudflare credentials have been removed from memory\\.",
        ]
    )


def render_manual_init(outcome: DeploymentOutcome) -> str:
    return "\n".join(
        [
            "⚠️ *Your account has no workers\\.dev subdomain yet\\.*",
            "",
            f"The worker `{escape_markdown(outcome.worker_name)}` was uploaded, but it cannot be reached until the subdomain exists\\.",
            "",
            "1\\. Open the Cloudflare dashboard → *Workers & Pages*\\.",
            "2\\. Choose a workers\\.dev subdomain when prompted and save it\\.",
            "3\\. Run /automation again\\.",
        ]
    )


FAILURE_DETAIL_LIMIT = 1000

_FAILURE_HINTS = {
    "auth_invalid": "Your Cloudflare credentials were rejected. Check the token or Global API Key and try again.",
    "account_unreachable": "The account could not be reached with these credentials. Check the Account ID and the token permissions.",
    "upload_rejected": "Cloudflare rejected the worker upload.",
    "fetch_error": "The worker script could not be downloaded.",
    "integrity_error": "Your saved credentials could not be read. Please run /connect again.",
}


def render_failure(outcome: DeploymentOutcome) -> str:
    hint = _FAILURE_HINTS.get(outcome.error_kind or "", "The deployment stopped because of an error.")
    lines = [
        "❌ *Deployment failed*",
        "",
        escape_markdown(hint),
    ]
    detail = (outcome.error_detail or outcome.error or "").replace("\n", " ")
    if len(detail) > FAILURE_DETAIL_LIMIT:
        detail = detail[: FAILURE_DETAIL_LIMIT - 3] + "..."
    if detail:
        lines.extend(["", f"`{escape_markdown(detail)}`"])
    lines.extend(["", "Please check your credentials and permissions, then start over with /automation\\."])
    return "\n".join(lines)


def render_outcome(outcome: DeploymentOutcome) -> str:
    if outcome.status == OutcomeStatus.SUCCESS:
        return render_success(outcome)
    if outcome.status == OutcomeStatus.MANUAL_FOLLOWUP:
        return render_manual_followup(outcome)
    if outcome.status == OutcomeStatus.MANUAL_INIT:
        return render_manual_init(outcome)
    return render_failure(outcome)

"""Telegram webhook route for the deployment bot."""

from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, Header

from deploybot.control.command_router import CommandContext, dispatch_event
from deploybot.control.command_schema import ControlResponse, InboundEvent, parse_update
from deploybot.control.runtime import BotRuntime, get_runtime
from deploybot.core.logger import bind_conversation_context, get_logger
from deploybot.core.observability import capture_exception, sentry_scope
from deploybot.schemas.telegram import TelegramWebhookResponse


router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = get_logger("deploybot.control.telegram")

UNKNOWN_COMMAND_TEXT = "🤔 Unknown command. Send /help to see what I can do."
EXECUTION_ERROR_TEXT = "❌ Something went wrong while handling that. Please try again."


class WebhookAuthorizationError(RuntimeError):
    pass


def _verify_webhook_secret(runtime: BotRuntime, received_secret: Optional[str]) -> None:
    configured = runtime.settings.telegram_webhook_secret.strip()
    if not configured:
        return
    if received_secret != configured:
        raise WebhookAuthorizationError("invalid_telegram_webhook_secret")


def _deliver_reply(runtime: BotRuntime, event: InboundEvent, response: ControlResponse) -> None:
    if event.kind == "button" and event.callback_id:
        runtime.gateway.answer_callback(event.callback_id)

    reply = response.reply
    if reply is None and response.message == "unknown_command":
        runtime.gateway.send_message(event.chat_id, UNKNOWN_COMMAND_TEXT)
        return
    if reply is None:
        return
    runtime.gateway.send_message(
        event.chat_id,
        reply.text,
        markdown=reply.markdown,
        reply_markup=reply.reply_markup,
    )


@router.post("/webhook", response_model=TelegramWebhookResponse)
def telegram_webhook(
    payload: Dict[str, Any],
    background_tasks: BackgroundTasks,
    runtime: BotRuntime = Depends(get_runtime),
    telegram_secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> TelegramWebhookResponse:
    request_id = f"tg-{uuid4()}"

    try:
        _verify_webhook_secret(runtime, telegram_secret_token)
    except WebhookAuthorizationError as exc:
        logger.warning("telegram_webhook_rejected", request_id=request_id, reason=str(exc))
        return TelegramWebhookResponse(
            accepted=False,
            request_id=request_id,
            status="unauthorized",
            message="unauthorized",
        )

    event = parse_update(payload)
    if event is None:
        return TelegramWebhookResponse(
            accepted=False,
            request_id=request_id,
            status="ignored",
            message="update_not_supported",
        )

    bind_conversation_context(
        request_id=request_id,
        chat_id=event.chat_id,
        user_id=event.user_id,
        update_id=event.update_id,
    )
    with sentry_scope(chat_id=event.chat_id, request_id=request_id):
        try:
            response = dispatch_event(CommandContext(runtime=runtime, event=event, request_id=request_id))
        except Exception as exc:
            logger.exception("telegram_event_failed", kind=event.kind, command=event.command)
            capture_exception(exc)
            runtime.gateway.send_message(event.chat_id, EXECUTION_ERROR_TEXT)
            return TelegramWebhookResponse(
                accepted=False,
                request_id=request_id,
                kind=event.kind,
                command=event.command,
                status="error",
                message="execution_error",
                data={"error": str(exc)},
            )

    _deliver_reply(runtime, event, response)
    if response.deployment is not None:
        background_tasks.add_task(runtime.run_deployment, response.deployment)

    logger.info(
        "telegram_event_handled",
        kind=event.kind,
        command=event.command,
        message=response.message,
        success=response.success,
    )
    return TelegramWebhookResponse(
        accepted=response.success,
        request_id=request_id,
        kind=event.kind,
        command=event.command,
        status="ok" if response.success else "ignored",
        message=response.message,
        data=response.data,
    )

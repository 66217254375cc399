"""Wizard text/button handling and deployment hand-off."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Optional

from deploybot.control.command_schema import ChatReply, ControlResponse
from deploybot.control.prompts import (
    AUTH_CALLBACK_PREFIX,
    CANCEL_CALLBACK,
    CONFIRM_CALLBACK,
    PROMPTS,
    confirm_text,
    confirm_keyboard,
)
from deploybot.core.logger import get_logger
from deploybot.deploy.plan import CredentialStrategy, DeploymentRequest
from deploybot.integrations.cloudflare.auth import ApiTokenAuth
from deploybot.integrations.cloudflare.client import CloudflareError
from deploybot.integrations.telegram.formatting import empty_keyboard
from deploybot.sessions.models import AuthMethod, EventKind, Session, SessionEvent, Transition, apply_event
from deploybot.storage.credentials import get_stored_user, read_api_token, upsert_stored_user
from deploybot.storage.models import StoredUser
from deploybot.storage.security import CredentialIntegrityError

if TYPE_CHECKING:
    from deploybot.control.command_router import CommandContext


logger = get_logger("deploybot.control.wizard")


def advance_session(context: "CommandContext", event: SessionEvent) -> Transition:
    """Apply one event to the conversation's session and persist the result."""

    store = context.runtime.session_store
    chat_id = context.event.chat_id
    transition = apply_event(chat_id, store.get(chat_id), event)
    if not transition.handled:
        return transition
    if transition.session is None:
        store.delete(chat_id)
    else:
        store.put(transition.session)
    return transition


def load_stored_user(context: "CommandContext") -> Optional[StoredUser]:
    with context.runtime.session_factory() as db:
        return get_stored_user(db, user_id=context.event.user_id)


def prompt_reply(transition: Transition) -> ChatReply:
    session = transition.session
    if transition.action == "ask_confirm" and session is not None and session.auth_method is not None:
        return ChatReply(
            confirm_text(account_id=session.account_id or "", auth_method=session.auth_method),
            markdown=True,
            reply_markup=confirm_keyboard(),
        )
    return ChatReply(PROMPTS.get(transition.action, PROMPTS["ask_auth_method"]))


def _delete_sensitive_message(context: "CommandContext") -> None:
    message_id = context.event.message_id
    if not message_id:
        return
    if not context.runtime.gateway.delete_message(context.event.chat_id, message_id):
        logger.info("sensitive_message_delete_failed", chat_id=context.event.chat_id, message_id=message_id)


def _clear_keyboard(context: "CommandContext") -> None:
    if context.event.message_id:
        context.runtime.gateway.edit_message_markup(context.event.chat_id, context.event.message_id, empty_keyboard())


def handle_text(context: "CommandContext") -> ControlResponse:
    session = context.runtime.session_store.get(context.event.chat_id)
    if session is None or not session.state.awaiting_input:
        return ControlResponse(success=False, message="message_ignored")

    transition = advance_session(context, SessionEvent(kind=EventKind.TEXT, value=context.event.text))
    _delete_sensitive_message(context)
    if transition.action == "save_token":
        return save_connection(context, transition)
    return ControlResponse(
        success=not transition.action.startswith("invalid_"),
        message=transition.action,
        data={"state": transition.session.state.value if transition.session else None},
        reply=prompt_reply(transition),
    )


def handle_button(context: "CommandContext") -> ControlResponse:
    data = context.event.callback_data or ""
    stored: Optional[StoredUser] = None

    if data.startswith(AUTH_CALLBACK_PREFIX):
        method = data[len(AUTH_CALLBACK_PREFIX) :]
        if method == AuthMethod.SAVED.value:
            stored = load_stored_user(context)
            if stored is None:
                return ControlResponse(
                    success=False,
                    message="no_saved_connection",
                    reply=ChatReply(PROMPTS["no_saved_connection"]),
                )
        transition = advance_session(context, SessionEvent(kind=EventKind.CHOOSE_AUTH, value=method))
    elif data == CONFIRM_CALLBACK:
        transition = advance_session(context, SessionEvent(kind=EventKind.CONFIRM))
    elif data == CANCEL_CALLBACK:
        transition = advance_session(context, SessionEvent(kind=EventKind.CANCEL))
    else:
        return ControlResponse(success=False, message="unknown_button", data={"callback_data": data})

    if not transition.handled:
        # Expired or stale buttons are dropped without a reply.
        return ControlResponse(success=False, message="button_ignored")

    _clear_keyboard(context)
    if transition.action == "deploy":
        assert transition.previous is not None
        return start_deployment(context, transition.previous)

    if stored is not None and transition.session is not None:
        updated = replace(transition.session, account_id=stored.cloud_account_id)
        context.runtime.session_store.put(updated)
        transition = replace(transition, session=updated)

    return ControlResponse(
        success=True,
        message=transition.action,
        data={"state": transition.session.state.value if transition.session else None},
        reply=prompt_reply(transition),
    )


def start_deployment(context: "CommandContext", session: Session) -> ControlResponse:
    runtime = context.runtime
    event = context.event
    lock = runtime.lock_manager.acquire(event.chat_id)
    if lock is None:
        return ControlResponse(success=False, message="deploy_running", reply=ChatReply(PROMPTS["deploy_running"]))

    if session.auth_method == AuthMethod.SAVED:
        stored = load_stored_user(context)
        if stored is None:
            lock.release()
            return ControlResponse(
                success=False,
                message="no_saved_connection",
                reply=ChatReply(PROMPTS["no_saved_connection"]),
            )
        try:
            token = read_api_token(stored)
        except CredentialIntegrityError as exc:
            lock.release()
            logger.warning("saved_credentials_unreadable", user_id=event.user_id, error=str(exc))
            return ControlResponse(
                success=False,
                message="saved_credentials_unreadable",
                reply=ChatReply(PROMPTS["saved_credentials_unreadable"]),
            )
        request = DeploymentRequest(
            chat_id=event.chat_id,
            account_id=stored.cloud_account_id,
            auth=ApiTokenAuth(token),
            strategy=CredentialStrategy(runtime.settings.saved_credential_strategy.strip().lower()),
            user_id=event.user_id,
            persist_worker_name=True,
            lock=lock,
            session_created_at=session.created_at,
        )
    else:
        if session.auth is None or not session.account_id:
            lock.release()
            return ControlResponse(success=False, message="session_incomplete", reply=ChatReply(PROMPTS["cancelled"]))
        request = DeploymentRequest(
            chat_id=event.chat_id,
            account_id=session.account_id,
            auth=session.auth,
            strategy=CredentialStrategy(runtime.settings.wizard_credential_strategy.strip().lower()),
            user_id=event.user_id,
            lock=lock,
            session_created_at=session.created_at,
        )

    logger.info(
        "deployment_requested",
        chat_id=event.chat_id,
        account_id=request.account_id,
        strategy=request.strategy.value,
    )
    return ControlResponse(
        success=True,
        message="deployment_started",
        data={"strategy": request.strategy.value},
        reply=ChatReply(PROMPTS["deploy_started"]),
        deployment=request,
    )


def save_connection(context: "CommandContext", transition: Transition) -> ControlResponse:
    """Verify a /connect token and store it encrypted for the sending user."""

    runtime = context.runtime
    account_id = transition.previous.account_id if transition.previous else None
    token = transition.captured or ""
    if not account_id:
        return ControlResponse(success=False, message="invalid_account_id", reply=ChatReply(PROMPTS["invalid_account_id"]))

    try:
        check = runtime.cloudflare.verify_credentials(ApiTokenAuth(token), account_id)
    except CloudflareError as exc:
        logger.warning("connect_verification_failed", chat_id=context.event.chat_id, error=str(exc))
        return ControlResponse(
            success=False,
            message="connect_verification_failed",
            reply=ChatReply(f"❌ Could not reach Cloudflare: {exc}\nTry /connect {account_id} again."),
        )
    if not check.valid:
        return ControlResponse(
            success=False,
            message=check.kind or "auth_invalid",
            reply=ChatReply(f"❌ {check.reason or 'Credentials were rejected.'}\nTry /connect {account_id} again."),
        )

    with runtime.session_factory() as db:
        upsert_stored_user(db, user_id=context.event.user_id, cloud_account_id=account_id, api_token=token)
    logger.info("connection_saved", chat_id=context.event.chat_id, user_id=context.event.user_id, account_id=account_id)
    return ControlResponse(
        success=True,
        message="connection_saved",
        data={"account_id": account_id},
        reply=ChatReply(
            f"✅ Connected! Account {account_id} is saved.\n"
            "Run /automation and choose \"Use saved connection\" to deploy."
        ),
    )

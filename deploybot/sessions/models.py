"""Per-conversation wizard state and its transition table."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from deploybot.integrations.cloudflare.auth import (
    ApiTokenAuth,
    AuthMaterial,
    GlobalKeyAuth,
    auth_from_dict,
    auth_to_dict,
)


class SessionState(str, Enum):
    AWAITING_AUTH_METHOD = "awaiting_auth_method"
    AWAITING_ACCOUNT_ID = "awaiting_account_id"
    AWAITING_API_TOKEN = "awaiting_api_token"
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_GLOBAL_KEY = "awaiting_global_key"
    READY_TO_DEPLOY = "ready_to_deploy"
    AWAITING_TOKEN = "awaiting_token"
    IDLE = "idle"

    @property
    def awaiting_input(self) -> bool:
        return self.value.startswith("awaiting_")


class AuthMethod(str, Enum):
    TOKEN = "token"
    GLOBAL_KEY = "global_key"
    SAVED = "saved"


class EventKind(str, Enum):
    START_AUTOMATION = "start_automation"
    START_CONNECT = "start_connect"
    CHOOSE_AUTH = "choose_auth"
    TEXT = "text"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    CANCEL_COMMAND = "cancel_command"


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    value: Optional[str] = None


@dataclass(frozen=True)
class Session:
    conversation_id: str
    state: SessionState
    created_at: datetime
    last_touched_at: datetime
    auth_method: Optional[AuthMethod] = None
    account_id: Optional[str] = None
    pending_email: Optional[str] = None
    auth: Optional[AuthMaterial] = None

    def __repr__(self) -> str:
        return (
            f"Session(conversation_id={self.conversation_id!r}, state={self.state.value}, "
            f"auth_method={self.auth_method}, account_id={self.account_id!r})"
        )

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return (now - self.last_touched_at).total_seconds() > ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "last_touched_at": self.last_touched_at.isoformat(),
            "auth_method": self.auth_method.value if self.auth_method else None,
            "account_id": self.account_id,
            "pending_email": self.pending_email,
            "auth": auth_to_dict(self.auth),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Session":
        auth_method = raw.get("auth_method")
        return cls(
            conversation_id=str(raw["conversation_id"]),
            state=SessionState(raw["state"]),
            created_at=datetime.fromisoformat(raw["created_at"]),
            last_touched_at=datetime.fromisoformat(raw["last_touched_at"]),
            auth_method=AuthMethod(auth_method) if auth_method else None,
            account_id=raw.get("account_id"),
            pending_email=raw.get("pending_email"),
            auth=auth_from_dict(raw.get("auth")),
        )


@dataclass(frozen=True)
class Transition:
    """Result of feeding one event to a session.

    ``session`` is the state to store (None means delete). ``previous`` is the
    session the event was applied to, kept so a confirm can still read it.
    """

    session: Optional[Session]
    handled: bool
    action: str
    previous: Optional[Session] = None
    captured: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session(conversation_id: str, state: SessionState, *, now: datetime, **fields: Any) -> Session:
    return Session(
        conversation_id=conversation_id,
        state=state,
        created_at=now,
        last_touched_at=now,
        **fields,
    )


def _clean_text(value: Optional[str], *, max_length: int = 256) -> Optional[str]:
    normalized = (value or "").strip()
    if not normalized or len(normalized) > max_length or any(char.isspace() for char in normalized):
        return None
    return normalized


def _ignored(session: Optional[Session]) -> Transition:
    return Transition(session=session, handled=False, action="ignored", previous=session)


def _move(session: Session, state: SessionState, *, now: datetime, action: str, **fields: Any) -> Transition:
    moved = replace(session, state=state, last_touched_at=now, **fields)
    return Transition(session=moved, handled=True, action=action, previous=session)


def _invalid(session: Session, *, now: datetime, action: str) -> Transition:
    return Transition(
        session=replace(session, last_touched_at=now),
        handled=True,
        action=action,
        previous=session,
    )


def apply_event(
    conversation_id: str,
    session: Optional[Session],
    event: SessionEvent,
    *,
    now: Optional[datetime] = None,
) -> Transition:
    """Apply one event; any (state, event) pair not listed leaves the session untouched."""

    now = now or utcnow()
    state = session.state if session is not None else SessionState.IDLE

    if state == SessionState.IDLE:
        if event.kind == EventKind.START_AUTOMATION:
            created = new_session(conversation_id, SessionState.AWAITING_AUTH_METHOD, now=now)
            return Transition(session=created, handled=True, action="ask_auth_method", previous=session)
        if event.kind == EventKind.START_CONNECT:
            account_id = _clean_text(event.value, max_length=64)
            if account_id is None:
                return Transition(session=session, handled=True, action="invalid_account_id", previous=session)
            created = new_session(
                conversation_id,
                SessionState.AWAITING_TOKEN,
                now=now,
                account_id=account_id,
            )
            return Transition(session=created, handled=True, action="ask_connect_token", previous=session)
        return _ignored(session)

    assert session is not None

    if event.kind == EventKind.CANCEL_COMMAND:
        return Transition(session=None, handled=True, action="cancelled", previous=session)

    if state == SessionState.AWAITING_AUTH_METHOD and event.kind == EventKind.CHOOSE_AUTH:
        if event.value == AuthMethod.TOKEN.value:
            return _move(
                session, SessionState.AWAITING_ACCOUNT_ID, now=now, action="ask_account_id", auth_method=AuthMethod.TOKEN
            )
        if event.value == AuthMethod.GLOBAL_KEY.value:
            return _move(
                session,
                SessionState.AWAITING_ACCOUNT_ID,
                now=now,
                action="ask_account_id",
                auth_method=AuthMethod.GLOBAL_KEY,
            )
        if event.value == AuthMethod.SAVED.value:
            return _move(session, SessionState.READY_TO_DEPLOY, now=now, action="ask_confirm", auth_method=AuthMethod.SAVED)
        return _ignored(session)

    if event.kind == EventKind.TEXT:
        if state == SessionState.AWAITING_ACCOUNT_ID:
            account_id = _clean_text(event.value, max_length=64)
            if account_id is None:
                return _invalid(session, now=now, action="invalid_account_id")
            if session.auth_method == AuthMethod.GLOBAL_KEY:
                return _move(session, SessionState.AWAITING_EMAIL, now=now, action="ask_email", account_id=account_id)
            return _move(session, SessionState.AWAITING_API_TOKEN, now=now, action="ask_api_token", account_id=account_id)

        if state == SessionState.AWAITING_API_TOKEN:
            token = _clean_text(event.value)
            if token is None:
                return _invalid(session, now=now, action="invalid_api_token")
            return _move(session, SessionState.READY_TO_DEPLOY, now=now, action="ask_confirm", auth=ApiTokenAuth(token))

        if state == SessionState.AWAITING_EMAIL:
            email = _clean_text(event.value)
            if email is None or "@" not in email:
                return _invalid(session, now=now, action="invalid_email")
            return _move(session, SessionState.AWAITING_GLOBAL_KEY, now=now, action="ask_global_key", pending_email=email)

        if state == SessionState.AWAITING_GLOBAL_KEY:
            key = _clean_text(event.value)
            if key is None or not session.pending_email:
                return _invalid(session, now=now, action="invalid_global_key")
            return _move(
                session,
                SessionState.READY_TO_DEPLOY,
                now=now,
                action="ask_confirm",
                auth=GlobalKeyAuth(email=session.pending_email, key=key),
                pending_email=None,
            )

        if state == SessionState.AWAITING_TOKEN:
            token = _clean_text(event.value)
            if token is None:
                return _invalid(session, now=now, action="invalid_api_token")
            return Transition(session=None, handled=True, action="save_token", previous=session, captured=token)

        return _ignored(session)

    if state == SessionState.READY_TO_DEPLOY:
        if event.kind == EventKind.CONFIRM:
            return Transition(session=None, handled=True, action="deploy", previous=session)
        if event.kind == EventKind.CANCEL:
            return Transition(session=None, handled=True, action="cancelled", previous=session)

    return _ignored(session)

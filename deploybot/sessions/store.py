"""Session store backends keyed by conversation id."""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
import json
from threading import Lock
from typing import Dict, Optional, Protocol, Tuple

from redis import Redis

from deploybot.core.config import get_settings
from deploybot.core.logger import get_logger
from deploybot.sessions.models import Session, utcnow
from deploybot.storage.security import CredentialIntegrityError, decrypt_token, encrypt_token


logger = get_logger("deploybot.sessions")

SESSION_KEY_TEMPLATE = "deploybot:session:{conversation_id}"


class SessionStore(Protocol):
    def get(self, conversation_id: str) -> Optional[Session]: ...

    def put(self, session: Session) -> None: ...

    def delete(self, conversation_id: str) -> None: ...

    def sweep(self, now: Optional[datetime] = None) -> int: ...


class InMemorySessionStore:
    """Process-local store for single-instance deployments."""

    def __init__(self, *, ttl_seconds: int = 600) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()

    def get(self, conversation_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                return None
            if session.is_expired(utcnow(), self.ttl_seconds):
                del self._sessions[conversation_id]
                return None
            return session

    def put(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.conversation_id] = session

    def delete(self, conversation_id: str) -> None:
        with self._lock:
            self._sessions.pop(conversation_id, None)

    def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._lock:
            expired = [key for key, session in self._sessions.items() if session.is_expired(now, self.ttl_seconds)]
            for key in expired:
                del self._sessions[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class RedisSessionStore:
    """Redis-backed store for multi-instance deployments.

    Values are sealed with the token key because wizard sessions hold raw
    Cloudflare credentials. Keys carry a TTL as well as being swept.
    """

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 600) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    def key(self, conversation_id: str) -> str:
        return SESSION_KEY_TEMPLATE.format(conversation_id=conversation_id)

    def _load(self, key: str) -> Optional[Session]:
        raw = self._redis.get(key)
        if raw is None:
            return None
        try:
            return Session.from_dict(json.loads(decrypt_token(raw)))
        except (CredentialIntegrityError, ValueError, KeyError) as exc:
            logger.warning("session_payload_unreadable", key=key, error=str(exc))
            self._redis.delete(key)
            return None

    def get(self, conversation_id: str) -> Optional[Session]:
        key = self.key(conversation_id)
        session = self._load(key)
        if session is None:
            return None
        if session.is_expired(utcnow(), self.ttl_seconds):
            self._redis.delete(key)
            return None
        return session

    def put(self, session: Session) -> None:
        payload = encrypt_token(json.dumps(session.to_dict(), separators=(",", ":")))
        self._redis.set(self.key(session.conversation_id), payload, ex=self.ttl_seconds)

    def delete(self, conversation_id: str) -> None:
        self._redis.delete(self.key(conversation_id))

    def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        removed = 0
        for key in self._redis.keys(SESSION_KEY_TEMPLATE.format(conversation_id="*")):
            session = self._load(key)
            if session is not None and session.is_expired(now, self.ttl_seconds):
                self._redis.delete(key)
                removed += 1
        return removed


def uses_redis_backend() -> bool:
    return get_settings().session_backend.strip().lower() == "redis"


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    """Shared client for Redis-backed sessions and deploy locks."""

    return Redis.from_url(get_settings().redis_url, decode_responses=True)


def check_session_backend() -> Tuple[bool, Optional[str]]:
    """Health check for wherever sessions live; the memory backend is always up."""

    if not uses_redis_backend():
        return True, None
    try:
        get_redis_client().ping()
        return True, None
    except Exception as exc:  # pragma: no cover
        return False, str(exc)


def build_session_store() -> SessionStore:
    ttl_seconds = get_settings().session_ttl_seconds
    if uses_redis_backend():
        return RedisSessionStore(get_redis_client(), ttl_seconds=ttl_seconds)
    return InMemorySessionStore(ttl_seconds=ttl_seconds)

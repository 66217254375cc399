"""Per-conversation deployment locks.

Only one deployment may run per conversation at a time. Redis ``SET NX EX``
covers multi-instance setups; the local manager covers the in-memory backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
import time
from typing import Dict, Optional, Protocol, Tuple
import uuid

from redis import Redis

from deploybot.core.config import get_settings
from deploybot.sessions.store import get_redis_client, uses_redis_backend


LOCK_KEY_TEMPLATE = "deploybot:{conversation_id}:deploy:lock"
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""


def conversation_lock_key(conversation_id: str) -> str:
    return LOCK_KEY_TEMPLATE.format(conversation_id=conversation_id)


@dataclass(frozen=True)
class DeployLockHandle:
    manager: "LockManager"
    conversation_id: str
    token: str

    def release(self) -> bool:
        return self.manager.release(self.conversation_id, self.token)


class LockManager(Protocol):
    def acquire(self, conversation_id: str) -> Optional[DeployLockHandle]: ...

    def release(self, conversation_id: str, token: str) -> bool: ...


class ConversationLockManager:
    """Acquire and release one lock per conversation using Redis SET NX EX."""

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 900) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def acquire(self, conversation_id: str) -> Optional[DeployLockHandle]:
        token = str(uuid.uuid4())
        acquired = self._redis.set(conversation_lock_key(conversation_id), token, nx=True, ex=self._ttl_seconds)
        if not acquired:
            return None
        return DeployLockHandle(manager=self, conversation_id=conversation_id, token=token)

    def release(self, conversation_id: str, token: str) -> bool:
        released = self._redis.eval(RELEASE_LOCK_SCRIPT, 1, conversation_lock_key(conversation_id), token)
        return int(released) == 1


class LocalLockManager:
    """In-process equivalent of ConversationLockManager with the same TTL rule."""

    def __init__(self, *, ttl_seconds: int = 900) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl_seconds = ttl_seconds
        self._held: Dict[str, Tuple[str, float]] = {}
        self._lock = Lock()

    def acquire(self, conversation_id: str) -> Optional[DeployLockHandle]:
        now = time.monotonic()
        with self._lock:
            current = self._held.get(conversation_id)
            if current is not None and current[1] > now:
                return None
            token = str(uuid.uuid4())
            self._held[conversation_id] = (token, now + self._ttl_seconds)
        return DeployLockHandle(manager=self, conversation_id=conversation_id, token=token)

    def release(self, conversation_id: str, token: str) -> bool:
        with self._lock:
            current = self._held.get(conversation_id)
            if current is None or current[0] != token:
                return False
            del self._held[conversation_id]
            return True


def build_lock_manager() -> LockManager:
    settings = get_settings()
    if uses_redis_backend():
        return ConversationLockManager(get_redis_client(), ttl_seconds=settings.deploy_lock_ttl_seconds)
    return LocalLockManager(ttl_seconds=settings.deploy_lock_ttl_seconds)

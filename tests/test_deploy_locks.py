from __future__ import annotations

from deploybot.control.locks import ConversationLockManager, LocalLockManager, conversation_lock_key
from tests.control.conftest import FakeRedis


def test_redis_lock_is_exclusive_per_conversation() -> None:
    fake = FakeRedis()
    manager = ConversationLockManager(fake, ttl_seconds=900)

    first = manager.acquire("7001")
    assert first is not None
    assert fake.expirations[conversation_lock_key("7001")] == 900
    assert manager.acquire("7001") is None
    assert manager.acquire("7002") is not None

    assert first.release() is True
    assert first.release() is False
    assert manager.acquire("7001") is not None


def test_redis_lock_release_requires_owner_token() -> None:
    manager = ConversationLockManager(FakeRedis(), ttl_seconds=900)
    held = manager.acquire("7001")
    assert held is not None
    assert manager.release("7001", "someone-else") is False
    assert manager.acquire("7001") is None


def test_local_lock_expires_after_ttl(monkeypatch) -> None:
    import deploybot.control.locks as locks_module

    clock = {"now": 1000.0}
    monkeypatch.setattr(locks_module.time, "monotonic", lambda: clock["now"])
    manager = LocalLockManager(ttl_seconds=60)

    stale = manager.acquire("7001")
    assert stale is not None
    assert manager.acquire("7001") is None

    clock["now"] += 61
    fresh = manager.acquire("7001")
    assert fresh is not None
    assert stale.release() is False
    assert fresh.release() is True

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import deploybot.api.main as api_main
import deploybot.sessions.store as session_store_module
from deploybot.core.config import get_settings
from deploybot.storage.db import check_credential_store, create_schema


def test_health_returns_ok_when_database_and_sessions_are_up(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "check_credential_store", lambda: (True, None))
    monkeypatch.setattr(api_main, "check_session_backend", lambda: (True, None))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["services"]["database"]["ok"] is True
    assert payload["services"]["sessions"]["ok"] is True
    assert response.headers["x-request-id"]


def test_health_is_degraded_when_session_backend_is_down(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "check_credential_store", lambda: (True, None))
    monkeypatch.setattr(api_main, "check_session_backend", lambda: (False, "redis unavailable"))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["services"]["sessions"]["error"] == "redis unavailable"


def test_request_id_header_is_echoed(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "check_credential_store", lambda: (True, None))
    monkeypatch.setattr(api_main, "check_session_backend", lambda: (True, None))

    client = TestClient(api_main.app)
    response = client.get("/health", headers={"x-request-id": "req-123"})

    assert response.headers["x-request-id"] == "req-123"


def test_version_endpoint() -> None:
    client = TestClient(api_main.app)
    response = client.get("/version")

    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == "deploybot"
    assert payload["version"]


def test_credential_store_check_requires_schema() -> None:
    engine = create_engine("sqlite+pysqlite://", poolclass=StaticPool, future=True)

    ok, error = check_credential_store(engine)
    assert ok is False
    assert "stored_users" in error

    create_schema(engine)
    assert check_credential_store(engine) == (True, None)


def test_session_backend_check_pings_redis_only_when_configured(monkeypatch) -> None:
    class DownRedis:
        def ping(self):
            raise ConnectionError("connection refused")

    monkeypatch.setattr(session_store_module, "get_redis_client", lambda: DownRedis())
    monkeypatch.setenv("ENV", "development")

    monkeypatch.setenv("SESSION_BACKEND", "memory")
    get_settings.cache_clear()
    assert session_store_module.check_session_backend() == (True, None)

    monkeypatch.setenv("SESSION_BACKEND", "redis")
    get_settings.cache_clear()
    assert session_store_module.check_session_backend() == (False, "connection refused")

    get_settings.cache_clear()

from __future__ import annotations

from deploybot.control.handlers.connect import USAGE
from deploybot.control.handlers.forget import FORGOTTEN_TEXT
from deploybot.control.prompts import CONFIRM_CALLBACK, PROMPTS
from deploybot.storage.credentials import get_stored_user, read_api_token, upsert_stored_user
from deploybot.storage.models import StoredUser
from tests.control.conftest import ACCOUNT_ID, create_bot_test_context, teardown_bot_test_context


def _stored(context, user_id: str = "90001") -> StoredUser | None:
    with context.session_factory() as session:
        return get_stored_user(session, user_id=user_id)


def test_connect_requires_account_id(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        payload = context.send_text("/connect")
        assert payload["message"] == "usage"
        assert context.gateway.texts() == [USAGE]
    finally:
        teardown_bot_test_context()


def test_connect_saves_encrypted_token_and_deletes_message(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        started = context.send_text(f"/connect {ACCOUNT_ID}", message_id=100)
        assert started["message"] == "ask_connect_token"
        assert context.gateway.sent[-1]["text"] == PROMPTS["ask_connect_token"]

        saved = context.send_text("cf-token-valid", message_id=101)
        assert saved["message"] == "connection_saved"
        assert ("7001", "101") in context.gateway.deleted
        assert "Connected" in context.gateway.sent[-1]["text"]
        assert context.runtime.session_store.get("7001") is None

        stored = _stored(context)
        assert stored is not None
        assert stored.cloud_account_id == ACCOUNT_ID
        assert stored.encrypted_token != "cf-token-valid"
        assert read_api_token(stored) == "cf-token-valid"
    finally:
        teardown_bot_test_context()


def test_connect_rejects_invalid_token_without_saving(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        context.send_text(f"/connect {ACCOUNT_ID}", message_id=100)
        payload = context.send_text("cf-token-bogus", message_id=101)

        assert payload["accepted"] is False
        assert payload["message"] == "auth_invalid"
        assert "API token is invalid" in context.gateway.sent[-1]["text"]
        assert ("7001", "101") in context.gateway.deleted
        assert _stored(context) is None
    finally:
        teardown_bot_test_context()


def test_saved_connection_deploy_generates_secrets_and_records_worker(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        context.send_text(f"/connect {ACCOUNT_ID}", message_id=100)
        context.send_text("cf-token-valid", message_id=101)

        context.send_text("/automation", message_id=102)
        keyboard = context.gateway.sent[-1]["reply_markup"]["inline_keyboard"]
        assert [row[0]["callback_data"] for row in keyboard][-1] == "auth:saved"

        context.press("auth:saved", message_id=5001)
        confirm = context.gateway.sent[-1]
        assert ACCOUNT_ID in confirm["text"]
        assert "saved connection" in confirm["text"]

        payload = context.press(CONFIRM_CALLBACK, message_id=5002)
        assert payload["data"] == {"strategy": "generate"}

        final = context.gateway.sent[-1]["text"]
        assert "Deployed Successfully" in final
        assert context.sleeps == [30.0]
        assert context.api.panel_probes == 0
        assert context.api.uploads_of("metadata") == []

        module_upload = context.api.uploads_of("module")[0]
        secret_names = {item["name"] for item in module_upload.metadata["bindings"] if item["type"] == "secret_text"}
        assert secret_names == {"UUID", "TR_PASS"}

        stored = _stored(context)
        assert stored is not None
        assert stored.worker_name == module_upload.worker_name
    finally:
        teardown_bot_test_context()


def test_saved_button_without_stored_row(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        context.send_text("/automation", message_id=100)
        payload = context.press("auth:saved", message_id=5001)
        assert payload["message"] == "no_saved_connection"
        assert context.gateway.sent[-1]["text"] == PROMPTS["no_saved_connection"]
    finally:
        teardown_bot_test_context()


def test_tampered_saved_token_is_reported_not_used(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        with context.session_factory() as session:
            stored = upsert_stored_user(session, user_id="90001", cloud_account_id=ACCOUNT_ID, api_token="cf-token-valid")
            blob = stored.encrypted_token
            stored.encrypted_token = blob[:-4] + ("AAAA" if not blob.endswith("AAAA") else "BBBB")
            session.commit()

        context.send_text("/automation", message_id=100)
        context.press("auth:saved", message_id=5001)
        payload = context.press(CONFIRM_CALLBACK, message_id=5002)

        assert payload["message"] == "saved_credentials_unreadable"
        assert context.gateway.sent[-1]["text"] == PROMPTS["saved_credentials_unreadable"]
        assert context.api.requests == []
        lock = context.runtime.lock_manager.acquire("7001")
        assert lock is not None
    finally:
        teardown_bot_test_context()


def test_forget_deletes_saved_credentials_and_is_idempotent(monkeypatch) -> None:
    context = create_bot_test_context(monkeypatch)
    try:
        context.send_text(f"/connect {ACCOUNT_ID}", message_id=100)
        context.send_text("cf-token-valid", message_id=101)
        assert _stored(context) is not None

        first = context.send_text("/forget", message_id=102)
        assert first["data"] == {"removed": True}
        assert context.gateway.sent[-1]["text"] == FORGOTTEN_TEXT
        assert _stored(context) is None

        second = context.send_text("/forget", message_id=103)
        assert second["accepted"] is True
        assert second["data"] == {"removed": False}
        assert context.gateway.sent[-1]["text"] == FORGOTTEN_TEXT

        context.send_text("/automation", message_id=104)
        keyboard = context.gateway.sent[-1]["reply_markup"]["inline_keyboard"]
        assert "auth:saved" not in [row[0]["callback_data"] for row in keyboard]
    finally:
        teardown_bot_test_context()

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from fastapi.testclient import TestClient
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import deploybot.api.main as api_main
from deploybot.control.locks import LocalLockManager
from deploybot.control.runtime import BotRuntime, get_runtime
from deploybot.core.config import get_settings
from deploybot.deploy.poller import ReadinessPoller
from deploybot.integrations.cloudflare.client import CloudflareClient
from deploybot.sessions.store import InMemorySessionStore
from deploybot.storage.db import Base, load_models
from deploybot.storage.security import get_token_key


TEST_TOKEN_KEY = "Y4Cpe2s2aQvRIvF8y17kF8s0w58K7tY6xE8DAXmXGJQ="
WEBHOOK_SECRET = "deploybot-test-secret"
CLOUDFLARE_BASE_URL = "https://api.cloudflare.com/client/v4"
ACCOUNT_ID = "0123456789abcdef0123456789abcdef"
PANEL_UUID = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"
PANEL_PASSWORD = "Tr0janPass_2024"
WORKER_SCRIPT = b"export default { async fetch(request, env) { return new Response('panel'); } };\n" * 8
PANEL_HTML = (
    "<html><body><script>"
    f'const proxySettings = {{"UUID": "{PANEL_UUID}", "TR_PASS": "{PANEL_PASSWORD}"}};'
    "</script></body></html>"
)


class FakeRedis:
    def __init__(self) -> None:
        self._store: Dict[str, str] = {}
        self.expirations: Dict[str, Optional[int]] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return False
        self._store[key] = str(value)
        self.expirations[key] = ex
        return True

    def get(self, key: str):
        return self._store.get(key)

    def delete(self, key: str):
        return 1 if self._store.pop(key, None) is not None else 0

    def keys(self, pattern: str):
        if "*" not in pattern:
            return [pattern] if pattern in self._store else []
        prefix = pattern.split("*", 1)[0]
        return [key for key in self._store if key.startswith(prefix)]

    def eval(self, script: str, numkeys: int, key: str, token: str):
        del script, numkeys
        if self._store.get(key) == token:
            self._store.pop(key, None)
            return 1
        return 0


class FakeGateway:
    def __init__(self, *, delete_succeeds: bool = True) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.deleted: List[tuple[str, str]] = []
        self.edited: List[tuple[str, str, Dict[str, Any]]] = []
        self.answered: List[str] = []
        self.delete_succeeds = delete_succeeds
        self._next_message_id = 5000

    def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        markdown: bool = False,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        self._next_message_id += 1
        self.sent.append({"chat_id": chat_id, "text": text, "markdown": markdown, "reply_markup": reply_markup})
        return str(self._next_message_id)

    def edit_message_markup(self, chat_id: str, message_id: str, reply_markup: Dict[str, Any]) -> bool:
        self.edited.append((chat_id, message_id, reply_markup))
        return True

    def delete_message(self, chat_id: str, message_id: str) -> bool:
        self.deleted.append((chat_id, message_id))
        return self.delete_succeeds

    def answer_callback(self, callback_id: str, text: Optional[str] = None) -> bool:
        del text
        self.answered.append(callback_id)
        return True

    def texts(self) -> List[str]:
        return [item["text"] for item in self.sent]


def _json_response(status_code: int, payload: Dict[str, Any]) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def _ok(result: Any = None, **extra: Any) -> httpx.Response:
    return _json_response(200, {"success": True, "errors": [], "result": result, **extra})


def _error(status_code: int, code: int, message: str) -> httpx.Response:
    return _json_response(status_code, {"success": False, "errors": [{"code": code, "message": message}], "result": None})


@dataclass
class ScriptUpload:
    worker_name: str
    kind: str
    metadata: Dict[str, Any]


@dataclass
class FakeCloudflareAPI:
    """In-process stand-in for the Cloudflare API, the script host and the deployed worker."""

    account_id: str = ACCOUNT_ID
    subdomain: Optional[str] = "alice"
    valid_tokens: tuple[str, ...] = ("cf-token-valid",)
    global_keys: Dict[str, str] = field(default_factory=lambda: {"owner@example.com": "global-key-valid"})
    reject_module: bool = False
    reject_classic: bool = False
    kv_conflict: bool = False
    namespaces: List[Dict[str, str]] = field(default_factory=list)
    panel_html: Optional[str] = PANEL_HTML
    script: bytes = WORKER_SCRIPT
    subdomain_enable_fails: bool = False
    requests: List[httpx.Request] = field(default_factory=list)
    uploads: List[ScriptUpload] = field(default_factory=list)
    kv_creates: int = 0
    panel_probes: int = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _authorized(self, request: httpx.Request) -> bool:
        bearer = request.headers.get("Authorization", "")
        if bearer.startswith("Bearer "):
            return bearer[len("Bearer ") :] in self.valid_tokens
        email = request.headers.get("X-Auth-Email")
        key = request.headers.get("X-Auth-Key")
        return email is not None and self.global_keys.get(email) == key

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        if host.endswith(".workers.dev"):
            self.panel_probes += 1
            if self.panel_html is None:
                return httpx.Response(503, text="worker starting")
            return httpx.Response(200, text=self.panel_html)

        if host != "api.cloudflare.com":
            return httpx.Response(200, content=self.script)

        path = path[len("/client/v4") :]
        if path == "/user/tokens/verify":
            if not self._authorized(request):
                return _error(401, 1000, "Invalid API Token")
            return _ok({"id": "token-id", "status": "active"})

        account_prefix = f"/accounts/{self.account_id}"
        if not path.startswith(account_prefix):
            return _error(403, 9109, "Unauthorized to access requested resource")
        if not self._authorized(request):
            if "X-Auth-Key" in request.headers:
                return _error(400, 9103, "Unknown X-Auth-Key or X-Auth-Email")
            return _error(403, 10000, "Authentication error")

        rest = path[len(account_prefix) :]
        if rest == "":
            return _ok({"id": self.account_id, "name": "Alice"})
        if rest == "/storage/kv/namespaces" and request.method == "POST":
            return self._create_namespace(request)
        if rest == "/storage/kv/namespaces" and request.method == "GET":
            return self._list_namespaces(request)
        if rest.startswith("/workers/scripts/") and request.method == "PUT":
            return self._upload(request, rest.rsplit("/", 1)[-1])
        if rest == "/workers/subdomain" and request.method == "PUT":
            if self.subdomain_enable_fails:
                return _error(400, 10034, "subdomain could not be enabled")
            return _ok({"enabled": True})
        if rest == "/workers/subdomain" and request.method == "GET":
            if self.subdomain is None:
                return _error(404, 10007, "This account does not have a workers.dev subdomain")
            return _ok({"subdomain": self.subdomain})
        return _error(404, 7003, "Could not route to the requested path")

    def _create_namespace(self, request: httpx.Request) -> httpx.Response:
        self.kv_creates += 1
        title = json.loads(request.read())["title"]
        if self.kv_conflict or any(item["title"] == title for item in self.namespaces):
            return _error(400, 10014, "a namespace with this account ID and title already exists")
        created = {"id": f"kv-{self.kv_creates}", "title": title}
        self.namespaces.append(created)
        return _ok(created)

    def _list_namespaces(self, request: httpx.Request) -> httpx.Response:
        query = parse_qs(request.url.query.decode("ascii"))
        page = int(query.get("page", ["1"])[0])
        per_page = int(query.get("per_page", ["20"])[0])
        start = (page - 1) * per_page
        total_pages = max(1, -(-len(self.namespaces) // per_page))
        return _ok(
            self.namespaces[start : start + per_page],
            result_info={"page": page, "per_page": per_page, "total_pages": total_pages},
        )

    def _upload(self, request: httpx.Request, worker_name: str) -> httpx.Response:
        body = request.read()
        metadata = _multipart_metadata(request, body)
        if 'name="worker.js"'.encode() in body:
            kind = "module"
        elif b'name="script"' in body:
            kind = "classic"
        else:
            kind = "metadata"
        self.uploads.append(ScriptUpload(worker_name=worker_name, kind=kind, metadata=metadata))

        if kind == "module" and self.reject_module:
            return _error(400, 10021, "Uncaught SyntaxError: expected a classic service worker, modules are not supported")
        if kind == "classic" and self.reject_classic:
            return _error(400, 10021, "Uncaught ReferenceError: addEventListener is not defined")
        return _ok({"id": worker_name})

    def uploads_of(self, kind: str) -> List[ScriptUpload]:
        return [item for item in self.uploads if item.kind == kind]


def _multipart_metadata(request: httpx.Request, body: bytes) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    boundary = content_type.split("boundary=", 1)[-1].encode()
    for part in body.split(b"--" + boundary):
        if b'name="metadata"' not in part:
            continue
        payload = part.split(b"\r\n\r\n", 1)[1].rstrip(b"\r\n")
        return json.loads(payload)
    return {}


def build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def build_cloudflare_client(api: FakeCloudflareAPI) -> CloudflareClient:
    return CloudflareClient(base_url=CLOUDFLARE_BASE_URL, transport=api.transport())


@dataclass
class BotTestContext:
    client: TestClient
    runtime: BotRuntime
    gateway: FakeGateway
    api: FakeCloudflareAPI
    session_factory: sessionmaker
    sleeps: List[float]

    def post_update(self, update: Dict[str, Any], *, secret: Optional[str] = WEBHOOK_SECRET) -> Dict[str, Any]:
        headers = {"X-Telegram-Bot-Api-Secret-Token": secret} if secret is not None else {}
        response = self.client.post("/telegram/webhook", json=update, headers=headers)
        assert response.status_code == 200
        return response.json()

    def send_text(self, text: str, *, chat_id: int = 7001, user_id: int = 90001, message_id: int = 100) -> Dict[str, Any]:
        return self.post_update(
            {
                "update_id": message_id,
                "message": {
                    "message_id": message_id,
                    "chat": {"id": chat_id},
                    "from": {"id": user_id},
                    "text": text,
                },
            }
        )

    def press(self, data: str, *, chat_id: int = 7001, user_id: int = 90001, message_id: int = 200) -> Dict[str, Any]:
        return self.post_update(
            {
                "update_id": 10_000 + message_id,
                "callback_query": {
                    "id": f"cb-{message_id}",
                    "from": {"id": user_id},
                    "data": data,
                    "message": {"message_id": message_id, "chat": {"id": chat_id}},
                },
            }
        )


def configure_test_env(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", TEST_TOKEN_KEY)
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("SESSION_BACKEND", "memory")
    monkeypatch.setenv("SENTRY_DSN", "")
    get_settings.cache_clear()
    get_token_key.cache_clear()


def create_bot_test_context(monkeypatch, *, api: Optional[FakeCloudflareAPI] = None, poller_cycles: int = 2) -> BotTestContext:
    configure_test_env(monkeypatch)

    api = api or FakeCloudflareAPI()
    gateway = FakeGateway()
    session_factory = build_sqlite_session_factory()
    sleeps: List[float] = []

    runtime = BotRuntime(
        settings=get_settings(),
        session_store=InMemorySessionStore(ttl_seconds=600),
        gateway=gateway,
        cloudflare=build_cloudflare_client(api),
        lock_manager=LocalLockManager(ttl_seconds=900),
        session_factory=session_factory,
        poller=ReadinessPoller(
            cycles=poller_cycles,
            interval_seconds=20,
            sleep=sleeps.append,
            transport=api.transport(),
        ),
        sleep=sleeps.append,
    )
    api_main.app.dependency_overrides[get_runtime] = lambda: runtime

    return BotTestContext(
        client=TestClient(api_main.app),
        runtime=runtime,
        gateway=gateway,
        api=api,
        session_factory=session_factory,
        sleeps=sleeps,
    )


def teardown_bot_test_context() -> None:
    api_main.app.dependency_overrides.clear()
    get_settings.cache_clear()
    get_token_key.cache_clear()

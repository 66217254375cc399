"""HTTP client for the Cloudflare Workers control plane."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Dict, List, Mapping, Optional

import httpx

from deploybot.core.config import get_settings
from deploybot.core.logger import get_logger
from deploybot.integrations.cloudflare.auth import ApiTokenAuth, AuthMaterial, auth_headers


logger = get_logger("deploybot.cloudflare")

MODULE_FORMAT = "module"
CLASSIC_FORMAT = "classic"
WORKER_MODULE_NAME = "worker.js"
CLASSIC_BODY_PART = "script"
KV_LIST_PAGE_SIZE = 100
SUBDOMAIN_NOT_FOUND_CODES = {10007}
NAMESPACE_EXISTS_CODES = {10014}


class CloudflareError(RuntimeError):
    """Raised when a Cloudflare request cannot be completed."""


class CloudflareAPIError(CloudflareError):
    """Raised when Cloudflare answers with an error payload."""

    def __init__(self, message: str, *, status_code: int, errors: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = list(errors or [])

    @property
    def error_codes(self) -> set[int]:
        codes: set[int] = set()
        for item in self.errors:
            if isinstance(item, dict) and isinstance(item.get("code"), int):
                codes.add(item["code"])
        return codes

    @property
    def detail(self) -> str:
        if not self.errors:
            return str(self)
        return json.dumps(self.errors, ensure_ascii=False)

    def error_text(self) -> str:
        return f"{self} {self.detail}".lower()


class AuthInvalidError(CloudflareError):
    pass


class AccountUnreachableError(CloudflareError):
    pass


class SubdomainUnavailableError(CloudflareError):
    pass


class FetchError(CloudflareError):
    pass


class UploadRejectedError(CloudflareAPIError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        errors: Optional[List[Any]] = None,
        format_mismatch: bool = False,
    ) -> None:
        super().__init__(message, status_code=status_code, errors=errors)
        self.format_mismatch = format_mismatch


@dataclass(frozen=True)
class CredentialCheck:
    valid: bool
    kind: Optional[str] = None
    reason: Optional[str] = None

    def raise_for_invalid(self) -> None:
        if self.valid:
            return
        message = self.reason or "credential check failed"
        if self.kind == "account_unreachable":
            raise AccountUnreachableError(message)
        raise AuthInvalidError(message)


def _is_format_mismatch(exc: CloudflareAPIError) -> bool:
    text = exc.error_text()
    return "classic" in text or "modules" in text


def _is_namespace_conflict(exc: CloudflareAPIError) -> bool:
    if exc.error_codes & NAMESPACE_EXISTS_CODES:
        return True
    if exc.status_code in {400, 409}:
        return True
    return "already exists" in exc.error_text()


def kv_binding(name: str, namespace_id: str) -> Dict[str, str]:
    return {"type": "kv_namespace", "name": name, "namespace_id": namespace_id}


def secret_binding(name: str, value: str) -> Dict[str, str]:
    return {"type": "secret_text", "name": name, "text": value}


class CloudflareClient:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: int = 30,
        download_timeout_seconds: int = 60,
        compatibility_date: str = "2024-09-23",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.download_timeout_seconds = download_timeout_seconds
        self.compatibility_date = compatibility_date
        self._transport = transport

    def _http(self, *, timeout: float, follow_redirects: bool = False) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self._transport, follow_redirects=follow_redirects)

    def _safe_json(self, response: httpx.Response, *, context: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise CloudflareAPIError(
                f"{context} returned invalid JSON",
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise CloudflareAPIError(f"{context} returned invalid payload format", status_code=response.status_code)
        return payload

    def _request(
        self,
        method: str,
        path: str,
        *,
        auth: AuthMaterial,
        context: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            with self._http(timeout=self.timeout_seconds) as client:
                response = client.request(method, f"{self.base_url}{path}", headers=auth_headers(auth), **kwargs)
        except httpx.HTTPError as exc:
            raise CloudflareError(f"{context} request failed: {exc}") from exc

        payload = self._safe_json(response, context=context)
        if response.status_code >= 400 or payload.get("success") is False:
            errors = payload.get("errors") if isinstance(payload.get("errors"), list) else []
            logger.warning(
                "cloudflare_request_failed",
                context=context,
                status_code=response.status_code,
                errors=errors,
            )
            raise CloudflareAPIError(
                f"{context} failed with status {response.status_code}",
                status_code=response.status_code,
                errors=errors,
            )
        return payload

    def verify_credentials(self, auth: AuthMaterial, account_id: str) -> CredentialCheck:
        """Check the token (bearer auth only) and then the account with that auth."""

        if isinstance(auth, ApiTokenAuth):
            try:
                payload = self._request("GET", "/user/tokens/verify", auth=auth, context="Token verify")
            except CloudflareAPIError as exc:
                return CredentialCheck(valid=False, kind="auth_invalid", reason=f"API token is invalid: {exc.detail}")
            result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
            token_status = str(result.get("status") or "active").lower()
            if token_status != "active":
                return CredentialCheck(valid=False, kind="auth_invalid", reason=f"API token status is {token_status}")

        try:
            self._request("GET", f"/accounts/{account_id}", auth=auth, context="Account lookup")
        except CloudflareAPIError as exc:
            if not isinstance(auth, ApiTokenAuth) and exc.status_code in {400, 401}:
                return CredentialCheck(
                    valid=False,
                    kind="auth_invalid",
                    reason=f"Email or Global API Key rejected: {exc.detail}",
                )
            return CredentialCheck(
                valid=False,
                kind="account_unreachable",
                reason=f"Account {account_id} is not accessible: {exc.detail}",
            )
        return CredentialCheck(valid=True)

    def ensure_kv_namespace(self, auth: AuthMaterial, account_id: str, title: str) -> str:
        try:
            payload = self._request(
                "POST",
                f"/accounts/{account_id}/storage/kv/namespaces",
                auth=auth,
                context="KV namespace create",
                json={"title": title},
            )
        except CloudflareAPIError as exc:
            if not _is_namespace_conflict(exc):
                raise
            try:
                existing = self._find_kv_namespace(auth, account_id, title)
            except CloudflareError as list_exc:
                raise exc from list_exc
            if existing is None:
                raise
            logger.info("kv_namespace_reused", account_id=account_id, title=title, namespace_id=existing)
            return existing

        result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
        namespace_id = str(result.get("id") or "").strip()
        if not namespace_id:
            raise CloudflareAPIError("KV namespace create response missing id", status_code=200)
        return namespace_id

    def _find_kv_namespace(self, auth: AuthMaterial, account_id: str, title: str) -> Optional[str]:
        page = 1
        while True:
            payload = self._request(
                "GET",
                f"/accounts/{account_id}/storage/kv/namespaces",
                auth=auth,
                context="KV namespace list",
                params={"page": page, "per_page": KV_LIST_PAGE_SIZE},
            )
            items = payload.get("result") if isinstance(payload.get("result"), list) else []
            for item in items:
                if isinstance(item, dict) and item.get("title") == title and item.get("id"):
                    return str(item["id"])
            result_info = payload.get("result_info") if isinstance(payload.get("result_info"), dict) else {}
            total_pages = int(result_info.get("total_pages") or 1)
            if not items or page >= total_pages:
                return None
            page += 1

    def download_script(self, url: str) -> bytes:
        try:
            with self._http(timeout=self.download_timeout_seconds, follow_redirects=True) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(f"Worker script download failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise FetchError(f"Worker script download failed with status {response.status_code}")
        return response.content

    def _script_parts(self, script: bytes, *, fmt: str, bindings: List[Dict[str, str]]) -> Dict[str, Any]:
        if fmt == MODULE_FORMAT:
            metadata: Dict[str, Any] = {
                "main_module": WORKER_MODULE_NAME,
                "compatibility_date": self.compatibility_date,
                "bindings": bindings,
            }
            code_part = (WORKER_MODULE_NAME, script, "application/javascript+module")
            code_field = WORKER_MODULE_NAME
        else:
            metadata = {"body_part": CLASSIC_BODY_PART, "bindings": bindings}
            code_part = (CLASSIC_BODY_PART, script, "application/javascript")
            code_field = CLASSIC_BODY_PART
        return {
            "metadata": (None, json.dumps(metadata), "application/json"),
            code_field: code_part,
        }

    def _upload_script(
        self,
        auth: AuthMaterial,
        account_id: str,
        worker_name: str,
        script: bytes,
        *,
        fmt: str,
        bindings: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        return self._request(
            "PUT",
            f"/accounts/{account_id}/workers/scripts/{worker_name}",
            auth=auth,
            context=f"Worker upload ({fmt})",
            files=self._script_parts(script, fmt=fmt, bindings=bindings),
        )

    def deploy_script(
        self,
        auth: AuthMaterial,
        account_id: str,
        worker_name: str,
        script: bytes,
        *,
        kv_bindings: Optional[Mapping[str, str]] = None,
        secrets: Optional[Mapping[str, str]] = None,
    ) -> str:
        """Upload the worker as a module, falling back once to the classic format.

        Returns the format that Cloudflare accepted.
        """

        bindings = self._bindings(kv_bindings, secrets)
        try:
            self._upload_script(auth, account_id, worker_name, script, fmt=MODULE_FORMAT, bindings=bindings)
            return MODULE_FORMAT
        except CloudflareAPIError as exc:
            if not _is_format_mismatch(exc):
                raise UploadRejectedError(
                    f"Worker upload rejected: {exc.detail}",
                    status_code=exc.status_code,
                    errors=exc.errors,
                ) from exc
            logger.warning(
                "worker_module_upload_rejected",
                account_id=account_id,
                worker_name=worker_name,
                errors=exc.errors,
            )

        try:
            self._upload_script(auth, account_id, worker_name, script, fmt=CLASSIC_FORMAT, bindings=bindings)
        except CloudflareAPIError as exc:
            raise UploadRejectedError(
                f"Worker upload rejected in classic format: {exc.detail}",
                status_code=exc.status_code,
                errors=exc.errors,
                format_mismatch=_is_format_mismatch(exc),
            ) from exc
        return CLASSIC_FORMAT

    def enable_subdomain(self, auth: AuthMaterial, account_id: str) -> bool:
        try:
            self._request(
                "PUT",
                f"/accounts/{account_id}/workers/subdomain",
                auth=auth,
                context="Workers subdomain enable",
                json={"enabled": True},
            )
        except CloudflareError as exc:
            logger.warning("workers_subdomain_enable_failed", account_id=account_id, error=str(exc))
            return False
        return True

    def get_subdomain(self, auth: AuthMaterial, account_id: str) -> Optional[str]:
        try:
            payload = self._request(
                "GET",
                f"/accounts/{account_id}/workers/subdomain",
                auth=auth,
                context="Workers subdomain lookup",
            )
        except CloudflareAPIError as exc:
            if exc.status_code == 404 or exc.error_codes & SUBDOMAIN_NOT_FOUND_CODES:
                return None
            raise
        result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
        subdomain = str(result.get("subdomain") or "").strip()
        return subdomain or None

    def set_secrets_and_bindings(
        self,
        auth: AuthMaterial,
        account_id: str,
        worker_name: str,
        *,
        kv_bindings: Optional[Mapping[str, str]] = None,
        secrets: Optional[Mapping[str, str]] = None,
    ) -> None:
        metadata = {"bindings": self._bindings(kv_bindings, secrets)}
        self._request(
            "PUT",
            f"/accounts/{account_id}/workers/scripts/{worker_name}",
            auth=auth,
            context="Worker secrets update",
            files={"metadata": (None, json.dumps(metadata), "application/json")},
        )

    @staticmethod
    def _bindings(
        kv_bindings: Optional[Mapping[str, str]],
        secrets: Optional[Mapping[str, str]],
    ) -> List[Dict[str, str]]:
        bindings = [kv_binding(name, namespace_id) for name, namespace_id in (kv_bindings or {}).items()]
        bindings.extend(secret_binding(name, value) for name, value in (secrets or {}).items())
        return bindings


def get_cloudflare_client() -> CloudflareClient:
    settings = get_settings()
    return CloudflareClient(
        base_url=settings.cloudflare_api_base_url,
        timeout_seconds=settings.cloudflare_api_timeout_seconds,
        download_timeout_seconds=settings.worker_script_download_timeout_seconds,
        compatibility_date=settings.worker_compatibility_date,
    )

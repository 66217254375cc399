"""Provision a panel worker end to end for one conversation."""

from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from deploybot.core.logger import get_logger
from deploybot.core.observability import capture_exception
from deploybot.deploy.messages import render_outcome
from deploybot.deploy.plan import (
    KV_BINDING_NAME,
    CredentialStrategy,
    DeploymentOutcome,
    DeploymentPlan,
    DeploymentRequest,
    OutcomeStatus,
    build_base_url,
    generate_panel_secrets,
    generate_worker_name,
    secrets_as_variables,
)
from deploybot.deploy.scraper import ScrapedSecrets
from deploybot.integrations.cloudflare.client import (
    AccountUnreachableError,
    AuthInvalidError,
    CloudflareAPIError,
    CloudflareClient,
    CloudflareError,
    FetchError,
    SubdomainUnavailableError,
    UploadRejectedError,
)
from deploybot.integrations.telegram.gateway import MessagingGateway
from deploybot.sessions.store import SessionStore
from deploybot.storage.credentials import update_worker_name


logger = get_logger("deploybot.deploy.orchestrator")


class DeploymentError(RuntimeError):
    """Raised for deployment failures that do not come from Cloudflare itself."""


class SecretsPoller(Protocol):
    def poll(self, base_url: str) -> Optional[ScrapedSecrets]: ...


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, AuthInvalidError):
        return "auth_invalid"
    if isinstance(exc, AccountUnreachableError):
        return "account_unreachable"
    if isinstance(exc, UploadRejectedError):
        return "upload_rejected"
    if isinstance(exc, FetchError):
        return "fetch_error"
    if isinstance(exc, CloudflareError):
        return "cloudflare_error"
    return "internal_error"


class DeploymentOrchestrator:
    """Run the provisioning sequence and report exactly one terminal outcome.

    Steps: verify credentials, name the worker, download the script, ensure the
    KV namespace, upload the worker, enable and resolve the workers.dev
    subdomain, then acquire the panel credentials with the request's strategy.
    The deploy lock is always released. The confirmed session is removed if it
    is still stored; a wizard the user started during the run is left alone.
    """

    def __init__(
        self,
        *,
        cloudflare: CloudflareClient,
        gateway: MessagingGateway,
        session_store: SessionStore,
        poller: SecretsPoller,
        script_url: str,
        script_min_bytes: int = 100,
        worker_name_prefix: str = "bpb-worker",
        post_deploy_wait_seconds: float = 30.0,
        session_factory: Optional[sessionmaker] = None,
        sleep: Callable[[float], None] = time.sleep,
        name_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._cloudflare = cloudflare
        self._gateway = gateway
        self._session_store = session_store
        self._poller = poller
        self._script_url = script_url
        self._script_min_bytes = script_min_bytes
        self._worker_name_prefix = worker_name_prefix
        self._post_deploy_wait_seconds = post_deploy_wait_seconds
        self._session_factory = session_factory
        self._sleep = sleep
        self._name_factory = name_factory or (lambda: generate_worker_name(self._worker_name_prefix))

    def _say(self, request: DeploymentRequest, text: str) -> None:
        self._gateway.send_message(request.chat_id, text)

    def run(self, request: DeploymentRequest) -> DeploymentOutcome:
        log = logger.bind(chat_id=request.chat_id, account_id=request.account_id, strategy=request.strategy.value)
        plan: Optional[DeploymentPlan] = None
        try:
            try:
                plan = DeploymentPlan(worker_name=self._name_factory())
                outcome = self._execute(request, plan, log)
            except SubdomainUnavailableError:
                assert plan is not None
                log.warning("workers_subdomain_missing", worker_name=plan.worker_name)
                outcome = DeploymentOutcome(
                    status=OutcomeStatus.MANUAL_INIT,
                    worker_name=plan.worker_name,
                    kv_title=plan.kv_title,
                )
            except (CloudflareError, DeploymentError) as exc:
                log.error(
                    "deployment_failed",
                    worker_name=plan.worker_name if plan else None,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    provider_errors=exc.errors if isinstance(exc, CloudflareAPIError) else None,
                )
                capture_exception(exc)
                outcome = self._failed(plan, exc)
            except Exception as exc:
                log.exception("deployment_crashed", worker_name=plan.worker_name if plan else None)
                capture_exception(exc)
                outcome = self._failed(plan, exc)

            self._gateway.send_message(request.chat_id, render_outcome(outcome), markdown=True)
            log.info("deployment_finished", status=outcome.status.value, worker_name=outcome.worker_name)
            return outcome
        finally:
            self._discard_confirmed_session(request)
            if request.lock is not None:
                request.lock.release()

    def _discard_confirmed_session(self, request: DeploymentRequest) -> None:
        current = self._session_store.get(request.chat_id)
        if current is None or request.session_created_at is None:
            return
        if current.created_at == request.session_created_at:
            self._session_store.delete(request.chat_id)

    def _failed(self, plan: Optional[DeploymentPlan], exc: BaseException) -> DeploymentOutcome:
        detail = exc.detail if isinstance(exc, CloudflareAPIError) else str(exc)
        return DeploymentOutcome(
            status=OutcomeStatus.FAILED,
            worker_name=plan.worker_name if plan else None,
            error=str(exc),
            error_detail=detail,
            error_kind=_error_kind(exc),
        )

    def _execute(self, request: DeploymentRequest, plan: DeploymentPlan, log) -> DeploymentOutcome:
        self._say(request, "🔍 Verifying your Cloudflare credentials...")
        check = self._cloudflare.verify_credentials(request.auth, request.account_id)
        check.raise_for_invalid()
        self._say(request, "✅ Credentials verified! Starting BPB Worker deployment...")

        self._say(request, f"📝 Worker name: {plan.worker_name}")

        self._say(request, "📥 Downloading worker script...")
        plan.script = self._cloudflare.download_script(self._script_url)
        if len(plan.script) < self._script_min_bytes:
            raise DeploymentError(f"Downloaded worker script is invalid ({len(plan.script)} bytes)")

        self._say(request, "🗄️ Creating KV namespace...")
        plan.kv_namespace_id = self._cloudflare.ensure_kv_namespace(request.auth, request.account_id, plan.kv_title)
        self._say(request, "✅ KV namespace ready!")

        if request.strategy == CredentialStrategy.GENERATE:
            generated = generate_panel_secrets()
            plan.variables = secrets_as_variables(generated)

        self._say(request, "⚡ Creating Cloudflare Worker...")
        upload_format = self._cloudflare.deploy_script(
            request.auth,
            request.account_id,
            plan.worker_name,
            plan.script,
            kv_bindings={KV_BINDING_NAME: plan.kv_namespace_id},
            secrets=plan.variables,
        )
        log.info("worker_uploaded", worker_name=plan.worker_name, upload_format=upload_format)
        self._say(request, "✅ Worker created successfully!")

        self._say(request, "🌐 Enabling workers.dev subdomain...")
        if self._cloudflare.enable_subdomain(request.auth, request.account_id):
            self._say(request, "✅ Workers.dev subdomain enabled!")
        else:
            self._say(request, "⚠️ Subdomain configuration failed - please enable workers.dev manually.")

        subdomain = self._cloudflare.get_subdomain(request.auth, request.account_id)
        if subdomain is None:
            raise SubdomainUnavailableError("Account has no workers.dev subdomain")

        plan.base_url = build_base_url(plan.worker_name, subdomain)
        if request.persist_worker_name and request.user_id:
            self._persist_worker_name(request.user_id, plan.worker_name, log)
        self._say(request, f"🔗 Worker URL: {plan.base_url}")

        if request.strategy == CredentialStrategy.GENERATE:
            self._say(request, "⏳ Waiting for the worker to initialize...")
            self._sleep(self._post_deploy_wait_seconds)
            return self._success(plan, generated)

        self._say(request, "⏳ Waiting for the panel to generate its credentials...")
        found = self._poller.poll(plan.base_url)
        if found is None:
            return DeploymentOutcome(
                status=OutcomeStatus.MANUAL_FOLLOWUP,
                worker_name=plan.worker_name,
                worker_url=plan.base_url,
                panel_url=plan.panel_url,
                kv_title=plan.kv_title,
            )

        self._say(request, "⚙️ Setting secrets and binding KV namespace...")
        plan.variables = secrets_as_variables(found)
        self._cloudflare.set_secrets_and_bindings(
            request.auth,
            request.account_id,
            plan.worker_name,
            kv_bindings={KV_BINDING_NAME: plan.kv_namespace_id},
            secrets=plan.variables,
        )
        self._say(request, "✅ Secrets and bindings configured successfully!")
        return self._success(plan, found)

    def _success(self, plan: DeploymentPlan, found: ScrapedSecrets) -> DeploymentOutcome:
        return DeploymentOutcome(
            status=OutcomeStatus.SUCCESS,
            worker_name=plan.worker_name,
            worker_url=plan.base_url,
            panel_url=plan.panel_url,
            kv_title=plan.kv_title,
            secrets=found,
        )

    def _persist_worker_name(self, user_id: str, worker_name: str, log) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                update_worker_name(session, user_id=user_id, worker_name=worker_name)
        except SQLAlchemyError as exc:
            log.warning("worker_name_persist_failed", user_id=user_id, error=str(exc))

"""Process-wide collaborators shared by the webhook and deployments."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import time
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from deploybot.control.locks import LockManager, build_lock_manager
from deploybot.core.config import Settings, get_settings
from deploybot.deploy.orchestrator import DeploymentOrchestrator, SecretsPoller
from deploybot.deploy.plan import DeploymentOutcome, DeploymentRequest
from deploybot.deploy.poller import ReadinessPoller
from deploybot.integrations.cloudflare.client import CloudflareClient, get_cloudflare_client
from deploybot.integrations.telegram.gateway import MessagingGateway, get_telegram_gateway
from deploybot.sessions.store import SessionStore, build_session_store
from deploybot.sessions.sweeper import SessionSweeper
from deploybot.storage.db import get_session_factory


@dataclass
class BotRuntime:
    settings: Settings
    session_store: SessionStore
    gateway: MessagingGateway
    cloudflare: CloudflareClient
    lock_manager: LockManager
    session_factory: sessionmaker
    poller: Optional[SecretsPoller] = None
    sleep: Callable[[float], None] = time.sleep

    def build_poller(self) -> SecretsPoller:
        if self.poller is not None:
            return self.poller
        return ReadinessPoller(
            cycles=self.settings.poller_cycles,
            interval_seconds=self.settings.poller_interval_seconds,
            request_timeout_seconds=self.settings.poller_request_timeout_seconds,
            sleep=self.sleep,
        )

    def build_orchestrator(self) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            cloudflare=self.cloudflare,
            gateway=self.gateway,
            session_store=self.session_store,
            poller=self.build_poller(),
            script_url=self.settings.worker_script_url,
            script_min_bytes=self.settings.worker_script_min_bytes,
            worker_name_prefix=self.settings.worker_name_prefix,
            post_deploy_wait_seconds=self.settings.post_deploy_wait_seconds,
            session_factory=self.session_factory,
            sleep=self.sleep,
        )

    def run_deployment(self, request: DeploymentRequest) -> DeploymentOutcome:
        return self.build_orchestrator().run(request)

    def build_sweeper(self) -> SessionSweeper:
        return SessionSweeper(
            self.session_store,
            interval_seconds=self.settings.session_sweep_interval_seconds,
        )


@lru_cache(maxsize=1)
def get_runtime() -> BotRuntime:
    settings = get_settings()
    return BotRuntime(
        settings=settings,
        session_store=build_session_store(),
        gateway=get_telegram_gateway(),
        cloudflare=get_cloudflare_client(),
        lock_manager=build_lock_manager(),
        session_factory=get_session_factory(),
    )

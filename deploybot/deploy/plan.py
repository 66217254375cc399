"""Deployment request/plan/outcome contracts and naming rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import re
import secrets
import time
from typing import TYPE_CHECKING, Dict, Optional
import uuid

from deploybot.deploy.scraper import ScrapedSecrets
from deploybot.integrations.cloudflare.auth import AuthMaterial

if TYPE_CHECKING:
    from deploybot.control.locks import DeployLockHandle


WORKER_NAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
KV_BINDING_NAME = "kv"
UUID_SECRET_NAME = "UUID"
PASSWORD_SECRET_NAME = "TR_PASS"


class CredentialStrategy(str, Enum):
    SCRAPE = "scrape"
    GENERATE = "generate"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    MANUAL_FOLLOWUP = "manual_followup"
    MANUAL_INIT = "manual_init"
    FAILED = "failed"


@dataclass(frozen=True)
class DeploymentRequest:
    """Everything one run needs, copied out of the session before it starts."""

    chat_id: str
    account_id: str
    auth: AuthMaterial
    strategy: CredentialStrategy
    user_id: Optional[str] = None
    persist_worker_name: bool = False
    lock: Optional["DeployLockHandle"] = None
    # created_at of the session that was confirmed; cleanup removes only that one.
    session_created_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"DeploymentRequest(chat_id={self.chat_id!r}, account_id={self.account_id!r}, "
            f"strategy={self.strategy.value}, persist_worker_name={self.persist_worker_name})"
        )


@dataclass
class DeploymentPlan:
    worker_name: str
    script: bytes = b""
    kv_namespace_id: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)
    base_url: Optional[str] = None

    @property
    def kv_title(self) -> str:
        return f"{self.worker_name}-kv"

    @property
    def panel_url(self) -> Optional[str]:
        if self.base_url is None:
            return None
        return f"{self.base_url}/panel"


@dataclass(frozen=True)
class DeploymentOutcome:
    status: OutcomeStatus
    worker_name: Optional[str] = None
    worker_url: Optional[str] = None
    panel_url: Optional[str] = None
    kv_title: Optional[str] = None
    secrets: Optional[ScrapedSecrets] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None
    error_kind: Optional[str] = None


def normalize_prefix(prefix: str) -> str:
    cleaned = re.sub(r"[^a-z0-9-]+", "-", prefix.strip().lower()).strip("-")
    return cleaned or "worker"


def generate_worker_name(prefix: str, *, now: Optional[float] = None, suffix: Optional[str] = None) -> str:
    timestamp = int((time.time() if now is None else now) * 1000)
    random_suffix = suffix if suffix is not None else secrets.token_hex(3)
    name = f"{normalize_prefix(prefix)}-{timestamp}-{random_suffix}".lower()
    if not WORKER_NAME_RE.match(name):
        raise ValueError(f"Generated worker name is not valid for Cloudflare: {name}")
    return name


def is_valid_worker_name(name: str) -> bool:
    return bool(WORKER_NAME_RE.match(name or ""))


def build_base_url(worker_name: str, subdomain: str) -> str:
    return f"https://{worker_name}.{subdomain}.workers.dev"


def generate_panel_secrets() -> ScrapedSecrets:
    return ScrapedSecrets(uuid=str(uuid.uuid4()), tr_pass=secrets.token_hex(16))


def secrets_as_variables(found: ScrapedSecrets) -> Dict[str, str]:
    return {UUID_SECRET_NAME: found.uuid, PASSWORD_SECRET_NAME: found.tr_pass}

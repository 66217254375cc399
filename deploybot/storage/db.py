"""Database wiring for saved Cloudflare connections."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from deploybot.core.config import get_settings


Base = declarative_base()

STORED_USERS_TABLE = "stored_users"


def _prepare_sqlite_path(database_url: str) -> None:
    database = make_url(database_url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    database_url = get_settings().database_url
    kwargs: dict[str, object] = {"pool_pre_ping": True, "future": True}

    if database_url.startswith("sqlite"):
        # Deployments run on background threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        _prepare_sqlite_path(database_url)

    return create_engine(database_url, **kwargs)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


def check_credential_store(engine: Optional[Engine] = None) -> Tuple[bool, Optional[str]]:
    """Report whether the saved-connection table is reachable."""

    try:
        if not inspect(engine or get_engine()).has_table(STORED_USERS_TABLE):
            return False, f"table {STORED_USERS_TABLE} is missing"
        return True, None
    except Exception as exc:  # pragma: no cover
        return False, str(exc)


def load_models() -> None:
    import deploybot.storage.models  # noqa: F401


def create_schema(engine: Optional[Engine] = None) -> None:
    load_models()
    Base.metadata.create_all(engine or get_engine())

"""Saved Cloudflare connections keyed by Telegram user."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from deploybot.storage.models import StoredUser
from deploybot.storage.security import decrypt_token, encrypt_token


def get_stored_user(session: Session, *, user_id: str) -> Optional[StoredUser]:
    return session.get(StoredUser, user_id)


def upsert_stored_user(
    session: Session,
    *,
    user_id: str,
    cloud_account_id: str,
    api_token: str,
) -> StoredUser:
    """Insert or overwrite the account and token; an existing worker name is kept."""

    encrypted = encrypt_token(api_token)
    now = datetime.now(timezone.utc)
    existing = session.get(StoredUser, user_id)
    if existing is None:
        existing = StoredUser(
            user_id=user_id,
            cloud_account_id=cloud_account_id,
            encrypted_token=encrypted,
        )
        session.add(existing)
    else:
        existing.cloud_account_id = cloud_account_id
        existing.encrypted_token = encrypted
        existing.updated_at = now

    session.commit()
    return existing


def update_worker_name(session: Session, *, user_id: str, worker_name: str) -> bool:
    existing = session.get(StoredUser, user_id)
    if existing is None:
        return False
    existing.worker_name = worker_name
    existing.updated_at = datetime.now(timezone.utc)
    session.commit()
    return True


def delete_stored_user(session: Session, *, user_id: str) -> bool:
    existing = session.get(StoredUser, user_id)
    if existing is None:
        return False
    session.delete(existing)
    session.commit()
    return True


def read_api_token(stored: StoredUser) -> str:
    """Decrypt the saved token; raises CredentialIntegrityError when unreadable."""

    return decrypt_token(stored.encrypted_token)

"""SQLAlchemy ORM models for saved Cloudflare connections."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from deploybot.storage.db import STORED_USERS_TABLE, Base


class StoredUser(Base):
    __tablename__ = STORED_USERS_TABLE

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    cloud_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    encrypted_token: Mapped[str] = mapped_column(Text, nullable=False)
    worker_name: Mapped[Optional[str]] = mapped_column(String(63), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

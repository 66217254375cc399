"""Schemas for the Telegram webhook response."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TelegramWebhookResponse(BaseModel):
    accepted: bool
    request_id: str
    kind: Optional[str] = None
    command: Optional[str] = None
    status: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)

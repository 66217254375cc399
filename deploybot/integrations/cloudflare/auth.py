"""Cloudflare credential variants and their request headers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class ApiTokenAuth:
    token: str

    def __repr__(self) -> str:
        return "ApiTokenAuth(token=***)"


@dataclass(frozen=True)
class GlobalKeyAuth:
    email: str
    key: str

    def __repr__(self) -> str:
        return f"GlobalKeyAuth(email={self.email!r}, key=***)"


AuthMaterial = Union[ApiTokenAuth, GlobalKeyAuth]


def auth_headers(auth: AuthMaterial) -> Dict[str, str]:
    if isinstance(auth, ApiTokenAuth):
        return {"Authorization": f"Bearer {auth.token}"}
    if isinstance(auth, GlobalKeyAuth):
        return {"X-Auth-Email": auth.email, "X-Auth-Key": auth.key}
    raise TypeError(f"Unsupported auth material: {type(auth).__name__}")


def auth_to_dict(auth: Optional[AuthMaterial]) -> Optional[Dict[str, str]]:
    if auth is None:
        return None
    if isinstance(auth, ApiTokenAuth):
        return {"kind": "token", "token": auth.token}
    return {"kind": "global_key", "email": auth.email, "key": auth.key}


def auth_from_dict(raw: Any) -> Optional[AuthMaterial]:
    if not isinstance(raw, dict):
        return None
    kind = raw.get("kind")
    if kind == "token" and raw.get("token"):
        return ApiTokenAuth(token=str(raw["token"]))
    if kind == "global_key" and raw.get("email") and raw.get("key"):
        return GlobalKeyAuth(email=str(raw["email"]), key=str(raw["key"]))
    return None

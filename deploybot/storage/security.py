"""Authenticated encryption for Cloudflare API tokens at rest.

Blobs are AES-256-GCM with the layout ``nonce(12) || tag(16) || ciphertext``,
urlsafe-base64 encoded so they fit a text column. The key is derived from the
configured master secret, so changing that secret invalidates every stored
token; there is no rotation.
"""

from __future__ import annotations

import base64
import binascii
from functools import lru_cache
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from deploybot.core.config import get_settings


NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


class CredentialIntegrityError(ValueError):
    """Raised when a sealed credential cannot be authenticated or decoded."""


def _derive_key(material: str) -> bytes:
    return hashlib.sha256(material.encode("utf-8")).digest()


@lru_cache(maxsize=1)
def get_token_key() -> bytes:
    settings = get_settings()
    seed = settings.token_encryption_key.strip() or settings.secret_key or "deploybot-dev-token-key"
    return _derive_key(seed)


def _require_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")


def seal(plaintext: str, key: bytes) -> str:
    _require_key(key)
    nonce = os.urandom(NONCE_SIZE)
    # AESGCM appends the tag to the ciphertext; the stored layout puts it first.
    encrypted = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = encrypted[:-TAG_SIZE], encrypted[-TAG_SIZE:]
    blob = nonce + tag + ciphertext
    return base64.urlsafe_b64encode(blob).decode("ascii")


def open_sealed(blob: str, key: bytes) -> str:
    _require_key(key)
    try:
        raw = base64.urlsafe_b64decode(blob.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise CredentialIntegrityError("Invalid sealed credential payload") from exc

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise CredentialIntegrityError("Invalid sealed credential payload")
    nonce = raw[:NONCE_SIZE]
    tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
    ciphertext = raw[NONCE_SIZE + TAG_SIZE :]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CredentialIntegrityError("Sealed credential failed authentication") from exc
    return plaintext.decode("utf-8")


def encrypt_token(secret_value: str) -> str:
    return seal(secret_value, get_token_key())


def decrypt_token(ciphertext: str) -> str:
    return open_sealed(ciphertext, get_token_key())

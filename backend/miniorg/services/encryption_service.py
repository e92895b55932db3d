"""Fernet encryption for OAuth tokens stored on calendar connections.

``APP_ENCRYPTION_KEY`` holds one or more comma-separated urlsafe base64
Fernet keys. The first key encrypts; every key is tried on decrypt, so a new
key can be prepended. Connections still under an older key are re-encrypted
when their tokens are next read (see ``calendar_service``).
Without any key a process-local one is generated and stored tokens become
unreadable after a restart.
"""
from __future__ import annotations
import logging
import os
from functools import lru_cache
from typing import List, Optional, Sequence, Union

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)

KeyLike = Union[bytes, str]


class TokenDecryptError(ValueError):
    pass


def _parse_keys(raw: Union[KeyLike, Sequence[KeyLike], None]) -> List[bytes]:
    if not raw:
        return []
    if isinstance(raw, bytes):
        raw = raw.decode()
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    keys = []
    for part in parts:
        if isinstance(part, str):
            part = part.strip().encode()
        if part:
            keys.append(part)
    return keys


class EncryptionService:
    ENV_KEY = "APP_ENCRYPTION_KEY"

    def __init__(self, key: Union[KeyLike, Sequence[KeyLike], None] = None):
        keys = _parse_keys(key or os.getenv(self.ENV_KEY))
        if not keys:
            logger.warning("%s is not set; using an ephemeral key", self.ENV_KEY)
            generated = Fernet.generate_key()
            os.environ[self.ENV_KEY] = generated.decode()
            keys = [generated]
        self._primary = Fernet(keys[0])
        self._fernet = MultiFernet([Fernet(k) for k in keys])

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise TokenDecryptError("INVALID_ENCRYPTED_VALUE") from exc

    def decrypt_optional(self, token: Optional[str]) -> Optional[str]:
        return self.decrypt(token) if token else None

    def is_stale(self, token: str) -> bool:
        """True when ``token`` opens only under one of the older keys."""
        data = token.encode()
        try:
            self._primary.decrypt(data)
        except InvalidToken:
            try:
                self._fernet.decrypt(data)
            except InvalidToken:
                return False
            return True
        return False

    def rotate(self, token: str) -> str:
        """Re-encrypt ``token`` under the primary key."""
        try:
            return self._fernet.rotate(token.encode()).decode()
        except InvalidToken as exc:
            raise TokenDecryptError("INVALID_ENCRYPTED_VALUE") from exc


@lru_cache(maxsize=1)
def get_encryption_service() -> EncryptionService:
    return EncryptionService()

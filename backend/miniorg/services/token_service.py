"""Signed tokens for the desktop client and the OAuth ``state`` parameter.

Session tokens live 7 days under the desktop audience; state tokens live
5 minutes under a separate audience so one can never be replayed as the other.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from jose import JWTError, jwt

from ..config import Settings, get_settings

ALGORITHM = "HS256"
SESSION_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
STATE_TOKEN_TTL_SECONDS = 5 * 60
STATE_PURPOSE_CALENDAR = "calendar"
STATE_PURPOSE_SIGNIN = "signin"


class TokenInvalid(Exception):
    """Signature, expiry, issuer, audience or shape check failed."""


@dataclass
class StateClaims:
    user_id: Optional[str]
    nonce: str
    callback_url: str
    source: str
    purpose: str = STATE_PURPOSE_CALENDAR


class TokenService:
    def __init__(self, settings: Optional[Settings] = None, clock=time.time):
        self.settings = settings or get_settings()
        self.clock = clock

    def _sign(self, claims: Dict[str, Any], audience: str, ttl_seconds: int) -> Tuple[str, int]:
        now = int(self.clock())
        expires_at = now + ttl_seconds
        payload = dict(claims)
        payload.update({"iat": now, "exp": expires_at, "iss": self.settings.jwt_issuer, "aud": audience})
        return jwt.encode(payload, self.settings.auth_secret, algorithm=ALGORITHM), expires_at

    def _verify(self, token: str, audience: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self.settings.auth_secret,
                algorithms=[ALGORITHM],
                audience=audience,
                issuer=self.settings.jwt_issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid(str(exc)) from exc
        # Expiry is checked against the injected clock so tests can move time.
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self.clock():
            raise TokenInvalid("token expired")
        if not payload.get("sub"):
            raise TokenInvalid("missing subject")
        return payload

    # --- session tokens (desktop client) ---
    def issue_session_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        picture: Optional[str] = None,
    ) -> Tuple[str, int]:
        claims = {"sub": user_id, "email": email, "name": name, "picture": picture}
        return self._sign(claims, self.settings.jwt_audience, SESSION_TOKEN_TTL_SECONDS)

    def verify_session_token(self, token: str) -> Dict[str, Any]:
        return self._verify(token, self.settings.jwt_audience)

    def refresh_session_token(self, token: str) -> Tuple[str, int]:
        payload = self.verify_session_token(token)
        return self.issue_session_token(
            payload["sub"], payload.get("email"), payload.get("name"), payload.get("picture")
        )

    # --- OAuth state tokens ---
    def issue_state_token(
        self,
        user_id: Optional[str],
        callback_url: str = "/settings/calendars",
        source: str = "web",
        nonce: Optional[str] = None,
        purpose: str = STATE_PURPOSE_CALENDAR,
    ) -> Tuple[str, str]:
        """Sign-in states have no user yet; their subject is the nonce itself."""
        nonce = nonce or str(uuid.uuid4())
        claims = {
            "sub": user_id or nonce,
            "nonce": nonce,
            "callbackUrl": callback_url,
            "source": source,
            "purpose": purpose,
        }
        token, _ = self._sign(claims, self.settings.state_audience, STATE_TOKEN_TTL_SECONDS)
        return token, nonce

    def verify_state_token(self, token: str) -> StateClaims:
        payload = self._verify(token, self.settings.state_audience)
        nonce = payload.get("nonce")
        if not nonce:
            raise TokenInvalid("missing nonce")
        purpose = payload.get("purpose") or STATE_PURPOSE_CALENDAR
        return StateClaims(
            user_id=payload["sub"] if purpose == STATE_PURPOSE_CALENDAR else None,
            nonce=nonce,
            callback_url=payload.get("callbackUrl") or "/settings/calendars",
            source=payload.get("source") or "web",
            purpose=purpose,
        )

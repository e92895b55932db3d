"""Password hashing, password/email validation and one-time codes."""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from passlib.context import CryptContext

from ..utils.timeutil import utcnow

BCRYPT_ROUNDS = 12
CODE_EXPIRY_MINUTES = 15
MIN_PASSWORD_LENGTH = 8
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(raw: str) -> str:
    return pwd_context.hash(raw)


def verify_password(raw: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(raw, hashed)
    except (ValueError, TypeError):
        # unknown / malformed hash format
        return False


@dataclass
class PasswordValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)


def validate_password(password: str) -> PasswordValidation:
    """Check every strength rule and report all violations, not just the first."""
    errors: List[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one digit")
    if not any(ch in PASSWORD_SYMBOLS for ch in password):
        errors.append("Password must contain at least one special character")
    return PasswordValidation(valid=not errors, errors=errors)


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def get_code_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=CODE_EXPIRY_MINUTES)

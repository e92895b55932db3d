import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import models
from ..db.upsert import upsert_returning_id
from ..domain.enums import TokenType
from ..errors import AccountConflictError, AuthenticationError, ValidationAppError
from ..ports.calendar_provider import ExternalIdentity
from ..utils.timeutil import utcnow
from .credentials import (
    generate_code,
    get_code_expiry,
    hash_password,
    normalize_email,
    validate_email,
    validate_password,
    verify_password,
)
from .mailer import Mailer, send_password_reset_email, send_verification_email

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_token"


def _require_email(email: Optional[str]) -> str:
    if not email or not validate_email(email.strip()):
        raise ValidationAppError("INVALID_EMAIL", "Invalid email address")
    return normalize_email(email)


def _require_strong_password(password: Optional[str]) -> str:
    result = validate_password(password or "")
    if not result.valid:
        raise ValidationAppError("WEAK_PASSWORD", result.errors[0], extra={"errors": result.errors})
    return password


class AuthService:
    def __init__(self, db: Session, mailer: Optional[Mailer] = None):
        self.db = db
        self.mailer = mailer

    # --- lookups ---
    def get_user_by_email(self, email: str) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.email == normalize_email(email)).first()

    def get_user(self, user_id: str) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.id == user_id).first()

    # --- password login ---
    def authenticate_user(self, email: str, password: str) -> models.User:
        if not email or not password:
            raise AccountConflictError("INVALID_CREDENTIALS", "Email and password are required")
        user = self.get_user_by_email(email)
        if user and not user.hashed_password and user.oauth_provider == "google":
            raise AccountConflictError(
                "USE_GOOGLE", "This email is linked to a Google account. Please sign in with Google."
            )
        if not user or not verify_password(password, user.hashed_password):
            raise AuthenticationError("INVALID_CREDENTIALS", "Invalid email or password")
        if not user.email_verified_at:
            raise AuthenticationError("EMAIL_NOT_VERIFIED", "Email not verified")
        return user

    # --- Google sign-in ---
    def sign_in_with_google(self, identity: ExternalIdentity) -> models.User:
        """Find the account for a Google identity, creating it on first sign-in.

        Google vouches for the address. An existing account whose address was
        never verified loses its password: it may have been set by someone
        else.
        """
        if not identity.email or not identity.email_verified:
            raise AuthenticationError("GOOGLE_EMAIL_UNVERIFIED", "Google account email is not verified")
        user = self.get_user_by_email(identity.email)
        if user is None:
            user = models.User(email=normalize_email(identity.email))
            self.db.add(user)
        if not user.email_verified_at:
            user.hashed_password = None
            user.email_verified_at = utcnow()
        user.oauth_provider = "google"
        user.name = user.name or identity.name
        user.image = user.image or identity.picture
        self.db.commit()
        self.db.refresh(user)
        logger.info("Google sign-in for user %s", user.id)
        return user

    # --- web sessions ---
    def create_web_session(self, user: models.User) -> models.WebSession:
        ttl = timedelta(days=get_settings().session_ttl_days)
        session = models.WebSession(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            expires_at=utcnow() + ttl,
        )
        self.db.add(session)
        self.db.commit()
        return session

    def resolve_web_session(self, token: str) -> Optional[models.WebSession]:
        session = self.db.query(models.WebSession).filter(models.WebSession.token == token).first()
        if not session:
            return None
        if session.expires_at <= utcnow():
            self.db.delete(session)
            self.db.commit()
            return None
        return session

    def delete_web_session(self, token: str) -> None:
        self.db.query(models.WebSession).filter(models.WebSession.token == token).delete()
        self.db.commit()

    # --- signup & verification ---
    def signup(self, email: Optional[str], password: Optional[str]) -> models.User:
        email = _require_email(email)
        password = _require_strong_password(password)

        user = self.get_user_by_email(email)
        if user:
            if user.oauth_provider == "google" and not user.hashed_password:
                raise AccountConflictError(
                    "USE_GOOGLE", "This email is already linked to a Google account. Please sign in with Google."
                )
            if user.hashed_password:
                raise AccountConflictError("EMAIL_EXISTS", "Email already in use")
            user.hashed_password = hash_password(password)
        else:
            user = models.User(email=email, hashed_password=hash_password(password))
            self.db.add(user)
        self.db.flush()

        code = self.replace_verification_token(email, TokenType.EMAIL)
        self.db.commit()
        send_verification_email(self._mailer(), email, code)
        return user

    def resend_verification(self, email: Optional[str]) -> None:
        email = _require_email(email)
        user = self.get_user_by_email(email)
        # Unknown or password-less accounts get the same generic success.
        if not user or not user.hashed_password:
            logger.info("Resend verification ignored for unknown or password-less account")
            return
        if user.email_verified_at:
            raise ValidationAppError("ALREADY_VERIFIED", "Email already verified")
        code = self.replace_verification_token(email, TokenType.EMAIL)
        self.db.commit()
        send_verification_email(self._mailer(), email, code)

    def verify_email(self, email: Optional[str], code: Optional[str]) -> models.User:
        if not email or not code:
            raise ValidationAppError("MISSING_FIELDS", "Email and code are required")
        email = normalize_email(email)
        self.consume_code(email, code, TokenType.EMAIL)
        user = self.get_user_by_email(email)
        if not user:
            raise AccountConflictError("INVALID_CODE", "Invalid code")
        user.email_verified_at = utcnow()
        self.db.commit()
        return user

    # --- password reset ---
    def forgot_password(self, email: Optional[str]) -> None:
        email = _require_email(email)
        user = self.get_user_by_email(email)
        if not user or not user.hashed_password:
            logger.info("Password reset ignored for unknown or password-less account")
            return
        code = self.replace_verification_token(email, TokenType.PASSWORD_RESET)
        self.db.commit()
        send_password_reset_email(self._mailer(), email, code)

    def verify_reset_code(self, email: Optional[str], code: Optional[str]) -> None:
        email = _require_email(email)
        if not code:
            raise ValidationAppError("MISSING_CODE", "Code is required")
        # Check only: the token stays valid for the reset itself.
        self.check_code(email, code, TokenType.PASSWORD_RESET, delete_expired=False)

    def reset_password(self, email: Optional[str], code: Optional[str], password: Optional[str]) -> None:
        email = _require_email(email)
        if not code:
            raise ValidationAppError("MISSING_CODE", "Code is required")
        password = _require_strong_password(password)
        self.consume_code(email, code, TokenType.PASSWORD_RESET)
        user = self.get_user_by_email(email)
        if not user:
            raise AccountConflictError("INVALID_CODE", "Invalid code")
        user.hashed_password = hash_password(password)
        self.db.commit()

    # --- verification tokens ---
    def replace_verification_token(self, identifier: str, token_type: TokenType) -> str:
        """Atomically replace the active (identifier, type) token and return the new code."""
        code = generate_code()
        upsert_returning_id(
            self.db,
            models.VerificationToken,
            values={
                "id": models.gen_uuid(),
                "identifier": identifier,
                "type": token_type.value,
                "token": code,
                "expires": get_code_expiry(),
                "created_at": utcnow(),
            },
            conflict_on=("identifier", "type"),
            update_fields=("token", "expires", "created_at"),
        )
        return code

    def find_token(self, identifier: str, token_type: TokenType) -> Optional[models.VerificationToken]:
        return (
            self.db.query(models.VerificationToken)
            .filter(
                models.VerificationToken.identifier == identifier,
                models.VerificationToken.type == token_type.value,
            )
            .populate_existing()
            .first()
        )

    def check_code(
        self, identifier: str, code: str, token_type: TokenType, delete_expired: bool = True
    ) -> models.VerificationToken:
        token = self.find_token(identifier, token_type)
        if not token or not secrets.compare_digest(token.token, str(code)):
            raise AccountConflictError("INVALID_CODE", "Invalid code")
        if utcnow() > token.expires:
            if delete_expired:
                self.db.delete(token)
                self.db.commit()
            raise AccountConflictError("CODE_EXPIRED", "Code expired")
        return token

    def consume_code(self, identifier: str, code: str, token_type: TokenType) -> None:
        token = self.check_code(identifier, code, token_type)
        self.db.delete(token)
        self.db.flush()

    def _mailer(self) -> Mailer:
        if self.mailer is None:
            from .mailer import get_mailer

            self.mailer = get_mailer()
        return self.mailer

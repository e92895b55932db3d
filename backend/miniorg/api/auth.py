import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import models
from ..db.session import get_db
from ..errors import AuthenticationError
from ..services.auth_service import SESSION_COOKIE_NAME, AuthService
from ..services.mailer import Mailer
from ..services.token_service import TokenInvalid, TokenService
from .deps import get_mailer_dep, get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@dataclass
class Caller:
    user_id: str
    source: str  # 'desktop' | 'web'
    timezone: str = "UTC"


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if not header or not header.lower().startswith("bearer "):
        return None
    return header.split(None, 1)[1].strip() or None


def resolve_caller(request: Request, db: Session, tokens: Optional[TokenService] = None) -> Optional[Caller]:
    """Bearer JWT (desktop) first, then the web session cookie; None when neither is valid."""
    token = bearer_token(request)
    if token:
        try:
            payload = (tokens or TokenService()).verify_session_token(token)
        except TokenInvalid as exc:
            logger.debug("Ignoring invalid bearer token: %s", exc)
        else:
            user = db.query(models.User).filter(models.User.id == payload["sub"]).first()
            if user:
                return Caller(user.id, "desktop", user.timezone or "UTC")

    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie:
        session = AuthService(db).resolve_web_session(cookie)
        if session:
            user = db.query(models.User).filter(models.User.id == session.user_id).first()
            if user:
                return Caller(user.id, "web", user.timezone or "UTC")
    return None


def get_caller(
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> Caller:
    caller = resolve_caller(request, db, tokens)
    if caller is None:
        raise AuthenticationError()
    return caller


def user_out(user: models.User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "image": user.image}


def set_session_cookie(response: Response, request: Request, session: models.WebSession) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session.token,
        max_age=get_settings().session_ttl_days * 24 * 60 * 60,
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
        path="/",
    )


class CredentialsIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class EmailIn(BaseModel):
    email: Optional[str] = None


class CodeIn(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None


class ResetPasswordIn(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None
    password: Optional[str] = None


@router.post("/login")
def login(body: CredentialsIn, request: Request, response: Response, db: Session = Depends(get_db)):
    auth = AuthService(db)
    user = auth.authenticate_user(body.email, body.password)
    set_session_cookie(response, request, auth.create_web_session(user))
    return {"user": user_out(user)}


@router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        AuthService(db).delete_web_session(token)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"success": True}


@router.get("/me")
def me(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    user = AuthService(db).get_user(caller.user_id)
    return {"user": user_out(user), "source": caller.source}


@router.post("/signup", status_code=201)
def signup(body: CredentialsIn, db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer_dep)):
    user = AuthService(db, mailer).signup(body.email, body.password)
    return {"success": True, "message": "Verification code sent", "email": user.email}


@router.post("/verify-email")
def verify_email(body: CodeIn, db: Session = Depends(get_db)):
    AuthService(db).verify_email(body.email, body.code)
    return {"success": True, "message": "Email verified"}


@router.post("/resend-verification")
def resend_verification(body: EmailIn, db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer_dep)):
    AuthService(db, mailer).resend_verification(body.email)
    return {"success": True, "message": "If an account exists, a new code was sent"}


@router.post("/forgot-password")
def forgot_password(body: EmailIn, db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer_dep)):
    AuthService(db, mailer).forgot_password(body.email)
    return {"success": True, "message": "If an account exists, a reset code was sent"}


@router.post("/verify-reset-code")
def verify_reset_code(body: CodeIn, db: Session = Depends(get_db)):
    AuthService(db).verify_reset_code(body.email, body.code)
    return {"success": True, "valid": True}


@router.post("/reset-password")
def reset_password(body: ResetPasswordIn, db: Session = Depends(get_db)):
    AuthService(db).reset_password(body.email, body.code, body.password)
    return {"success": True, "message": "Password updated"}

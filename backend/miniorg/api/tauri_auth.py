"""Desktop (Tauri) client authentication: bearer JWTs instead of cookies."""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..errors import AuthenticationError, ValidationAppError
from ..ports.calendar_provider import OAuthExchangeError
from ..services.auth_service import AuthService
from ..services.mailer import Mailer
from ..services.oauth_service import OAuthService
from ..services.token_service import SESSION_TOKEN_TTL_SECONDS, TokenInvalid, TokenService
from .auth import Caller, CredentialsIn, bearer_token, get_caller, user_out
from .deps import get_mailer_dep, get_token_service
from .oauth import get_oauth_service

router = APIRouter(prefix="/auth/tauri", tags=["auth"])

DESKTOP_COOKIE_NAME = "tauri-session"


class GoogleCodeIn(BaseModel):
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None


def _issue(request: Request, response: Response, tokens: TokenService, user) -> dict:
    token, expires_at = tokens.issue_session_token(user.id, user.email, user.name, user.image)
    response.set_cookie(
        DESKTOP_COOKIE_NAME,
        token,
        max_age=SESSION_TOKEN_TTL_SECONDS,
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
        path="/",
    )
    return {"token": token, "expires_at": expires_at, "user": user_out(user)}


@router.post("/credentials")
def credentials_login(
    body: CredentialsIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    user = AuthService(db).authenticate_user(body.email, body.password)
    return _issue(request, response, tokens, user)


@router.post("/token")
def google_token(
    body: GoogleCodeIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    oauth: OAuthService = Depends(get_oauth_service),
):
    """Trade a Google authorization code from the desktop app for a session JWT."""
    if not body.code:
        raise ValidationAppError("MISSING_CODE", "Authorization code is required")
    try:
        user = oauth.desktop_sign_in(db, body.code, body.redirect_uri, body.code_verifier)
    except OAuthExchangeError as exc:
        raise AuthenticationError("GOOGLE_AUTH_FAILED", "Google authentication failed") from exc
    return _issue(request, response, tokens, user)


@router.post("/signup", status_code=201)
def signup(body: CredentialsIn, db: Session = Depends(get_db), mailer: Mailer = Depends(get_mailer_dep)):
    AuthService(db, mailer).signup(body.email, body.password)
    return {"success": True, "message": "Verification code sent"}


@router.post("/refresh")
def refresh(request: Request, tokens: TokenService = Depends(get_token_service)):
    token = bearer_token(request)
    if not token:
        raise AuthenticationError()
    try:
        new_token, expires_at = tokens.refresh_session_token(token)
    except TokenInvalid:
        raise AuthenticationError()
    return {"token": new_token, "expires_at": expires_at}


@router.post("/state")
def oauth_state(
    callbackUrl: str | None = None,
    caller: Caller = Depends(get_caller),
    oauth: OAuthService = Depends(get_oauth_service),
):
    """Signed 5-minute state plus consent URL for the desktop calendar flow."""
    return oauth.start_calendar_auth(caller.user_id, callbackUrl, source="desktop")

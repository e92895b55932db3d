import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..errors import BaseAppException
from ..services.auth_service import AuthService
from ..services.oauth_service import OAuthService
from ..services.state_store import StateStore
from ..services.token_service import TokenService
from .auth import Caller, get_caller, set_session_cookie
from .deps import get_provider_factory, get_state_store_dep, get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google-calendar", tags=["oauth"])
signin_router = APIRouter(prefix="/auth/google", tags=["auth"])


def get_oauth_service(
    provider_factory=Depends(get_provider_factory),
    store: StateStore = Depends(get_state_store_dep),
    tokens: TokenService = Depends(get_token_service),
) -> OAuthService:
    return OAuthService(provider_factory(), state_store=store, tokens=tokens)


@router.get("")
def start_google_calendar_auth(
    callbackUrl: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    oauth: OAuthService = Depends(get_oauth_service),
):
    """Web callers are redirected to Google; desktop callers get the URL as JSON."""
    result = oauth.start_calendar_auth(caller.user_id, callbackUrl, source=caller.source)
    if caller.source == "desktop":
        return {"authUrl": result["authUrl"]}
    return RedirectResponse(result["authUrl"], status_code=302)


@router.get("/callback")
def google_calendar_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
    oauth: OAuthService = Depends(get_oauth_service),
):
    source = "web"
    if state:
        try:
            source = oauth.read_state(state).source
        except BaseAppException:
            pass  # reported below by complete_calendar_auth
    if error:
        logger.warning("Google returned OAuth error: %s", error)
        return RedirectResponse(oauth.error_redirect("authentication_failed", source), status_code=302)
    if not code or not state:
        return RedirectResponse(oauth.error_redirect("missing_parameters", source), status_code=302)
    try:
        result = oauth.complete_calendar_auth(db, state, code)
    except BaseAppException as exc:
        db.rollback()
        logger.warning("Calendar OAuth callback failed: %s %s", exc.code, exc.message)
        return RedirectResponse(oauth.error_redirect(exc.code.lower(), source), status_code=302)
    return RedirectResponse(oauth.success_redirect(result.claims), status_code=302)


@signin_router.get("")
def start_google_signin(
    callbackUrl: str | None = Query(None),
    oauth: OAuthService = Depends(get_oauth_service),
):
    return RedirectResponse(oauth.start_sign_in(callbackUrl)["authUrl"], status_code=302)


@signin_router.get("/callback")
def google_signin_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
    oauth: OAuthService = Depends(get_oauth_service),
):
    """Finish Google sign-in and hand the browser a session cookie."""
    if error:
        logger.warning("Google returned sign-in error: %s", error)
        return RedirectResponse(oauth.signin_error_redirect("authentication_failed"), status_code=302)
    if not code or not state:
        return RedirectResponse(oauth.signin_error_redirect("missing_parameters"), status_code=302)
    try:
        result = oauth.complete_sign_in(db, state, code)
    except BaseAppException as exc:
        db.rollback()
        logger.warning("Google sign-in failed: %s %s", exc.code, exc.message)
        return RedirectResponse(oauth.signin_error_redirect(exc.code.lower()), status_code=302)
    response = RedirectResponse(oauth.signin_success_redirect(result.claims), status_code=302)
    set_session_cookie(response, request, AuthService(db).create_web_session(result.user))
    return response

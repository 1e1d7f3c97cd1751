# routers/auth.py — OpenID Connect login flow & session endpoints
import hmac
import logging
import uuid
from datetime import datetime, timezone
from html import escape

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    STATE_COOKIE, Session, SessionService, get_current_session, get_session_service,
)
from cache import Cache, get_cache, revoked_session_key
from database import get_db_session
from errors import NotFound
from models import User
from oidc import IdentityGateway, UserInfo, get_identity_gateway
from schemas import UserSummary, user_summary

logger = logging.getLogger("kanban.auth")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
pages_router = APIRouter(tags=["Pages"])

STATE_MAX_AGE = 600

LOGIN_ERRORS = {
    "auth_failed": "The identity provider rejected the sign-in.",
    "no_code": "The identity provider did not return an authorization code.",
    "invalid_state": "The sign-in request could not be verified. Please try again.",
    "server_error": "Something went wrong while signing you in.",
}


def _login_redirect(reason: str) -> RedirectResponse:
    return RedirectResponse(f"/login?error={reason}", status_code=302)


async def upsert_user(db: AsyncSession, info: UserInfo) -> User:
    """Find the user by IdP subject, creating or refreshing the row"""
    stmt = select(User).where(User.subject == info.sub)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            subject=info.sub,
            email=info.email,
            name=info.display_name,
            avatar_url=info.picture,
        )
        db.add(user)
    else:
        user.email = info.email
        user.name = info.display_name
        if info.picture:
            user.avatar_url = info.picture

    await db.commit()
    await db.refresh(user)
    return user


# ============================================================
# LOGIN FLOW
# ============================================================

@router.get("/login")
async def login(
    request: Request,
    identity: IdentityGateway = Depends(get_identity_gateway),
):
    """Redirect the browser to the identity provider"""
    state = str(uuid.uuid4())
    response = RedirectResponse(identity.authorization_url(state), status_code=302)
    if request.app.state.settings.oidc_enforce_state:
        response.set_cookie(
            STATE_COOKIE, state, max_age=STATE_MAX_AGE, httponly=True,
            secure=request.app.state.settings.is_production, samesite="lax", path="/api/auth",
        )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: str = None,
    error: str = None,
    state: str = None,
    db: AsyncSession = Depends(get_db_session),
    identity: IdentityGateway = Depends(get_identity_gateway),
    sessions: SessionService = Depends(get_session_service),
):
    """Finish the authorization-code flow and issue the session cookie"""
    if error:
        logger.warning(f"Identity provider returned error: {error}")
        return _login_redirect("auth_failed")
    if not code:
        return _login_redirect("no_code")

    # The state value is only checked when OIDC_ENFORCE_STATE is on
    if request.app.state.settings.oidc_enforce_state:
        expected = request.cookies.get(STATE_COOKIE, "")
        if not state or not expected or not hmac.compare_digest(state, expected):
            return _login_redirect("invalid_state")

    try:
        access_token = await identity.exchange_code(code)
        info = await identity.fetch_user_info(access_token)
        user = await upsert_user(db, info)
    except Exception as e:
        logger.error(f"Auth callback error: {e}", exc_info=True)
        await db.rollback()
        return _login_redirect("server_error")

    token = sessions.create_token(user.id, user.email)
    response = RedirectResponse("/", status_code=302)
    sessions.set_session_cookie(response, token)
    response.delete_cookie(STATE_COOKIE, path="/api/auth")
    logger.info(f"User {user.id} signed in")
    return response


@router.post("/logout")
async def logout(
    session: Session = Depends(get_current_session),
    sessions: SessionService = Depends(get_session_service),
    cache: Cache = Depends(get_cache),
):
    """Revoke the current session until it would have expired anyway"""
    if session.jti and session.expires_at:
        remaining = int((session.expires_at - datetime.now(timezone.utc)).total_seconds())
        if remaining > 0:
            await cache.set(revoked_session_key(session.jti), True, ttl=remaining)

    response = JSONResponse({"status": "logged_out"})
    sessions.clear_session_cookie(response)
    return response


@router.get("/me", response_model=UserSummary)
async def me(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db_session),
):
    """Get the signed-in user"""
    user = await db.get(User, session.user_id)
    if user is None:
        raise NotFound("User not found")
    return user_summary(user)


# ============================================================
# LOGIN PAGE
# ============================================================

@pages_router.get("/login", response_class=HTMLResponse)
async def login_page(error: str = None):
    message = LOGIN_ERRORS.get(error, "Sign-in failed.") if error else ""
    notice = f'<p class="error">{escape(message)}</p>' if message else ""
    return HTMLResponse(
        "<!doctype html><html><head><title>Sign in</title></head><body>"
        "<main><h1>Kanban</h1>"
        f"{notice}"
        '<a href="/api/auth/login">Sign in</a>'
        "</main></body></html>"
    )

# auth.py — Session tokens & project authorization
# Features:
# - HS256 session JWT carried in the "session" cookie (7-day expiry)
# - JTI on every token so a session can be put on the cache denylist
# - Per-handler membership check; no capability object is passed around

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, Request, Response
from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cache import Cache, get_cache, revoked_session_key
from config import Settings
from errors import Forbidden, Unauthenticated
from models import MemberRole, ProjectMember

ALGORITHM = "HS256"
SESSION_COOKIE = "session"
STATE_COOKIE = "oauth_state"


class Session(BaseModel):
    user_id: str
    email: str
    jti: Optional[str] = None
    expires_at: Optional[datetime] = None


# ============================================================
# SESSION SERVICE
# ============================================================

class SessionService:
    """Mints and validates session tokens"""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.settings.session_max_age_days)

    def create_token(self, user_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        to_encode: Dict[str, Any] = {
            "userId": user_id,
            "email": email,
            "iat": now,
            "exp": now + (expires_delta or self.max_age),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=ALGORITHM)

    def verify_token(self, token: str) -> Session:
        try:
            payload = jwt.decode(token, self.settings.jwt_secret, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise Unauthenticated("Session expired")
        except JWTError:
            raise Unauthenticated("Invalid session")

        user_id = payload.get("userId")
        email = payload.get("email")
        if not user_id or not email:
            raise Unauthenticated("Invalid session")

        exp = payload.get("exp")
        return Session(
            user_id=user_id,
            email=email,
            jti=payload.get("jti"),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
        )

    def set_session_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=int(self.max_age.total_seconds()),
            httponly=True,
            secure=self.settings.is_production,
            samesite="lax",
            path="/",
        )

    def clear_session_cookie(self, response: Response) -> None:
        response.delete_cookie(
            SESSION_COOKIE, path="/", httponly=True,
            secure=self.settings.is_production, samesite="lax",
        )


def get_session_service(request: Request) -> SessionService:
    return SessionService(request.app.state.settings)


def extract_token(request: Request) -> Optional[str]:
    """Session cookie first; API clients may send a Bearer header instead"""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_session(
    request: Request,
    sessions: SessionService = Depends(get_session_service),
    cache: Cache = Depends(get_cache),
) -> Session:
    token = extract_token(request)
    if not token:
        raise Unauthenticated()

    session = sessions.verify_token(token)

    # Denylist is advisory: a cache outage reads as "not revoked"
    if session.jti and await cache.get(revoked_session_key(session.jti)):
        raise Unauthenticated("Session has been revoked")

    return session


async def require_membership(
    db: AsyncSession,
    project_id: str,
    user_id: str,
    roles: Optional[Iterable[MemberRole]] = None,
) -> ProjectMember:
    """Return the caller's membership row, or raise Forbidden"""
    stmt = (
        select(ProjectMember)
        .where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        .limit(1)
    )
    result = await db.execute(stmt)
    membership = result.scalar_one_or_none()
    if membership is None:
        raise Forbidden()

    if roles is not None and MemberRole(membership.role) not in set(roles):
        raise Forbidden("Insufficient project role")
    return membership

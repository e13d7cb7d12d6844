from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from erp.auth import CallerContext
from erp.config import settings
from erp.db import SessionLocal
from erp.models import Role, User, WebSession


AUTH_EXEMPT_PATHS = {'/login', '/health', '/robots.txt', '/docs', '/openapi.json'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_web_session(db, user_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        user_id=user_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_caller_from_token(db, token: str | None) -> CallerContext | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User, Role)
        .join(User, User.id == WebSession.user_id)
        .join(Role, Role.id == User.role_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user, role = row
    now = _now()
    if web_session.revoked_at is not None or _as_aware(web_session.expires_at) <= now:
        return None
    if not user.is_active:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return CallerContext(
        user_id=user.id,
        username=user.username,
        role_code=role.role_code,
        role_id=role.id,
        branch_id=user.branch_id,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        with SessionLocal() as db:
            request.state.caller = load_caller_from_token(db, token)
            db.commit()

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.caller is None:
            return JSONResponse({'error': 'UNAUTHENTICATED', 'message': 'Please sign in'}, status_code=401)

        return await call_next(request)

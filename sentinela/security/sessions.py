from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from starlette.concurrency import run_in_threadpool

from sentinela.auth import Armorer
from sentinela.config import settings
from sentinela.models import Admin, WebSession


AUTH_EXEMPT_PATHS = {'/login', '/login/status', '/robots.txt'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they were written as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db, admin_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        admin_id=admin_id,
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


def load_armorer_from_token(db, token: str | None) -> Armorer | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, Admin)
        .join(Admin, Admin.id == WebSession.admin_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, admin = row
    now = _now()
    if web_session.revoked_at is not None or _aware(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Armorer(id=admin.id, name=admin.name, matricula=admin.matricula, role=admin.role)


def _resolve_armorer(session_factory, token: str | None) -> Armorer | None:
    with session_factory() as db:
        armorer = load_armorer_from_token(db, token)
        db.commit()
    return armorer


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        request.state.armorer = await run_in_threadpool(_resolve_armorer, request.app.state.session_factory, token)

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.armorer is None:
            return JSONResponse({'kind': 'AccessDenied', 'detail': 'Not signed in'}, status_code=401)

        response = await call_next(request)
        return response

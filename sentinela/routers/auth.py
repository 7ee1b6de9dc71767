from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.config import settings
from sentinela.db import get_db
from sentinela.dependencies import get_client_ip
from sentinela.schemas import LoginIn
from sentinela.security.csrf import verify_csrf
from sentinela.security.sessions import create_web_session, revoke_web_session
from sentinela.services.auth_service import login, logout, roster_is_empty
from sentinela.services.settings_service import get_app_settings

router = APIRouter(tags=['auth'])


def _armorer_payload(armorer: Armorer) -> dict:
    return {'id': armorer.id, 'name': armorer.name, 'matricula': armorer.matricula, 'role': armorer.role.value}


@router.get('/login/status')
def login_status(db: Session = Depends(get_db)):
    row = get_app_settings(db)
    payload = {
        'bootstrap_pending': roster_is_empty(db),
        'institution_name': row.institution_name,
        'institution_logo': row.institution_logo,
        'theme': row.theme.value,
    }
    db.commit()
    return payload


@router.post('/login')
def login_submit(
    payload: LoginIn,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    armorer = login(db, name=payload.name, matricula=payload.matricula)
    token = create_web_session(db, armorer.id, ip=get_client_ip(request), user_agent=request.headers.get('user-agent'))
    db.commit()

    response = JSONResponse(_armorer_payload(armorer))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout_submit(
    request: Request,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)
    logout(db, armorer=armorer)

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(armorer: Armorer = Depends(get_current_armorer)):
    return _armorer_payload(armorer)

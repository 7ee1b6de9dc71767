from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.config import settings
from sentinela.db import get_db
from sentinela.schemas import AdminIn, SettingsIn
from sentinela.security.csrf import verify_csrf
from sentinela.services.audit_service import list_logs, log_to_dict
from sentinela.services.auth_service import add_admin, remove_admin
from sentinela.services.backup_service import create_backup, restore_backup
from sentinela.services.settings_service import settings_view, toggle_theme, update_settings

router = APIRouter(tags=['system'])


@router.get('/settings')
def settings_detail(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    view = settings_view(db)
    db.commit()
    return view


@router.put('/settings')
def settings_update(
    payload: SettingsIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    update_settings(db, armorer=armorer, institution_name=payload.institution_name, institution_logo=payload.institution_logo)
    return settings_view(db)


@router.post('/settings/theme')
def settings_toggle_theme(
    _armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return {'theme': toggle_theme(db).value}


@router.post('/admins', status_code=201)
def admin_create(
    payload: AdminIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    admin = add_admin(db, armorer=armorer, name=payload.name, matricula=payload.matricula)
    return {'id': admin.id, 'name': admin.name, 'matricula': admin.matricula, 'role': admin.role.value}


@router.delete('/admins/{admin_id}', status_code=204)
def admin_delete(
    admin_id: int,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    remove_admin(db, armorer=armorer, admin_id=admin_id)


@router.get('/logs')
def logs_index(
    limit: int | None = None,
    _: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
):
    return [log_to_dict(entry) for entry in list_logs(db, limit=limit or settings.recent_logs_limit)]


@router.get('/backup')
def backup_download(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    stamp = datetime.now(tz=timezone.utc).strftime('%Y%m%d-%H%M%S')
    return Response(
        content=create_backup(db),
        media_type='application/zip',
        headers={'Content-Disposition': f'attachment; filename="{settings.backup_filename_prefix}-{stamp}.zip"'},
    )


@router.post('/restore')
def backup_restore(
    file: UploadFile,
    _armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    raw = file.file.read()
    outcome: dict[str, bool] = {}
    restore_backup(db, raw, on_complete=lambda success: outcome.update(success=success))
    # Every session was dropped with the old roster; the client has to sign in again.
    response = JSONResponse({'restored': outcome.get('success', False), 'reload': True})
    response.delete_cookie(settings.session_cookie_name)
    return response

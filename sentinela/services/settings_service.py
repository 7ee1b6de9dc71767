from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from sentinela.auth import Armorer
from sentinela.config import settings
from sentinela.errors import InvalidOperation
from sentinela.models import Admin, AppSettings, Theme
from sentinela.services.audit_service import add_log
from sentinela.services.concurrency import store_gate

SETTINGS_ROW_ID = 1


def get_app_settings(db: Session) -> AppSettings:
    """Return the single settings row, creating it (empty roster) on first use."""
    row = db.get(AppSettings, SETTINGS_ROW_ID)
    if row is None:
        row = AppSettings(id=SETTINGS_ROW_ID, institution_name=settings.default_institution_name, theme=Theme.LIGHT)
        db.add(row)
        db.flush()
    return row


def list_admins(db: Session) -> list[Admin]:
    return list(db.execute(select(Admin).order_by(Admin.id.asc())).scalars().all())


def settings_view(db: Session) -> dict:
    row = get_app_settings(db)
    return {
        'institution_name': row.institution_name,
        'institution_logo': row.institution_logo,
        'theme': row.theme.value,
        'admins': [
            {'id': admin.id, 'name': admin.name, 'matricula': admin.matricula, 'role': admin.role.value}
            for admin in list_admins(db)
        ],
    }


def _validate_logo(logo: str | None) -> str | None:
    if not logo:
        return None
    if not logo.startswith('data:image/'):
        raise InvalidOperation('Logo must be an image data URL')
    if len(logo.encode('utf-8')) > settings.max_logo_bytes:
        raise InvalidOperation(f'Logo exceeds {settings.max_logo_bytes} bytes')
    return logo


def update_settings(
    db: Session,
    *,
    armorer: Armorer,
    institution_name: str,
    institution_logo: str | None,
) -> AppSettings:
    name = (institution_name or '').strip()
    if not name:
        raise InvalidOperation('Institution name is required')
    logo = _validate_logo(institution_logo)

    with store_gate.shared():
        try:
            row = get_app_settings(db)
            row.institution_name = name
            row.institution_logo = logo
            add_log(db, armorer.name, 'Configurações', f'Instituição: {name}; logotipo {"definido" if logo else "removido"}')
            db.commit()
        except Exception:
            db.rollback()
            raise
    return row


def toggle_theme(db: Session) -> Theme:
    with store_gate.shared():
        try:
            row = get_app_settings(db)
            row.theme = Theme.DARK if row.theme == Theme.LIGHT else Theme.LIGHT
            db.commit()
        except Exception:
            db.rollback()
            raise
    return row.theme

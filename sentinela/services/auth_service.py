"""
Administrator roster and sign-in.

- Empty roster: the first login with a non-empty name and matricula creates
  the one SUPER_ADMIN and signs it in. This happens once; any existing admin
  closes the path for good.
- Otherwise login matches on matricula only and signs in with the stored
  identity and role.
- add_admin / remove_admin are SUPER_ADMIN only, checked here regardless of
  what the caller's UI allows. SUPER_ADMINs and the caller cannot be removed.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from sentinela.auth import Armorer
from sentinela.errors import AccessDenied, Forbidden, InvalidOperation, NotFound
from sentinela.models import Admin, AdminRole, WebSession
from sentinela.services.audit_service import add_log
from sentinela.services.concurrency import roster_guard
from sentinela.services.settings_service import get_app_settings

logger = logging.getLogger(__name__)


def _armorer(admin: Admin) -> Armorer:
    return Armorer(id=admin.id, name=admin.name, matricula=admin.matricula, role=admin.role)


def roster_is_empty(db: Session) -> bool:
    return db.execute(select(func.count(Admin.id))).scalar_one() == 0


def login(db: Session, *, name: str, matricula: str) -> Armorer:
    name = (name or '').strip()
    matricula = (matricula or '').strip()
    if not name or not matricula:
        raise AccessDenied('Name and matricula are required')

    with roster_guard():
        try:
            if roster_is_empty(db):
                get_app_settings(db)
                admin = Admin(name=name, matricula=matricula, role=AdminRole.SUPER_ADMIN)
                db.add(admin)
                db.flush()
                add_log(db, admin.name, 'Sistema', 'Super Administrador registrado e sistema inicializado.')
                db.commit()
                logger.info('Bootstrap: super administrator %s registered', admin.matricula, extra={'admin_id': admin.id})
                return _armorer(admin)

            admin = db.execute(select(Admin).where(Admin.matricula == matricula)).scalar_one_or_none()
            if admin is None:
                logger.warning('Login denied for unknown matricula %s', matricula)
                raise AccessDenied('Matricula not found in the administrator list')

            add_log(db, admin.name, 'Login', 'Administrador acessou o sistema')
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info('Administrator %s signed in', admin.matricula, extra={'admin_id': admin.id})
    return _armorer(admin)


def logout(db: Session, *, armorer: Armorer) -> None:
    try:
        add_log(db, armorer.name, 'Logout', 'Administrador saiu do sistema')
        db.commit()
    except Exception:
        db.rollback()
        raise


def _require_super_admin(db: Session, armorer: Armorer) -> Admin:
    # Trust the stored role, not the session snapshot.
    actor = db.get(Admin, armorer.id)
    if actor is None or actor.role != AdminRole.SUPER_ADMIN:
        raise Forbidden('Only the super administrator can manage administrators')
    return actor


def add_admin(db: Session, *, armorer: Armorer, name: str, matricula: str) -> Admin:
    name = (name or '').strip()
    matricula = (matricula or '').strip()

    with roster_guard():
        try:
            actor = _require_super_admin(db, armorer)
            if not name or not matricula:
                raise InvalidOperation('Name and matricula are required')
            if db.execute(select(Admin.id).where(Admin.matricula == matricula)).first() is not None:
                raise InvalidOperation(f'Matricula {matricula} is already registered')

            admin = Admin(name=name, matricula=matricula, role=AdminRole.ADMIN)
            db.add(admin)
            db.flush()
            add_log(db, actor.name, 'Administrador adicionado', f'{admin.name} ({admin.matricula})')
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info('Administrator %s added by %s', admin.matricula, actor.matricula, extra={'admin_id': admin.id})
    return admin


def remove_admin(db: Session, *, armorer: Armorer, admin_id: int) -> None:
    with roster_guard():
        try:
            actor = _require_super_admin(db, armorer)
            if admin_id == actor.id:
                raise InvalidOperation('You cannot remove yourself')
            target = db.get(Admin, admin_id)
            if target is None:
                raise NotFound(f'Administrator {admin_id} not found')
            if target.role == AdminRole.SUPER_ADMIN:
                raise InvalidOperation('The super administrator cannot be removed')

            removed = target.matricula
            db.execute(delete(WebSession).where(WebSession.admin_id == target.id))
            db.delete(target)
            add_log(db, actor.name, 'Administrador removido', f'{target.name} ({target.matricula})')
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info('Administrator %s removed by %s', removed, armorer.matricula, extra={'admin_id': admin_id})

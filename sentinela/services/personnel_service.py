from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sentinela.auth import Armorer
from sentinela.errors import InvalidOperation, NotFound
from sentinela.models import Cautela, CautelaStatus, Personnel
from sentinela.services.audit_service import add_log
from sentinela.services.concurrency import custody_guard, lock_for_update


def get_personnel(db: Session, personnel_id: int) -> Personnel:
    person = db.get(Personnel, personnel_id)
    if person is None:
        raise NotFound(f'Personnel {personnel_id} not found')
    return person


def list_personnel(db: Session) -> list[Personnel]:
    return list(db.execute(select(Personnel).order_by(Personnel.name.asc(), Personnel.id.asc())).scalars().all())


def _ensure_unique_registration(db: Session, registration_number: str, *, exclude_id: int | None = None) -> None:
    query = select(Personnel.id).where(Personnel.registration_number == registration_number)
    if exclude_id is not None:
        query = query.where(Personnel.id != exclude_id)
    if db.execute(query).first() is not None:
        raise InvalidOperation(f'Registration number {registration_number} is already in use')


def _required(value: str | None, label: str) -> str:
    cleaned = (value or '').strip()
    if not cleaned:
        raise InvalidOperation(f'{label} is required')
    return cleaned


def _locked_personnel(db: Session, personnel_id: int) -> Personnel:
    person = db.execute(
        lock_for_update(select(Personnel).where(Personnel.id == personnel_id)).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if person is None:
        raise NotFound(f'Personnel {personnel_id} not found')
    return person


def create_personnel(db: Session, *, armorer: Armorer, name: str, registration_number: str, rank: str = '') -> Personnel:
    cleaned_name = _required(name, 'Name')
    cleaned_registration = _required(registration_number, 'Registration number')

    with custody_guard(registration=True):
        try:
            _ensure_unique_registration(db, cleaned_registration)
            person = Personnel(name=cleaned_name, registration_number=cleaned_registration, rank=(rank or '').strip())
            db.add(person)
            db.flush()
            add_log(db, armorer.name, 'Militar cadastrado', f'{person.rank} {person.name} ({person.registration_number})'.strip())
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise InvalidOperation(f'Registration number {cleaned_registration} is already in use') from exc
        except Exception:
            db.rollback()
            raise
    return person


def update_personnel(
    db: Session,
    *,
    armorer: Armorer,
    personnel_id: int,
    name: str | None = None,
    registration_number: str | None = None,
    rank: str | None = None,
) -> Personnel:
    cleaned_name = _required(name, 'Name') if name is not None else None
    cleaned_registration = _required(registration_number, 'Registration number') if registration_number is not None else None

    with custody_guard(personnel_ids=[personnel_id], registration=cleaned_registration is not None):
        try:
            person = _locked_personnel(db, personnel_id)
            if cleaned_registration is not None:
                _ensure_unique_registration(db, cleaned_registration, exclude_id=person.id)
                person.registration_number = cleaned_registration
            if cleaned_name is not None:
                person.name = cleaned_name
            if rank is not None:
                person.rank = rank.strip()
            db.flush()
            add_log(db, armorer.name, 'Militar editado', f'{person.name} ({person.registration_number})')
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise InvalidOperation(f'Registration number {cleaned_registration} is already in use') from exc
        except Exception:
            db.rollback()
            raise
    return person


def has_open_cautela(db: Session, personnel_id: int) -> bool:
    return (
        db.execute(
            select(Cautela.id)
            .where(Cautela.personnel_id == personnel_id, Cautela.status == CautelaStatus.OPEN)
            .limit(1)
        ).scalar_one_or_none()
        is not None
    )


def delete_personnel(db: Session, *, armorer: Armorer, personnel_id: int) -> None:
    # Same personnel lock as issue_cautela: no cautela can open between the check and the delete.
    with custody_guard(personnel_ids=[personnel_id]):
        try:
            person = _locked_personnel(db, personnel_id)
            if has_open_cautela(db, personnel_id):
                raise InvalidOperation(f'{person.name} still holds an open cautela')
            db.delete(person)
            add_log(db, armorer.name, 'Militar removido', f'{person.name} ({person.registration_number})')
            db.commit()
        except Exception:
            db.rollback()
            raise


def personnel_to_dict(person: Personnel) -> dict:
    return {
        'id': person.id,
        'name': person.name,
        'registration_number': person.registration_number,
        'rank': person.rank,
    }

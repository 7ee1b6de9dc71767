from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.db import get_db
from sentinela.schemas import PersonnelIn, PersonnelUpdateIn
from sentinela.security.csrf import verify_csrf
from sentinela.services.cautela_service import cautela_to_dict, list_cautelas
from sentinela.services.personnel_service import (
    create_personnel,
    delete_personnel,
    get_personnel,
    list_personnel,
    personnel_to_dict,
    update_personnel,
)

router = APIRouter(prefix='/personnel', tags=['personnel'])


@router.get('')
def personnel_index(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    return [personnel_to_dict(person) for person in list_personnel(db)]


@router.get('/{personnel_id}')
def personnel_detail(personnel_id: int, _: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    person = get_personnel(db, personnel_id)
    return {
        **personnel_to_dict(person),
        'cautelas': [cautela_to_dict(cautela) for cautela in list_cautelas(db, personnel_id=person.id)],
    }


@router.post('', status_code=201)
def personnel_create(
    payload: PersonnelIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    person = create_personnel(
        db,
        armorer=armorer,
        name=payload.name,
        registration_number=payload.registration_number,
        rank=payload.rank,
    )
    return personnel_to_dict(person)


@router.patch('/{personnel_id}')
def personnel_update(
    personnel_id: int,
    payload: PersonnelUpdateIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    person = update_personnel(
        db,
        armorer=armorer,
        personnel_id=personnel_id,
        name=payload.name,
        registration_number=payload.registration_number,
        rank=payload.rank,
    )
    return personnel_to_dict(person)


@router.delete('/{personnel_id}', status_code=204)
def personnel_delete(
    personnel_id: int,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    delete_personnel(db, armorer=armorer, personnel_id=personnel_id)

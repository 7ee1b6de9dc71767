from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.db import get_db
from sentinela.models import CautelaStatus
from sentinela.schemas import CautelaIn, CautelaReturnIn
from sentinela.security.csrf import verify_csrf
from sentinela.services.cautela_service import (
    ItemRequest,
    cautela_to_dict,
    get_cautela,
    issue_cautela,
    list_cautelas,
    return_cautela,
)

router = APIRouter(prefix='/cautelas', tags=['cautelas'])


@router.get('')
def cautelas_index(
    status: CautelaStatus | None = None,
    personnel_id: int | None = None,
    _: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
):
    return [cautela_to_dict(cautela) for cautela in list_cautelas(db, status=status, personnel_id=personnel_id)]


@router.get('/{cautela_id}')
def cautela_detail(cautela_id: int, _: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    return cautela_to_dict(get_cautela(db, cautela_id))


@router.post('', status_code=201)
def cautela_issue(
    payload: CautelaIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    cautela = issue_cautela(
        db,
        armorer=armorer,
        personnel_id=payload.personnel_id,
        items=[ItemRequest(material_id=item.material_id, quantity=item.quantity) for item in payload.items],
    )
    return cautela_to_dict(cautela)


@router.post('/{cautela_id}/return')
def cautela_return(
    cautela_id: int,
    payload: CautelaReturnIn | None = None,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    items = None
    if payload is not None and payload.items is not None:
        items = [ItemRequest(material_id=item.material_id, quantity=item.quantity) for item in payload.items]
    result = return_cautela(db, armorer=armorer, cautela_id=cautela_id, items=items)
    return {
        'returned': cautela_to_dict(result.returned),
        'remainder': cautela_to_dict(result.remainder) if result.remainder is not None else None,
    }

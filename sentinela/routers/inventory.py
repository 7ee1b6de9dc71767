from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sentinela.auth import Armorer, get_current_armorer
from sentinela.db import get_db
from sentinela.schemas import MaterialIn, MaterialUpdateIn
from sentinela.security.csrf import verify_csrf
from sentinela.services.inventory_service import (
    create_material,
    delete_material,
    get_material,
    list_materials,
    material_to_dict,
    update_material,
)

router = APIRouter(prefix='/materials', tags=['inventory'])


@router.get('')
def materials_index(_: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    return [material_to_dict(material) for material in list_materials(db)]


@router.get('/{material_id}')
def material_detail(material_id: int, _: Armorer = Depends(get_current_armorer), db: Session = Depends(get_db)):
    return material_to_dict(get_material(db, material_id))


@router.post('', status_code=201)
def material_create(
    payload: MaterialIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    material = create_material(
        db,
        armorer=armorer,
        name=payload.name,
        category=payload.category,
        total_quantity=payload.total_quantity,
    )
    return material_to_dict(material)


@router.patch('/{material_id}')
def material_update(
    material_id: int,
    payload: MaterialUpdateIn,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    material = update_material(
        db,
        armorer=armorer,
        material_id=material_id,
        name=payload.name,
        category=payload.category,
        total_quantity=payload.total_quantity,
    )
    return material_to_dict(material)


@router.delete('/{material_id}', status_code=204)
def material_delete(
    material_id: int,
    armorer: Armorer = Depends(get_current_armorer),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    delete_material(db, armorer=armorer, material_id=material_id)

"""
Inventory ledger.

Invariants:
- 0 <= available_quantity <= total_quantity for every material.
- total_quantity - available_quantity equals the quantity of that material
  held on OPEN cautela lines.

reserve/release/adjust_total are the only code paths that touch the quantity
columns. They flush the single affected row and leave commit, locking and
audit logging to the caller (the custody ledger or the admin operations at the
bottom of this module).
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from sentinela.auth import Armorer
from sentinela.errors import InsufficientStock, InvalidOperation, InvalidQuantity, InventoryCorruption, NotFound
from sentinela.models import Cautela, CautelaItem, CautelaStatus, Material
from sentinela.services.audit_service import add_log
from sentinela.services.concurrency import lock_for_update, material_guard, store_gate

logger = logging.getLogger(__name__)


def _load_material(db: Session, material_id: int, *, lock: bool = False) -> Material:
    query = select(Material).where(Material.id == material_id).execution_options(populate_existing=True)
    if lock:
        query = lock_for_update(query)
    material = db.execute(query).scalar_one_or_none()
    if material is None:
        raise NotFound(f'Material {material_id} not found')
    return material


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity(f'Quantity must be a positive integer, got {quantity!r}')


def reserve(db: Session, material_id: int, quantity: int) -> Material:
    _require_positive(quantity)
    material = _load_material(db, material_id, lock=True)
    if quantity > material.available_quantity:
        raise InsufficientStock(
            f'Insufficient stock for {material.name}: requested {quantity}, available {material.available_quantity}',
            material_id=material.id,
        )
    material.available_quantity -= quantity
    db.flush()
    return material


def release(db: Session, material_id: int, quantity: int) -> Material:
    _require_positive(quantity)
    material = _load_material(db, material_id, lock=True)
    if material.available_quantity + quantity > material.total_quantity:
        logger.error(
            'Release would push %s above its total (%s + %s > %s)',
            material.name,
            material.available_quantity,
            quantity,
            material.total_quantity,
            extra={'material_id': material.id},
        )
        raise InventoryCorruption(f'Release of {quantity} would exceed total quantity of material {material.id}')
    material.available_quantity += quantity
    db.flush()
    return material


def adjust_total(db: Session, material_id: int, new_total: int) -> Material:
    if isinstance(new_total, bool) or not isinstance(new_total, int) or new_total < 0:
        raise InvalidQuantity(f'Total quantity must be a non-negative integer, got {new_total!r}')
    material = _load_material(db, material_id, lock=True)
    issued = material.total_quantity - material.available_quantity
    if new_total < issued:
        raise InvalidQuantity(
            f'Cannot set total of {material.name} to {new_total}: {issued} unit(s) are currently issued'
        )
    material.total_quantity = new_total
    material.available_quantity = new_total - issued
    db.flush()
    return material


def material_has_open_cautela(db: Session, material_id: int) -> bool:
    return (
        db.execute(
            select(CautelaItem.cautela_id)
            .join(Cautela, Cautela.id == CautelaItem.cautela_id)
            .where(CautelaItem.material_id == material_id, Cautela.status == CautelaStatus.OPEN)
            .limit(1)
        ).scalar_one_or_none()
        is not None
    )


def list_materials(db: Session) -> list[Material]:
    return list(db.execute(select(Material).order_by(Material.name.asc(), Material.id.asc())).scalars().all())


def get_material(db: Session, material_id: int) -> Material:
    return _load_material(db, material_id)


def _clean_name(name: str) -> str:
    cleaned = (name or '').strip()
    if not cleaned:
        raise InvalidOperation('Material name is required')
    return cleaned


def create_material(db: Session, *, armorer: Armorer, name: str, category: str, total_quantity: int) -> Material:
    cleaned = _clean_name(name)
    if isinstance(total_quantity, bool) or not isinstance(total_quantity, int) or total_quantity < 0:
        raise InvalidQuantity(f'Total quantity must be a non-negative integer, got {total_quantity!r}')

    with store_gate.shared():
        try:
            material = Material(
                name=cleaned,
                category=(category or '').strip(),
                total_quantity=total_quantity,
                available_quantity=total_quantity,
            )
            db.add(material)
            db.flush()
            add_log(db, armorer.name, 'Material cadastrado', f'{material.name} ({material.category}) - {total_quantity} un.')
            db.commit()
        except Exception:
            db.rollback()
            raise
    return material


def update_material(
    db: Session,
    *,
    armorer: Armorer,
    material_id: int,
    name: str | None = None,
    category: str | None = None,
    total_quantity: int | None = None,
) -> Material:
    with material_guard([material_id]):
        try:
            material = _load_material(db, material_id, lock=True)
            previous_total = material.total_quantity
            # Resize first: adjust_total reloads the row and would discard unflushed edits.
            if total_quantity is not None and total_quantity != previous_total:
                material = adjust_total(db, material_id, total_quantity)
            if name is not None:
                material.name = _clean_name(name)
            if category is not None:
                material.category = category.strip()
            if material.total_quantity != previous_total:
                add_log(db, armorer.name, 'Estoque ajustado', f'{material.name}: total {previous_total} -> {material.total_quantity}')
            else:
                add_log(db, armorer.name, 'Material editado', material.name)
            db.flush()
            db.commit()
        except Exception:
            db.rollback()
            raise
    return material


def delete_material(db: Session, *, armorer: Armorer, material_id: int) -> None:
    with material_guard([material_id]):
        try:
            material = _load_material(db, material_id, lock=True)
            if material_has_open_cautela(db, material_id):
                raise InvalidOperation(f'{material.name} is referenced by an open cautela')
            db.delete(material)
            add_log(db, armorer.name, 'Material removido', material.name)
            db.commit()
        except Exception:
            db.rollback()
            raise


def material_to_dict(material: Material) -> dict:
    return {
        'id': material.id,
        'name': material.name,
        'category': material.category,
        'total_quantity': material.total_quantity,
        'available_quantity': material.available_quantity,
    }

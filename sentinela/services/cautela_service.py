"""
Custody ledger (cautelas).

State machine: OPEN -> RETURNED, once. A returned cautela is never reopened;
re-issuing needs a new cautela.

Issue is all-or-nothing: every reference is validated before the first
reservation, and if a reservation fails midway the ones already taken are
released before the error propagates.

Partial returns split the cautela: the original closes holding only the
returned quantities and a new OPEN cautela (split_from_id -> original) carries
whatever is still outstanding.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sentinela.auth import Armorer
from sentinela.errors import InsufficientStock, InvalidOperation, InvalidQuantity, InvalidState, NotFound
from sentinela.models import Admin, Cautela, CautelaItem, CautelaStatus, Material, Personnel
from sentinela.services.audit_service import add_log
from sentinela.services.concurrency import custody_guard, lock_for_update, material_guard
from sentinela.services.inventory_service import release, reserve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemRequest:
    material_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnResult:
    returned: Cautela
    remainder: Cautela | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _validate_items(items: Iterable[ItemRequest]) -> list[ItemRequest]:
    requested = list(items)
    if not requested:
        raise InvalidOperation('At least one item is required')
    seen: set[int] = set()
    for item in requested:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise InvalidQuantity(f'Quantity for material {item.material_id} must be at least 1')
        if item.material_id in seen:
            raise InvalidOperation(f'Material {item.material_id} appears more than once')
        seen.add(item.material_id)
    return requested


def _require_admin(db: Session, armorer_id: int) -> Admin:
    admin = db.get(Admin, armorer_id)
    if admin is None:
        raise NotFound(f'Administrator {armorer_id} not found')
    return admin


def _load_cautela(db: Session, cautela_id: int, *, lock: bool = False) -> Cautela:
    query = select(Cautela).where(Cautela.id == cautela_id).execution_options(populate_existing=True)
    if lock:
        query = lock_for_update(query)
    cautela = db.execute(query).scalar_one_or_none()
    if cautela is None:
        raise NotFound(f'Cautela {cautela_id} not found')
    return cautela


def _describe_lines(lines: Iterable[tuple[int, int]], names: dict[int, str]) -> str:
    return ', '.join(f'{quantity}x {names.get(material_id, f"material {material_id}")}' for material_id, quantity in lines)


def _material_names(db: Session, material_ids: Iterable[int]) -> dict[int, str]:
    ids = list(material_ids)
    if not ids:
        return {}
    return {row.id: row.name for row in db.execute(select(Material.id, Material.name).where(Material.id.in_(ids))).all()}


def _release_all(db: Session, reserved: list[ItemRequest]) -> None:
    for item in reversed(reserved):
        release(db, item.material_id, item.quantity)


def issue_cautela(db: Session, *, armorer: Armorer, personnel_id: int, items: Iterable[ItemRequest]) -> Cautela:
    requested = _validate_items(items)
    material_ids = [item.material_id for item in requested]

    with custody_guard(material_ids, [personnel_id]):
        try:
            person = db.execute(
                lock_for_update(select(Personnel).where(Personnel.id == personnel_id)).execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if person is None:
                raise NotFound(f'Personnel {personnel_id} not found')
            admin = _require_admin(db, armorer.id)
            names = _material_names(db, material_ids)
            missing = [material_id for material_id in material_ids if material_id not in names]
            if missing:
                raise NotFound(f'Material {missing[0]} not found')

            reserved: list[ItemRequest] = []
            try:
                for item in requested:
                    reserve(db, item.material_id, item.quantity)
                    reserved.append(item)
            except InsufficientStock:
                if reserved:
                    logger.info('Rolling back %d reservation(s) after stock shortfall', len(reserved))
                _release_all(db, reserved)
                raise

            cautela = Cautela(
                personnel_id=person.id,
                armorer_id=admin.id,
                status=CautelaStatus.OPEN,
                issued_at=_now(),
                items=[
                    CautelaItem(position=position, material_id=item.material_id, quantity=item.quantity)
                    for position, item in enumerate(requested)
                ],
            )
            db.add(cautela)
            db.flush()
            add_log(
                db,
                admin.name,
                'Cautela aberta',
                f'Cautela #{cautela.id} para {person.rank} {person.name} ({person.registration_number}): '
                f'{_describe_lines(((item.material_id, item.quantity) for item in requested), names)}',
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info('Cautela %s issued to personnel %s', cautela.id, person.id, extra={'cautela_id': cautela.id})
    return cautela


def _plan_return(cautela: Cautela, items: Iterable[ItemRequest] | None) -> tuple[dict[int, int], dict[int, int]]:
    """Map material_id -> quantity for (returned, still outstanding)."""
    outstanding = {line.material_id: line.quantity for line in cautela.items}
    if items is None:
        return dict(outstanding), {}

    requested = _validate_items(items)
    returned: dict[int, int] = {}
    for item in requested:
        line_quantity = outstanding.get(item.material_id)
        if line_quantity is None:
            raise InvalidOperation(f'Material {item.material_id} is not part of cautela {cautela.id}')
        if item.quantity > line_quantity:
            raise InvalidQuantity(
                f'Cannot return {item.quantity} of material {item.material_id}; only {line_quantity} outstanding'
            )
        returned[item.material_id] = item.quantity

    remaining = {
        material_id: quantity - returned.get(material_id, 0)
        for material_id, quantity in outstanding.items()
        if quantity - returned.get(material_id, 0) > 0
    }
    return returned, remaining


def return_cautela(
    db: Session,
    *,
    armorer: Armorer,
    cautela_id: int,
    items: Iterable[ItemRequest] | None = None,
) -> ReturnResult:
    material_ids = [line.material_id for line in _load_cautela(db, cautela_id).items]

    with material_guard(material_ids):
        try:
            cautela = _load_cautela(db, cautela_id, lock=True)
            if cautela.status != CautelaStatus.OPEN:
                raise InvalidState(f'Cautela {cautela_id} has already been returned')
            admin = _require_admin(db, armorer.id)
            returned, remaining = _plan_return(cautela, items)

            for material_id, quantity in returned.items():
                release(db, material_id, quantity)

            remainder = None
            if remaining:
                remainder = Cautela(
                    personnel_id=cautela.personnel_id,
                    armorer_id=cautela.armorer_id,
                    status=CautelaStatus.OPEN,
                    issued_at=cautela.issued_at,
                    split_from_id=cautela.id,
                    items=[
                        CautelaItem(position=position, material_id=line.material_id, quantity=remaining[line.material_id])
                        for position, line in enumerate(
                            line for line in cautela.items if line.material_id in remaining
                        )
                    ],
                )
                db.add(remainder)
                for line in list(cautela.items):
                    if line.material_id in returned:
                        line.quantity = returned[line.material_id]
                    else:
                        cautela.items.remove(line)

            cautela.status = CautelaStatus.RETURNED
            cautela.returned_at = _now()
            db.flush()

            names = _material_names(db, material_ids)
            details = f'Cautela #{cautela.id}: {_describe_lines(returned.items(), names)}'
            if remainder is not None:
                details += f'; pendente na cautela #{remainder.id}: {_describe_lines(remaining.items(), names)}'
            add_log(db, admin.name, 'Devolução parcial' if remainder is not None else 'Cautela devolvida', details)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info('Cautela %s returned', cautela.id, extra={'cautela_id': cautela.id})
    return ReturnResult(returned=cautela, remainder=remainder)


def get_cautela(db: Session, cautela_id: int) -> Cautela:
    return _load_cautela(db, cautela_id)


def list_cautelas(
    db: Session,
    *,
    status: CautelaStatus | None = None,
    personnel_id: int | None = None,
) -> list[Cautela]:
    query = select(Cautela).order_by(Cautela.issued_at.desc(), Cautela.id.desc())
    if status is not None:
        query = query.where(Cautela.status == status)
    if personnel_id is not None:
        query = query.where(Cautela.personnel_id == personnel_id)
    return list(db.execute(query).scalars().all())


def open_quantities_by_material(db: Session) -> dict[int, int]:
    rows = db.execute(
        select(CautelaItem.material_id, func.sum(CautelaItem.quantity))
        .join(Cautela, Cautela.id == CautelaItem.cautela_id)
        .where(Cautela.status == CautelaStatus.OPEN)
        .group_by(CautelaItem.material_id)
    ).all()
    return {material_id: int(total or 0) for material_id, total in rows}


def cautela_to_dict(cautela: Cautela) -> dict:
    return {
        'id': cautela.id,
        'personnel_id': cautela.personnel_id,
        'armorer_id': cautela.armorer_id,
        'status': cautela.status.value,
        'issued_at': cautela.issued_at,
        'returned_at': cautela.returned_at,
        'split_from_id': cautela.split_from_id,
        'items': [{'material_id': line.material_id, 'quantity': line.quantity} for line in cautela.items],
    }

from __future__ import annotations

import csv
from dataclasses import dataclass
from io import StringIO

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from sentinela.models import Admin, Cautela, CautelaStatus, Material, Personnel
from sentinela.services.cautela_service import open_quantities_by_material


@dataclass(frozen=True)
class LedgerDiscrepancy:
    material_id: int
    name: str
    total_quantity: int
    available_quantity: int
    open_quantity: int

    @property
    def issued_quantity(self) -> int:
        return self.total_quantity - self.available_quantity


def dashboard_summary(db: Session) -> dict:
    totals = db.execute(
        select(
            func.count(Material.id),
            func.coalesce(func.sum(Material.total_quantity), 0),
            func.coalesce(func.sum(Material.available_quantity), 0),
        )
    ).one()
    open_cautelas = db.execute(
        select(func.count(Cautela.id)).where(Cautela.status == CautelaStatus.OPEN)
    ).scalar_one()
    depleted = db.execute(
        select(Material.id, Material.name)
        .where(Material.total_quantity > 0, Material.available_quantity == 0)
        .order_by(Material.name.asc())
    ).all()

    material_types, total_units, available_units = (int(value) for value in totals)
    return {
        'material_types': material_types,
        'total_units': total_units,
        'available_units': available_units,
        'issued_units': total_units - available_units,
        'open_cautelas': int(open_cautelas),
        'depleted_materials': [{'id': row.id, 'name': row.name} for row in depleted],
    }


def check_ledger(db: Session) -> list[LedgerDiscrepancy]:
    """Materials whose issued quantity disagrees with their open cautela lines."""
    open_quantities = open_quantities_by_material(db)
    materials = db.execute(
        select(Material).order_by(Material.id.asc()).execution_options(populate_existing=True)
    ).scalars().all()

    discrepancies = [
        LedgerDiscrepancy(
            material_id=material.id,
            name=material.name,
            total_quantity=material.total_quantity,
            available_quantity=material.available_quantity,
            open_quantity=open_quantities.get(material.id, 0),
        )
        for material in materials
        if material.total_quantity - material.available_quantity != open_quantities.get(material.id, 0)
        or not 0 <= material.available_quantity <= material.total_quantity
    ]
    known = {material.id for material in materials}
    discrepancies.extend(
        LedgerDiscrepancy(material_id=material_id, name='', total_quantity=0, available_quantity=0, open_quantity=quantity)
        for material_id, quantity in sorted(open_quantities.items())
        if material_id not in known
    )
    return discrepancies


def export_cautelas_csv(db: Session) -> str:
    cautelas = db.execute(select(Cautela).order_by(Cautela.issued_at.desc(), Cautela.id.desc())).scalars().all()
    materials = dict(db.execute(select(Material.id, Material.name)).all())
    personnel = {row.id: row for row in db.execute(select(Personnel.id, Personnel.name, Personnel.registration_number, Personnel.rank)).all()}
    admins = dict(db.execute(select(Admin.id, Admin.name)).all())

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            'cautela_id',
            'status',
            'issued_at',
            'returned_at',
            'personnel',
            'registration_number',
            'armorer',
            'material',
            'quantity',
            'split_from_id',
        ]
    )
    for cautela in cautelas:
        person = personnel.get(cautela.personnel_id)
        for line in cautela.items:
            writer.writerow(
                [
                    cautela.id,
                    cautela.status.value,
                    cautela.issued_at.isoformat(),
                    cautela.returned_at.isoformat() if cautela.returned_at else '',
                    f'{person.rank} {person.name}'.strip() if person else f'#{cautela.personnel_id}',
                    person.registration_number if person else '',
                    admins.get(cautela.armorer_id, f'#{cautela.armorer_id}'),
                    materials.get(line.material_id, f'#{line.material_id}'),
                    line.quantity,
                    cautela.split_from_id or '',
                ]
            )
    return buffer.getvalue()

from sqlalchemy import select

from sentinela.db import SessionLocal, init_db
from sentinela.models import Material, Personnel
from sentinela.services.auth_service import login, roster_is_empty
from sentinela.services.inventory_service import create_material
from sentinela.services.personnel_service import create_personnel
from sentinela.services.settings_service import list_admins

DEMO_MATERIALS = [
    ('Pistola M9', 'Armamento', 10),
    ('Carabina CT-40', 'Armamento', 6),
    ('Colete balístico nível III', 'Proteção', 12),
    ('Carregador 9mm', 'Acessório', 30),
]

DEMO_PERSONNEL = [
    ('João Silva', '100200-1', 'Sd'),
    ('Maria Souza', '100300-2', 'Cb'),
    ('Pedro Santos', '100400-3', 'Sgt'),
]


def seed() -> None:
    init_db()
    with SessionLocal() as db:
        if roster_is_empty(db):
            armorer = login(db, name='Armeiro Chefe', matricula='000001')
        else:
            admin = list_admins(db)[0]
            armorer = login(db, name=admin.name, matricula=admin.matricula)

        for name, category, total in DEMO_MATERIALS:
            if db.execute(select(Material.id).where(Material.name == name)).first() is None:
                create_material(db, armorer=armorer, name=name, category=category, total_quantity=total)

        for name, registration_number, rank in DEMO_PERSONNEL:
            exists = db.execute(select(Personnel.id).where(Personnel.registration_number == registration_number)).first()
            if exists is None:
                create_personnel(db, armorer=armorer, name=name, registration_number=registration_number, rank=rank)


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')

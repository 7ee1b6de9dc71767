from __future__ import annotations

import unittest

from sqlalchemy.orm import sessionmaker

from sentinela.db import init_db, make_session_factory
from sentinela.models import Material
from sentinela.services.auth_service import login
from sentinela.services.inventory_service import create_material
from sentinela.services.personnel_service import create_personnel


def make_test_store(url: str = 'sqlite://') -> sessionmaker:
    session_factory = make_session_factory(url)
    init_db(session_factory)
    return session_factory


class StoreTestCase(unittest.TestCase):
    """Fresh in-memory store with the super administrator already bootstrapped."""

    def setUp(self) -> None:
        self.session_factory = make_test_store()
        self.db = self.session_factory()
        self.armorer = login(self.db, name='Cap Alves', matricula='1001')

    def tearDown(self) -> None:
        self.db.close()
        self.session_factory.kw['bind'].dispose()

    def material(self, name: str = 'Pistola M9', total: int = 10, category: str = 'Armamento') -> Material:
        return create_material(self.db, armorer=self.armorer, name=name, category=category, total_quantity=total)

    def person(self, name: str = 'João Silva', registration_number: str = '100200-1', rank: str = 'Sd'):
        return create_personnel(
            self.db, armorer=self.armorer, name=name, registration_number=registration_number, rank=rank
        )

    def available(self, material_id: int) -> int:
        material = self.db.get(Material, material_id, populate_existing=True)
        return material.available_quantity

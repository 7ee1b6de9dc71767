from __future__ import annotations

import os
import random
import tempfile
import threading
import unittest

from sqlalchemy import func, select

from sentinela.errors import InsufficientStock, InvalidOperation, InvalidQuantity, InvalidState, NotFound
from sentinela.models import Cautela, CautelaStatus, Material, SystemLog
from sentinela.services.auth_service import login
from sentinela.services.cautela_service import (
    ItemRequest,
    get_cautela,
    issue_cautela,
    list_cautelas,
    open_quantities_by_material,
    return_cautela,
)
from sentinela.services.inventory_service import create_material
from sentinela.services.personnel_service import create_personnel, delete_personnel
from sentinela.services.report_service import check_ledger
from support import StoreTestCase, make_test_store


class IssueTests(StoreTestCase):
    def test_pistol_scenario(self) -> None:
        pistol = self.material(name='Pistol M9', total=10)
        person = self.person()

        cautela_a = issue_cautela(self.db, armorer=self.armorer, personnel_id=person.id, items=[ItemRequest(pistol.id, 4)])
        self.assertEqual(cautela_a.status, CautelaStatus.OPEN)
        self.assertIsNone(cautela_a.returned_at)
        self.assertEqual(self.available(pistol.id), 6)

        with self.assertRaises(InsufficientStock):
            issue_cautela(self.db, armorer=self.armorer, personnel_id=person.id, items=[ItemRequest(pistol.id, 7)])
        self.assertEqual(self.available(pistol.id), 6)

        return_cautela(self.db, armorer=self.armorer, cautela_id=cautela_a.id)
        self.assertEqual(self.available(pistol.id), 10)

    def test_failed_multi_item_issue_rolls_back_earlier_reservations(self) -> None:
        vest = self.material(name='Colete', total=5)
        rifle = self.material(name='Carabina', total=1)
        person = self.person()

        with self.assertRaises(InsufficientStock) as ctx:
            issue_cautela(
                self.db,
                armorer=self.armorer,
                personnel_id=person.id,
                items=[ItemRequest(vest.id, 3), ItemRequest(rifle.id, 2)],
            )

        self.assertEqual(ctx.exception.material_id, rifle.id)
        self.assertEqual(self.available(vest.id), 5)
        self.assertEqual(self.available(rifle.id), 1)
        self.assertEqual(self.db.execute(select(func.count(Cautela.id))).scalar_one(), 0)
        actions = self.db.execute(select(SystemLog.action)).scalars().all()
        self.assertNotIn('Cautela aberta', actions)

    def test_issue_records_lines_in_request_order_and_logs(self) -> None:
        vest = self.material(name='Colete', total=5)
        pistol = self.material(name='Pistola', total=5)
        person = self.person()

        cautela = issue_cautela(
            self.db,
            armorer=self.armorer,
            personnel_id=person.id,
            items=[ItemRequest(vest.id, 1), ItemRequest(pistol.id, 2)],
        )

        reloaded = get_cautela(self.db, cautela.id)
        self.assertEqual([(line.material_id, line.quantity) for line in reloaded.items], [(vest.id, 1), (pistol.id, 2)])
        self.assertEqual(reloaded.armorer_id, self.armorer.id)
        log = self.db.execute(select(SystemLog).where(SystemLog.action == 'Cautela aberta')).scalar_one()
        self.assertEqual(log.armorer_name, 'Cap Alves')
        self.assertIn('João Silva', log.details)
        self.assertIn('2x Pistola', log.details)

    def test_request_validation_happens_before_any_reservation(self) -> None:
        pistol = self.material(total=10)
        person = self.person()
        cases = [
            ([], InvalidOperation),
            ([ItemRequest(pistol.id, 0)], InvalidQuantity),
            ([ItemRequest(pistol.id, 1), ItemRequest(pistol.id, 2)], InvalidOperation),
            ([ItemRequest(pistol.id, 1), ItemRequest(999, 1)], NotFound),
        ]
        for items, error in cases:
            with self.subTest(items=items):
                with self.assertRaises(error):
                    issue_cautela(self.db, armorer=self.armorer, personnel_id=person.id, items=items)
                self.assertEqual(self.available(pistol.id), 10)

        with self.assertRaises(NotFound):
            issue_cautela(self.db, armorer=self.armorer, personnel_id=999, items=[ItemRequest(pistol.id, 1)])
        self.assertEqual(self.available(pistol.id), 10)

    def test_personnel_with_open_cautela_cannot_be_deleted(self) -> None:
        pistol = self.material(total=10)
        person = self.person()
        cautela = issue_cautela(self.db, armorer=self.armorer, personnel_id=person.id, items=[ItemRequest(pistol.id, 1)])

        with self.assertRaises(InvalidOperation):
            delete_personnel(self.db, armorer=self.armorer, personnel_id=person.id)

        return_cautela(self.db, armorer=self.armorer, cautela_id=cautela.id)
        delete_personnel(self.db, armorer=self.armorer, personnel_id=person.id)
        with self.assertRaises(NotFound):
            issue_cautela(self.db, armorer=self.armorer, personnel_id=person.id, items=[ItemRequest(pistol.id, 1)])


class ReturnTests(StoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pistol = self.material(name='Pistola', total=10)
        self.magazine = self.material(name='Carregador', total=30)
        self.holder = self.person()

    def _issue(self, pistols: int = 4, magazines: int = 2) -> Cautela:
        return issue_cautela(
            self.db,
            armorer=self.armorer,
            personnel_id=self.holder.id,
            items=[ItemRequest(self.pistol.id, pistols), ItemRequest(self.magazine.id, magazines)],
        )

    def test_full_return_closes_cautela(self) -> None:
        cautela = self._issue()
        result = return_cautela(self.db, armorer=self.armorer, cautela_id=cautela.id)

        self.assertIsNone(result.remainder)
        self.assertEqual(result.returned.status, CautelaStatus.RETURNED)
        self.assertIsNotNone(result.returned.returned_at)
        self.assertEqual(self.available(self.pistol.id), 10)
        self.assertEqual(self.available(self.magazine.id), 30)
        self.assertIn('Cautela devolvida', self.db.execute(select(SystemLog.action)).scalars().all())

    def test_second_return_fails_without_double_increment(self) -> None:
        cautela = self._issue()
        other = self._issue(pistols=1, magazines=1)
        return_cautela(self.db, armorer=self.armorer, cautela_id=cautela.id)

        with self.assertRaises(InvalidState):
            return_cautela(self.db, armorer=self.armorer, cautela_id=cautela.id)
        self.assertEqual(self.available(self.pistol.id), 9)
        self.assertEqual(self.available(self.magazine.id), 29)
        self.assertEqual(get_cautela(self.db, other.id).status, CautelaStatus.OPEN)

    def test_return_unknown_cautela(self) -> None:
        with self.assertRaises(NotFound):
            return_cautela(self.db, armorer=self.armorer, cautela_id=404)

    def test_partial_return_splits_outstanding_lines(self) -> None:
        cautela = self._issue(pistols=4, magazines=2)
        result = return_cautela(
            self.db, armorer=self.armorer, cautela_id=cautela.id, items=[ItemRequest(self.pistol.id, 1)]
        )

        closed = get_cautela(self.db, cautela.id)
        self.assertEqual(closed.status, CautelaStatus.RETURNED)
        self.assertEqual([(line.material_id, line.quantity) for line in closed.items], [(self.pistol.id, 1)])

        remainder = get_cautela(self.db, result.remainder.id)
        self.assertEqual(remainder.status, CautelaStatus.OPEN)
        self.assertEqual(remainder.split_from_id, cautela.id)
        self.assertEqual(remainder.personnel_id, self.holder.id)
        self.assertEqual(
            [(line.material_id, line.quantity) for line in remainder.items],
            [(self.pistol.id, 3), (self.magazine.id, 2)],
        )
        self.assertEqual(self.available(self.pistol.id), 7)
        self.assertEqual(self.available(self.magazine.id), 28)
        self.assertEqual(check_ledger(self.db), [])
        self.assertIn('Devolução parcial', self.db.execute(select(SystemLog.action)).scalars().all())

        return_cautela(self.db, armorer=self.armorer, cautela_id=remainder.id)
        self.assertEqual(self.available(self.pistol.id), 10)
        self.assertEqual(self.available(self.magazine.id), 30)

    def test_partial_return_covering_everything_closes_without_split(self) -> None:
        cautela = self._issue(pistols=2, magazines=1)
        result = return_cautela(
            self.db,
            armorer=self.armorer,
            cautela_id=cautela.id,
            items=[ItemRequest(self.magazine.id, 1), ItemRequest(self.pistol.id, 2)],
        )
        self.assertIsNone(result.remainder)
        self.assertEqual(len(list_cautelas(self.db)), 1)

    def test_partial_return_validation(self) -> None:
        cautela = self._issue(pistols=2, magazines=1)
        other = self.material(name='Algemas', total=3)
        cases = [
            ([ItemRequest(self.pistol.id, 3)], InvalidQuantity),
            ([ItemRequest(other.id, 1)], InvalidOperation),
            ([], InvalidOperation),
            ([ItemRequest(self.pistol.id, 1), ItemRequest(self.pistol.id, 1)], InvalidOperation),
        ]
        for items, error in cases:
            with self.subTest(items=items):
                with self.assertRaises(error):
                    return_cautela(self.db, armorer=self.armorer, cautela_id=cautela.id, items=items)
                self.assertEqual(get_cautela(self.db, cautela.id).status, CautelaStatus.OPEN)
                self.assertEqual(self.available(self.pistol.id), 8)

    def test_list_cautelas_filters(self) -> None:
        first = self._issue(pistols=1, magazines=1)
        second = self._issue(pistols=1, magazines=1)
        return_cautela(self.db, armorer=self.armorer, cautela_id=first.id)

        self.assertEqual([c.id for c in list_cautelas(self.db, status=CautelaStatus.OPEN)], [second.id])
        self.assertEqual([c.id for c in list_cautelas(self.db, status=CautelaStatus.RETURNED)], [first.id])
        self.assertEqual({c.id for c in list_cautelas(self.db, personnel_id=self.holder.id)}, {first.id, second.id})


class LedgerInvariantTests(StoreTestCase):
    def test_random_operation_sequences_keep_ledger_consistent(self) -> None:
        rng = random.Random(1234)
        materials = [self.material(name=f'Item {index}', total=rng.randint(0, 8)) for index in range(4)]
        people = [self.person(name=f'Militar {index}', registration_number=f'R-{index}') for index in range(3)]

        for _ in range(120):
            open_ids = [c.id for c in list_cautelas(self.db, status=CautelaStatus.OPEN)]
            if open_ids and rng.random() < 0.4:
                return_cautela(self.db, armorer=self.armorer, cautela_id=rng.choice(open_ids))
                continue
            chosen = rng.sample(materials, rng.randint(1, len(materials)))
            items = [ItemRequest(material.id, rng.randint(1, 4)) for material in chosen]
            try:
                issue_cautela(self.db, armorer=self.armorer, personnel_id=rng.choice(people).id, items=items)
            except InsufficientStock:
                pass

            open_quantities = open_quantities_by_material(self.db)
            for material in materials:
                current = self.db.get(Material, material.id, populate_existing=True)
                self.assertGreaterEqual(current.available_quantity, 0)
                self.assertLessEqual(current.available_quantity, current.total_quantity)
                self.assertEqual(current.total_quantity - current.available_quantity, open_quantities.get(material.id, 0))

        self.assertEqual(check_ledger(self.db), [])


class ConcurrentIssueTests(unittest.TestCase):
    def setUp(self) -> None:
        handle, self.path = tempfile.mkstemp(suffix='.sqlite3')
        os.close(handle)
        self.session_factory = make_test_store(f'sqlite:///{self.path}')
        with self.session_factory() as db:
            self.armorer = login(db, name='Cap Alves', matricula='1001')
            self.material_id = create_material(
                db, armorer=self.armorer, name='Pistola', category='Armamento', total_quantity=10
            ).id
            self.personnel_id = create_personnel(
                db, armorer=self.armorer, name='João Silva', registration_number='100200-1'
            ).id

    def tearDown(self) -> None:
        self.session_factory.kw['bind'].dispose()
        os.remove(self.path)

    def test_parallel_issues_never_over_issue(self) -> None:
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()
        start = threading.Barrier(8)

        def worker() -> None:
            with self.session_factory() as db:
                start.wait()
                try:
                    issue_cautela(
                        db,
                        armorer=self.armorer,
                        personnel_id=self.personnel_id,
                        items=[ItemRequest(self.material_id, 3)],
                    )
                    outcome = 'issued'
                except InsufficientStock:
                    outcome = 'refused'
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count('issued'), 3)
        self.assertEqual(outcomes.count('refused'), 5)
        with self.session_factory() as db:
            self.assertEqual(db.get(Material, self.material_id).available_quantity, 1)
            self.assertEqual(check_ledger(db), [])


if __name__ == '__main__':
    unittest.main()

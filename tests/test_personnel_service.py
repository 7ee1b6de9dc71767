from __future__ import annotations

import os
import tempfile
import threading
import unittest
from unittest import mock

from sqlalchemy import select

from sentinela.errors import InvalidOperation, NotFound
from sentinela.models import Cautela, Material, Personnel, SystemLog
from sentinela.services import personnel_service
from sentinela.services.auth_service import login
from sentinela.services.cautela_service import ItemRequest, issue_cautela
from sentinela.services.inventory_service import create_material
from sentinela.services.personnel_service import create_personnel, delete_personnel, update_personnel
from support import StoreTestCase, make_test_store


class PersonnelManagementTests(StoreTestCase):
    def test_create_rejects_duplicate_registration(self) -> None:
        self.person(registration_number='100200-1')

        with self.assertRaises(InvalidOperation):
            self.person(name='Outro', registration_number='100200-1')

    def test_update_changes_fields_and_logs(self) -> None:
        person = self.person()

        update_personnel(self.db, armorer=self.armorer, personnel_id=person.id, name='João S. Silva', rank='Cb')

        reloaded = self.db.get(Personnel, person.id, populate_existing=True)
        self.assertEqual((reloaded.name, reloaded.rank, reloaded.registration_number), ('João S. Silva', 'Cb', '100200-1'))
        last_action = self.db.execute(select(SystemLog.action).order_by(SystemLog.id.desc())).scalars().first()
        self.assertEqual(last_action, 'Militar editado')

    def test_update_rejects_registration_taken_by_someone_else(self) -> None:
        first = self.person(registration_number='R-1')
        second = self.person(name='Maria Souza', registration_number='R-2')

        with self.assertRaises(InvalidOperation):
            update_personnel(self.db, armorer=self.armorer, personnel_id=second.id, registration_number='R-1')

        self.assertEqual(self.db.get(Personnel, second.id, populate_existing=True).registration_number, 'R-2')
        update_personnel(self.db, armorer=self.armorer, personnel_id=first.id, registration_number='R-1')

    def test_unique_index_violation_surfaces_as_invalid_operation(self) -> None:
        self.person(registration_number='R-1')
        second = self.person(name='Maria Souza', registration_number='R-2')

        # Another process can win between the lookup and the write; the index then decides.
        with mock.patch.object(personnel_service, '_ensure_unique_registration'):
            with self.assertRaises(InvalidOperation):
                update_personnel(self.db, armorer=self.armorer, personnel_id=second.id, registration_number='R-1')
            with self.assertRaises(InvalidOperation):
                self.person(name='Pedro Santos', registration_number='R-1')

        self.assertEqual(self.db.get(Personnel, second.id, populate_existing=True).registration_number, 'R-2')

    def test_update_unknown_personnel(self) -> None:
        with self.assertRaises(NotFound):
            update_personnel(self.db, armorer=self.armorer, personnel_id=404, name='Ninguém')


class ConcurrentPersonnelTests(unittest.TestCase):
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
            self.other_id = create_personnel(
                db, armorer=self.armorer, name='Maria Souza', registration_number='100300-2'
            ).id

    def tearDown(self) -> None:
        self.session_factory.kw['bind'].dispose()
        os.remove(self.path)

    def test_issue_cannot_slip_between_open_check_and_delete(self) -> None:
        outcomes: list[str] = []

        def issue_to_same_person() -> None:
            with self.session_factory() as db:
                try:
                    issue_cautela(
                        db,
                        armorer=self.armorer,
                        personnel_id=self.personnel_id,
                        items=[ItemRequest(self.material_id, 2)],
                    )
                    outcomes.append('issued')
                except NotFound:
                    outcomes.append('not found')

        worker = threading.Thread(target=issue_to_same_person)
        check_open = personnel_service.has_open_cautela

        def check_then_let_issue_run(db, personnel_id):
            found = check_open(db, personnel_id)
            worker.start()
            # The issue has time to finish here unless it waits for the delete.
            worker.join(timeout=0.5)
            return found

        with mock.patch.object(personnel_service, 'has_open_cautela', side_effect=check_then_let_issue_run):
            with self.session_factory() as db:
                delete_personnel(db, armorer=self.armorer, personnel_id=self.personnel_id)
        worker.join()

        self.assertEqual(outcomes, ['not found'])
        with self.session_factory() as db:
            self.assertIsNone(db.get(Personnel, self.personnel_id))
            open_for_person = db.execute(select(Cautela.id).where(Cautela.personnel_id == self.personnel_id)).all()
            self.assertEqual(open_for_person, [])
            self.assertEqual(db.get(Material, self.material_id).available_quantity, 10)

    def test_parallel_updates_to_same_registration_number(self) -> None:
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()
        start = threading.Barrier(2)

        def worker(personnel_id: int) -> None:
            with self.session_factory() as db:
                start.wait()
                try:
                    update_personnel(db, armorer=self.armorer, personnel_id=personnel_id, registration_number='999999-9')
                    outcome = 'updated'
                except InvalidOperation:
                    outcome = 'refused'
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=(pid,)) for pid in (self.personnel_id, self.other_id)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ['refused', 'updated'])
        with self.session_factory() as db:
            numbers = db.execute(select(Personnel.registration_number)).scalars().all()
            self.assertEqual(numbers.count('999999-9'), 1)


if __name__ == '__main__':
    unittest.main()

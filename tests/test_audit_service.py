from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sentinela.models import SystemLog
from sentinela.services.audit_service import add_log, list_logs, log_to_dict
from support import StoreTestCase


class AuditLogTests(StoreTestCase):
    def test_entries_come_back_newest_first(self) -> None:
        add_log(self.db, 'Cap Alves', 'Material cadastrado', 'Pistola')
        add_log(self.db, 'Cap Alves', 'Material editado', 'Pistola')
        self.db.commit()

        actions = [entry.action for entry in list_logs(self.db)]

        self.assertEqual(actions, ['Material editado', 'Material cadastrado', 'Sistema'])

    def test_limit_keeps_most_recent(self) -> None:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for offset in range(5):
            self.db.add(
                SystemLog(timestamp=base + timedelta(minutes=offset), armorer_name='Cap Alves', action=f'a{offset}', details='')
            )
        self.db.commit()

        entries = list_logs(self.db, limit=2)

        # The bootstrap entry carries the current time, so it is the newest.
        self.assertEqual([entry.action for entry in entries], ['Sistema', 'a4'])

    def test_log_to_dict(self) -> None:
        entry = add_log(self.db, 'Cap Alves', 'Login', 'Administrador acessou o sistema')
        self.db.commit()

        data = log_to_dict(entry)

        self.assertEqual(data['armorer_name'], 'Cap Alves')
        self.assertEqual(data['action'], 'Login')
        self.assertEqual(set(data), {'id', 'timestamp', 'armorer_name', 'action', 'details'})


if __name__ == '__main__':
    unittest.main()

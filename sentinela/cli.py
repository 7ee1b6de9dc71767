from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sentinela.db import SessionLocal, init_db
from sentinela.errors import RestoreValidationFailed
from sentinela.logging_config import configure_logging
from sentinela.services.backup_service import create_backup, restore_backup
from sentinela.services.report_service import check_ledger


def _backup(args: argparse.Namespace) -> int:
    with SessionLocal() as db:
        payload = create_backup(db)
    Path(args.out).write_bytes(payload)
    print(f'Backup written to {args.out} ({len(payload)} bytes)')
    return 0


def _restore(args: argparse.Namespace) -> int:
    raw = Path(args.file).read_bytes()
    with SessionLocal() as db:
        try:
            restore_backup(db, raw)
        except RestoreValidationFailed as exc:
            print(f'Restore rejected: {exc.detail}', file=sys.stderr)
            return 1
    print('Backup restored.')
    return 0


def _check_ledger(_: argparse.Namespace) -> int:
    with SessionLocal() as db:
        discrepancies = check_ledger(db)
    if not discrepancies:
        print('Ledger consistent.')
        return 0
    for item in discrepancies:
        print(
            f'material {item.material_id} {item.name!r}: issued {item.issued_quantity}, '
            f'open cautelas hold {item.open_quantity}',
            file=sys.stderr,
        )
    return 1


def _init_db(_: argparse.Namespace) -> int:
    init_db()
    print('Schema created.')
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='sentinela', description='Armory custody control maintenance commands')
    subparsers = parser.add_subparsers(dest='command', required=True)

    backup = subparsers.add_parser('backup', help='Write a backup archive')
    backup.add_argument('--out', required=True, help='Destination .zip path')
    backup.set_defaults(handler=_backup)

    restore = subparsers.add_parser('restore', help='Replace all data with a backup archive')
    restore.add_argument('file', help='Backup .zip or .json file')
    restore.set_defaults(handler=_restore)

    subparsers.add_parser('check-ledger', help='Verify stock against open cautelas').set_defaults(handler=_check_ledger)
    subparsers.add_parser('init-db', help='Create the database schema').set_defaults(handler=_init_db)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    if args.command != 'init-db':
        init_db()
    return args.handler(args)


if __name__ == '__main__':
    sys.exit(main())

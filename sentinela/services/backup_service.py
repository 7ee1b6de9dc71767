"""
Backup archive export and restore.

Archive: a ZIP holding one ``backup.json`` document with the five sections
``materials``, ``personnel``, ``cautelas``, ``logs`` and ``settings`` (the
admin roster lives inside ``settings``). Restore also accepts the bare JSON.

Both directions hold the store gate exclusively: the snapshot never sees a
half-applied ledger mutation and a restore is never interleaved with one.
Restore validates everything before deleting anything; a rejected archive
leaves the store untouched.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
import zlib
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import delete, select, text
from sqlalchemy.orm import Session

from sentinela.config import settings
from sentinela.errors import RestoreValidationFailed
from sentinela.models import (
    Admin,
    AdminRole,
    AppSettings,
    Cautela,
    CautelaItem,
    CautelaStatus,
    Material,
    Personnel,
    SystemLog,
    Theme,
    WebSession,
)
from sentinela.services.concurrency import store_gate
from sentinela.services.settings_service import SETTINGS_ROW_ID, get_app_settings

logger = logging.getLogger(__name__)

ARCHIVE_MEMBER = 'backup.json'
ARCHIVE_VERSION = 1
SECTIONS = ('materials', 'personnel', 'cautelas', 'logs', 'settings')


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


class MaterialRecord(_Record):
    id: int
    name: str
    category: str = ''
    total_quantity: NonNegativeInt
    available_quantity: NonNegativeInt

    @model_validator(mode='after')
    def _available_within_total(self):
        if self.available_quantity > self.total_quantity:
            raise ValueError(f'material {self.id}: availableQuantity exceeds totalQuantity')
        return self


class PersonnelRecord(_Record):
    id: int
    name: str
    registration_number: str
    rank: str = ''


class CautelaItemRecord(_Record):
    material_id: int
    quantity: PositiveInt


class CautelaRecord(_Record):
    id: int
    personnel_id: int
    armorer_id: int
    items: list[CautelaItemRecord] = Field(min_length=1)
    issued_at: datetime
    status: CautelaStatus
    returned_at: datetime | None = None
    split_from_id: int | None = None

    @model_validator(mode='after')
    def _consistent(self):
        if (self.status == CautelaStatus.RETURNED) != (self.returned_at is not None):
            raise ValueError(f'cautela {self.id}: returnedAt must be present exactly when status is RETURNED')
        material_ids = [item.material_id for item in self.items]
        if len(material_ids) != len(set(material_ids)):
            raise ValueError(f'cautela {self.id}: a material appears on more than one line')
        return self


class LogRecord(_Record):
    id: int
    timestamp: datetime
    armorer_name: str
    action: str
    details: str = ''


class AdminRecord(_Record):
    id: int
    name: str
    matricula: str
    # No default: legacy records without a role are rejected, never patched.
    role: AdminRole


class SettingsRecord(_Record):
    institution_name: str
    institution_logo: str | None = None
    theme: Theme = Theme.LIGHT
    admins: list[AdminRecord]


class BackupArchive(_Record):
    version: int = ARCHIVE_VERSION
    created_at: datetime | None = None
    materials: list[MaterialRecord]
    personnel: list[PersonnelRecord]
    cautelas: list[CautelaRecord]
    logs: list[LogRecord]
    settings: SettingsRecord


def _all(db: Session, model) -> list:
    query = select(model).order_by(model.id.asc()).execution_options(populate_existing=True)
    return list(db.execute(query).scalars().all())


def _snapshot(db: Session) -> BackupArchive:
    app_settings = get_app_settings(db)
    db.refresh(app_settings)
    materials = _all(db, Material)
    personnel = _all(db, Personnel)
    cautelas = _all(db, Cautela)
    logs = _all(db, SystemLog)
    admins = _all(db, Admin)

    return BackupArchive(
        version=ARCHIVE_VERSION,
        created_at=datetime.now(tz=timezone.utc),
        materials=[
            MaterialRecord(
                id=m.id,
                name=m.name,
                category=m.category,
                total_quantity=m.total_quantity,
                available_quantity=m.available_quantity,
            )
            for m in materials
        ],
        personnel=[
            PersonnelRecord(id=p.id, name=p.name, registration_number=p.registration_number, rank=p.rank)
            for p in personnel
        ],
        cautelas=[
            CautelaRecord(
                id=c.id,
                personnel_id=c.personnel_id,
                armorer_id=c.armorer_id,
                items=[CautelaItemRecord(material_id=line.material_id, quantity=line.quantity) for line in c.items],
                issued_at=_utc(c.issued_at),
                status=c.status,
                returned_at=_utc(c.returned_at),
                split_from_id=c.split_from_id,
            )
            for c in cautelas
        ],
        logs=[
            LogRecord(
                id=log.id,
                timestamp=_utc(log.timestamp),
                armorer_name=log.armorer_name,
                action=log.action,
                details=log.details,
            )
            for log in logs
        ],
        settings=SettingsRecord(
            institution_name=app_settings.institution_name,
            institution_logo=app_settings.institution_logo,
            theme=app_settings.theme,
            admins=[AdminRecord(id=a.id, name=a.name, matricula=a.matricula, role=a.role) for a in admins],
        ),
    )


def snapshot_document(db: Session) -> dict:
    """Point-in-time copy of the five sections as plain JSON-ready data."""
    with store_gate.exclusive():
        archive = _snapshot(db)
        # get_app_settings may have created the row on an empty store.
        db.commit()
    return archive.model_dump(mode='json', by_alias=True)


def create_backup(db: Session) -> bytes:
    document = snapshot_document(db)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(ARCHIVE_MEMBER, json.dumps(document, ensure_ascii=False, indent=2))
    logger.info(
        'Backup created: %d materials, %d personnel, %d cautelas, %d logs',
        len(document['materials']),
        len(document['personnel']),
        len(document['cautelas']),
        len(document['logs']),
    )
    return buffer.getvalue()


def _read_member(archive: zipfile.ZipFile, limit: int) -> bytes:
    names = archive.namelist()
    member = ARCHIVE_MEMBER if ARCHIVE_MEMBER in names else next((name for name in names if name.endswith('.json')), None)
    if member is None:
        raise RestoreValidationFailed('Archive does not contain a JSON document')
    if archive.getinfo(member).file_size > limit:
        raise RestoreValidationFailed(f'{member} exceeds {limit} bytes')
    # The declared size can lie; never inflate past the cap.
    with archive.open(member) as handle:
        data = handle.read(limit + 1)
    if len(data) > limit:
        raise RestoreValidationFailed(f'{member} exceeds {limit} bytes')
    return data


def _read_document(raw: bytes) -> dict:
    limit = settings.max_backup_bytes
    if len(raw) > limit:
        raise RestoreValidationFailed(f'Backup file exceeds {limit} bytes')
    try:
        if zipfile.is_zipfile(io.BytesIO(raw)):
            with zipfile.ZipFile(io.BytesIO(raw)) as archive:
                raw = _read_member(archive, limit)
        document = json.loads(raw.decode('utf-8-sig'))
    except (
        zipfile.BadZipFile,
        zlib.error,
        RuntimeError,
        NotImplementedError,
        EOFError,
        UnicodeDecodeError,
        json.JSONDecodeError,
    ) as exc:
        # Encrypted members raise RuntimeError, unknown compression methods NotImplementedError.
        raise RestoreValidationFailed(f'Unreadable backup file: {exc}') from exc

    if not isinstance(document, dict):
        raise RestoreValidationFailed('Backup document must be a JSON object')
    missing = [section for section in SECTIONS if section not in document]
    if missing:
        raise RestoreValidationFailed(f'Backup is missing section(s): {", ".join(missing)}')
    return document


def _duplicates(values) -> list:
    return [value for value, count in Counter(values).items() if count > 1]


def _check_integrity(archive: BackupArchive) -> None:
    problems: list[str] = []
    for label, values in (
        ('material id', [m.id for m in archive.materials]),
        ('personnel id', [p.id for p in archive.personnel]),
        ('cautela id', [c.id for c in archive.cautelas]),
        ('log id', [log.id for log in archive.logs]),
        ('admin id', [a.id for a in archive.settings.admins]),
        ('registration number', [p.registration_number for p in archive.personnel]),
        ('matricula', [a.matricula for a in archive.settings.admins]),
    ):
        for value in _duplicates(values):
            problems.append(f'duplicate {label} {value!r}')

    admins = archive.settings.admins
    super_admins = [a for a in admins if a.role == AdminRole.SUPER_ADMIN]
    if admins and len(super_admins) != 1:
        problems.append(f'roster must hold exactly one SUPER_ADMIN, found {len(super_admins)}')

    materials = {m.id: m for m in archive.materials}
    personnel_ids = {p.id for p in archive.personnel}
    outstanding: Counter = Counter()
    for cautela in archive.cautelas:
        if cautela.status != CautelaStatus.OPEN:
            continue
        if cautela.personnel_id not in personnel_ids:
            problems.append(f'open cautela {cautela.id} references unknown personnel {cautela.personnel_id}')
        for item in cautela.items:
            if item.material_id not in materials:
                problems.append(f'open cautela {cautela.id} references unknown material {item.material_id}')
            outstanding[item.material_id] += item.quantity

    for material in archive.materials:
        issued = material.total_quantity - material.available_quantity
        if issued != outstanding.get(material.id, 0):
            problems.append(
                f'material {material.id}: {issued} unit(s) issued but open cautelas hold {outstanding.get(material.id, 0)}'
            )

    if problems:
        raise RestoreValidationFailed('Inconsistent backup: ' + '; '.join(problems))


def parse_backup(raw: bytes) -> BackupArchive:
    document = _read_document(raw)
    try:
        archive = BackupArchive.model_validate(document)
    except ValidationError as exc:
        raise RestoreValidationFailed(f'Malformed backup: {exc.error_count()} validation error(s): {exc}') from exc
    _check_integrity(archive)
    return archive


def _reset_sequences(db: Session) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return
    for table in ('materials', 'personnel', 'cautelas', 'system_logs', 'admins'):
        db.execute(
            text(
                f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                f'COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)'
            )
        )


def _replace_all(db: Session, archive: BackupArchive) -> None:
    for model in (WebSession, CautelaItem, Cautela, SystemLog, Material, Personnel, Admin, AppSettings):
        db.execute(delete(model))
    db.flush()
    db.expunge_all()

    db.add_all(
        Material(
            id=m.id,
            name=m.name,
            category=m.category,
            total_quantity=m.total_quantity,
            available_quantity=m.available_quantity,
        )
        for m in archive.materials
    )
    db.add_all(
        Personnel(id=p.id, name=p.name, registration_number=p.registration_number, rank=p.rank)
        for p in archive.personnel
    )
    db.add_all(
        Cautela(
            id=c.id,
            personnel_id=c.personnel_id,
            armorer_id=c.armorer_id,
            status=c.status,
            issued_at=c.issued_at,
            returned_at=c.returned_at,
            split_from_id=c.split_from_id,
            items=[
                CautelaItem(position=position, material_id=item.material_id, quantity=item.quantity)
                for position, item in enumerate(c.items)
            ],
        )
        for c in archive.cautelas
    )
    db.add_all(
        SystemLog(
            id=log.id,
            timestamp=log.timestamp,
            armorer_name=log.armorer_name,
            action=log.action,
            details=log.details,
        )
        for log in archive.logs
    )
    db.add_all(Admin(id=a.id, name=a.name, matricula=a.matricula, role=a.role) for a in archive.settings.admins)
    db.add(
        AppSettings(
            id=SETTINGS_ROW_ID,
            institution_name=archive.settings.institution_name,
            institution_logo=archive.settings.institution_logo,
            theme=archive.settings.theme,
        )
    )
    db.flush()
    _reset_sequences(db)


def restore_backup(db: Session, raw: bytes, *, on_complete: Callable[[bool], None] | None = None) -> None:
    """Replace the whole store with the archive in ``raw``.

    ``on_complete`` receives the outcome (the caller's cue to reload its
    state); failures are raised as well. Every web session is dropped on
    success, so clients sign in again against the restored roster.
    """
    try:
        archive = parse_backup(raw)
        with store_gate.exclusive():
            try:
                _replace_all(db, archive)
                db.commit()
            except Exception:
                db.rollback()
                raise
    except Exception as exc:
        logger.warning('Restore rejected: %s', exc)
        if on_complete is not None:
            on_complete(False)
        raise

    logger.info(
        'Backup restored: %d materials, %d personnel, %d cautelas, %d logs, %d admins',
        len(archive.materials),
        len(archive.personnel),
        len(archive.cautelas),
        len(archive.logs),
        len(archive.settings.admins),
    )
    if on_complete is not None:
        on_complete(True)

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from sentinela.models import SystemLog


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def add_log(db: Session, armorer_name: str, action: str, details: str) -> SystemLog:
    """Append one audit entry. This is the only write path into ``system_logs``.

    The entry joins the caller's transaction; it is committed (or discarded)
    together with the change it describes.
    """
    entry = SystemLog(
        timestamp=_now(),
        armorer_name=armorer_name,
        action=action,
        details=details,
    )
    db.add(entry)
    db.flush()
    return entry


def list_logs(db: Session, *, limit: int | None = None) -> list[SystemLog]:
    query = select(SystemLog).order_by(SystemLog.timestamp.desc(), SystemLog.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return list(db.execute(query).scalars().all())


def log_to_dict(entry: SystemLog) -> dict:
    return {
        'id': entry.id,
        'timestamp': entry.timestamp,
        'armorer_name': entry.armorer_name,
        'action': entry.action,
        'details': entry.details,
    }

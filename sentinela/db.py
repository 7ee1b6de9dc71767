from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sentinela.config import settings
from sentinela.models import Base


def _connect_args(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'check_same_thread': False}
    return {}


def _is_memory_sqlite(url: str) -> bool:
    return url in {'sqlite://', 'sqlite:///:memory:'}


def make_session_factory(url: str) -> sessionmaker:
    if _is_memory_sqlite(url):
        # One shared connection, otherwise every checkout sees its own empty database.
        engine = create_engine(url, connect_args=_connect_args(url), poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args=_connect_args(url), pool_pre_ping=True)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


SessionLocal = make_session_factory(settings.database_url_normalized)


def init_db(session_factory: sessionmaker = SessionLocal) -> None:
    Base.metadata.create_all(session_factory.kw['bind'])


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()

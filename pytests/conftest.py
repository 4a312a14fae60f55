from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from jobs.publisher import AtomicPublisher
from pytests.common import create_empty_sqlite_db, patch_app_db


@dataclass
class RegistryDb:
    engine: Engine
    session_factory: sessionmaker
    publisher: AtomicPublisher


@pytest.fixture()
def registry_db(tmp_path, monkeypatch):
    """Temp SQLite DB wired into the app, plus a publisher bound to it.

    The publisher is a private instance so background drop threads of one
    test are joined before its database goes away.
    """

    session, engine = create_empty_sqlite_db(tmp_path / "registry.sqlite")
    session.close()
    factory = patch_app_db(monkeypatch, engine)
    publisher = AtomicPublisher(session_factory=factory, batch_size=100)
    try:
        yield RegistryDb(engine=engine, session_factory=factory, publisher=publisher)
    finally:
        publisher.wait_for_drops(timeout=5)
        engine.dispose()

"""Shared helpers for tests.

Intended usage:
- spin up a temporary SQLite database
- create all SQLAlchemy tables
- point the app (``db.engine`` / ``db.SessionLocal``) at it
- build small pg_dump text fixtures and publish company sets directly

These utilities keep tests small and consistent.
"""

from __future__ import annotations

import gzip
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db
from jobs.entity_resolver import ResolvedCompany
from jobs.publisher import AtomicPublisher
from models import Base
from support.source_ingest_base import IngestRunResult
from utils.text_normalize import normalize_name

__all__ = [
    "make_sqlite_engine",
    "create_empty_sqlite_db",
    "patch_app_db",
    "add_dicts",
    "copy_section",
    "org_row",
    "entry_row",
    "address_row",
    "legal_form_row",
    "write_dump",
    "make_company",
    "publish_companies",
    "BlockingJob",
]


def make_sqlite_engine(db_path: Path | str) -> Engine:
    """Create a SQLite engine suitable for tests (WAL, shared across threads)."""

    if isinstance(db_path, Path):
        db_path = str(db_path)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", db._set_sqlite_pragmas)
    return engine


def create_empty_sqlite_db(db_path: Path) -> tuple[Session, Engine]:
    """Create an empty SQLite DB file and initialize all models.

    Returns (session, engine).
    """

    engine = make_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal(), engine


def patch_app_db(monkeypatch, engine: Engine) -> sessionmaker:
    """Point db.engine / db.SessionLocal at `engine` for the test's duration."""

    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", factory)
    return factory


def add_dicts(session: Session, model, rows: Iterable[dict[str, Any]]) -> None:
    """Bulk insert a list of dicts into a SQLAlchemy model table."""

    objs = [model(**row) for row in rows]
    session.add_all(objs)
    session.commit()


# --- dump fixtures ----------------------------------------------------------


def _field(value: Any) -> str:
    return "\\N" if value is None else str(value)


def copy_section(
    relation: str, rows: Iterable[Sequence[Any]], *, schema: str = "rpo"
) -> str:
    """Render one ``COPY ... FROM stdin;`` block in pg_dump text format.

    Values are written as-is (no escaping), ``None`` becomes ``\\N``.
    """

    rows = [list(r) for r in rows]
    width = max((len(r) for r in rows), default=1)
    columns = ", ".join(f"c{i}" for i in range(width))
    lines = [f"COPY {schema}.{relation} ({columns}) FROM stdin;"]
    lines.extend("\t".join(_field(v) for v in r) for r in rows)
    lines.append("\\.")
    return "\n".join(lines) + "\n\n"


def org_row(org_id: int, terminated_on: str | None = None) -> list[Any]:
    return [org_id, "2001-01-01", terminated_on]


def entry_row(
    row_id: int,
    org_id: int,
    value: Any,
    *,
    effective_from: str | None = "2010-01-01",
    effective_to: str | None = None,
) -> list[Any]:
    """Identifier / name / legal-form-assignment entry."""

    return [row_id, org_id, value, effective_from, effective_to]


def address_row(
    row_id: int,
    org_id: int,
    *,
    street: str | None,
    postal_code: str | None,
    city: str | None,
    effective_from: str | None = "2010-01-01",
    effective_to: str | None = None,
) -> list[Any]:
    return [
        row_id,
        org_id,
        None,
        street,
        None,
        None,
        postal_code,
        city,
        None,
        effective_from,
        effective_to,
    ]


def legal_form_row(form_id: int, name: str) -> list[Any]:
    return [form_id, name]


def write_dump(path: Path, *sections: str, compress: bool = True) -> Path:
    text = "--\n-- PostgreSQL database dump\n--\n\nSET client_encoding = 'UTF8';\n\n"
    text += "".join(sections)
    data = text.encode("utf-8")
    if compress:
        path.write_bytes(gzip.compress(data))
    else:
        path.write_bytes(data)
    return path


# --- published data ---------------------------------------------------------


def make_company(
    identifier: str,
    name: str,
    *,
    organization_id: int | None = None,
    legal_form: str | None = "Spoločnosť s ručením obmedzeným",
    street: str | None = "Hlavná 1",
    city: str | None = "Bratislava",
    postal_code: str | None = "81101",
    is_active: bool = True,
) -> ResolvedCompany:
    return ResolvedCompany(
        identifier=identifier,
        organization_id=organization_id or int(identifier),
        name=name,
        normalized_name=normalize_name(name),
        legal_form=legal_form,
        street=street,
        city=city,
        postal_code=postal_code,
        country="Slovensko",
        is_active=is_active,
    )


def publish_companies(publisher: AtomicPublisher, companies: Iterable[ResolvedCompany]) -> int:
    """Write, index and swap in a generation; return its id."""

    generation_id = publisher.begin()
    count = publisher.write(generation_id, companies)
    publisher.build_indexes(generation_id)
    publisher.swap(generation_id, record_count=count)
    return generation_id


class BlockingJob:
    """Import job stand-in that runs until `release` is set."""

    def __init__(self, release: threading.Event, result: IngestRunResult | None = None):
        self.release = release
        self.result = result or IngestRunResult(
            success=True, record_count=3, duration_seconds=0.1
        )

    def run(self) -> IngestRunResult:
        self.release.wait(timeout=10)
        return self.result

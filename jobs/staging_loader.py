"""Bulk-load parsed dump rows into the staging tables.

Staging is scratch space owned by a single import run: ``reset()`` wipes it,
``load()`` streams the parser output into it in bounded batches, and
``build_indexes()`` adds the organization-key indexes the resolver joins on.
A failed batch aborts the run; a half-loaded staging area is never resolved.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as SASession

import db
from config import get_setting
from logging_utils import get_logger
from models.staging import (
    ORGANIZATION_KEY_INDEXES,
    StagingAddress,
    StagingIdentifier,
    StagingLegalForm,
    StagingLegalFormAssignment,
    StagingName,
    StagingOrganization,
)
from support.source_ingest_base import RegistryImportError
from utils.dump_layout import RelationKind

logger = get_logger(__name__)

STAGING_MODELS: dict[RelationKind, type] = {
    RelationKind.ORGANIZATION: StagingOrganization,
    RelationKind.IDENTIFIER: StagingIdentifier,
    RelationKind.NAME: StagingName,
    RelationKind.ADDRESS: StagingAddress,
    RelationKind.LEGAL_FORM_ASSIGNMENT: StagingLegalFormAssignment,
    RelationKind.LEGAL_FORM: StagingLegalForm,
}

# SQLite's default bound-parameter ceiling.
SQLITE_MAX_VARS_DEFAULT = 999


class StagingWriteError(RegistryImportError):
    def __init__(self, relation: RelationKind, offset: int, message: str) -> None:
        super().__init__(
            f"staging write failed relation={relation.value} offset={offset}: {message}"
        )
        self.relation = relation
        self.offset = offset


@dataclass
class StagingLoadResult:
    rows: dict[RelationKind, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.rows.values())


def insert_rows_chunked(session: SASession, model: type, rows: list[dict[str, Any]]) -> None:
    """Multi-row INSERT of ``rows``, chunked below SQLite's parameter limit."""

    if not rows:
        return
    params_per_row = max(len(rows[0]), 1)
    max_rows_per_chunk = max(1, (SQLITE_MAX_VARS_DEFAULT // params_per_row) - 5)
    for i in range(0, len(rows), max_rows_per_chunk):
        chunk = rows[i : i + max_rows_per_chunk]
        session.execute(sqlite_insert(model).values(chunk))


class StagingLoader:
    def __init__(self, *, session_factory: Any = None, batch_size: int | None = None) -> None:
        self.session_factory = session_factory or db.SessionLocal
        self.batch_size = int(batch_size or get_setting("IMPORT_BATCH_SIZE"))
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")

    def reset(self) -> None:
        """Drop lookup indexes and any rows left over from a previous run."""

        session = self.session_factory()
        try:
            bind = session.get_bind()
            for index in ORGANIZATION_KEY_INDEXES:
                index.drop(bind=bind, checkfirst=True)
            for model in STAGING_MODELS.values():
                session.execute(delete(model))
            session.commit()
        finally:
            session.close()
        logger.info("Staging reset")

    def load(self, rows: Iterable[tuple[RelationKind, dict[str, Any]]]) -> StagingLoadResult:
        """Consume ``(kind, row)`` pairs lazily, writing one batch per relation at a time."""

        buffers: dict[RelationKind, list[dict[str, Any]]] = defaultdict(list)
        written: dict[RelationKind, int] = defaultdict(int)

        session = self.session_factory()
        try:
            for kind, row in rows:
                buf = buffers[kind]
                buf.append(row)
                if len(buf) >= self.batch_size:
                    self._flush(session, kind, buf, written[kind])
                    written[kind] += len(buf)
                    buf.clear()

            for kind, buf in buffers.items():
                if buf:
                    self._flush(session, kind, buf, written[kind])
                    written[kind] += len(buf)
                    buf.clear()
        finally:
            session.close()

        result = StagingLoadResult(rows=dict(written))
        logger.info(
            "Staging load complete | total=%s %s",
            result.total,
            " ".join(f"{k.value}={v}" for k, v in sorted(written.items(), key=lambda kv: kv[0].value)),
        )
        return result

    def _flush(
        self,
        session: SASession,
        kind: RelationKind,
        rows: list[dict[str, Any]],
        offset: int,
    ) -> None:
        try:
            insert_rows_chunked(session, STAGING_MODELS[kind], rows)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "Staging batch failed | relation=%s offset=%s size=%s err=%s",
                kind.value,
                offset,
                len(rows),
                e,
            )
            raise StagingWriteError(kind, offset, str(e)) from e
        logger.debug(
            "Staging batch committed | relation=%s offset=%s size=%s",
            kind.value,
            offset,
            len(rows),
        )

    def build_indexes(self) -> None:
        session = self.session_factory()
        try:
            bind = session.get_bind()
            for index in ORGANIZATION_KEY_INDEXES:
                index.create(bind=bind, checkfirst=True)
        finally:
            session.close()
        logger.info("Staging indexes built (%s)", len(ORGANIZATION_KEY_INDEXES))

    def clear(self) -> None:
        """Drop staging data once the resolved set has been published."""

        self.reset()

"""Publish resolved companies as a new generation and flip it live atomically.

Two physical generations exist while an import runs: the live one, named by
the single ``publication_pointer`` row, and a shadow one that searches never
see. The shadow generation is written, indexed (trigram table + ANALYZE) and
only then made visible by updating the pointer row. That update is the whole
swap, so the exclusive section is O(1) regardless of dataset size.

Readers never hold the generation id in Python. Every read statement names
the live generation through ``live_generation()``, a subquery on the pointer
row, so SQLite evaluates pointer and rows in one read snapshot. A statement
that started before a swap keeps seeing the old generation even while another
process deletes it; one that starts after sees only the new one.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, select, text, update
from sqlalchemy.orm import Session as SASession
from sqlalchemy.sql.expression import ScalarSelect

import db
from config import get_setting
from jobs.entity_resolver import ResolvedCompany
from jobs.staging_loader import insert_rows_chunked
from logging_utils import get_logger
from models.companies import Company, CompanyTrigram
from models.generations import (
    GENERATION_BUILDING,
    GENERATION_DROPPED,
    GENERATION_LIVE,
    GENERATION_RETIRED,
    Generation,
    PublicationPointer,
)
from support.source_ingest_base import RegistryImportError
from utils.text_normalize import trigrams
from utils.time_utils import utcnow

logger = get_logger(__name__)

POINTER_ROW_ID = 1


class SwapError(RegistryImportError):
    pass


def read_pointer(session: SASession) -> int | None:
    """Return the live generation id, or None before the first publish."""

    return session.execute(
        select(PublicationPointer.generation_id).where(
            PublicationPointer.id == POINTER_ROW_ID
        )
    ).scalar_one_or_none()


def live_generation() -> ScalarSelect:
    """The live generation id as a scalar subquery, for use inside a read.

    Filter with ``Company.generation_id == live_generation()`` so the pointer
    and the rows come from the same statement snapshot.
    """

    return (
        select(PublicationPointer.generation_id)
        .where(PublicationPointer.id == POINTER_ROW_ID)
        .scalar_subquery()
    )


def _flip_pointer(session: SASession, generation_id: int) -> int | None:
    """Point the pointer row at ``generation_id``; return the previous id."""

    pointer = session.get(PublicationPointer, POINTER_ROW_ID)
    now = utcnow()
    if pointer is None:
        pointer = PublicationPointer(id=POINTER_ROW_ID)
        session.add(pointer)
    previous = pointer.generation_id
    pointer.generation_id = generation_id
    pointer.swapped_at = now
    return previous


class AtomicPublisher:
    def __init__(
        self,
        *,
        session_factory: Any = None,
        batch_size: int | None = None,
        swap_timeout_seconds: float = 30.0,
    ) -> None:
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.swap_timeout_seconds = swap_timeout_seconds

        self._swap_lock = threading.Lock()
        self._drop_threads: list[threading.Thread] = []

    def _session(self) -> SASession:
        # Resolved per call so tests can repoint db.SessionLocal.
        return (self.session_factory or db.SessionLocal)()

    def _batch_size(self) -> int:
        return int(self.batch_size or get_setting("IMPORT_BATCH_SIZE"))

    def purge_stale(self) -> int:
        """Remove shadow generations left behind by crashed runs."""

        session = self._session()
        try:
            live = read_pointer(session)
            stale = [
                gid
                for gid in session.execute(
                    select(Generation.id).where(
                        Generation.status.in_([GENERATION_BUILDING, GENERATION_RETIRED])
                    )
                ).scalars()
                if gid != live
            ]
        finally:
            session.close()

        for gid in stale:
            logger.warning("Purging stale generation %s", gid)
            self.drop_generation(gid)
        return len(stale)

    def begin(self) -> int:
        session = self._session()
        try:
            gen = Generation(status=GENERATION_BUILDING)
            session.add(gen)
            session.commit()
            logger.info("Shadow generation %s created", gen.id)
            return int(gen.id)
        finally:
            session.close()

    def write(self, generation_id: int, records: Iterable[ResolvedCompany]) -> int:
        """Insert resolved records into the shadow generation in batches."""

        batch_size = self._batch_size()
        imported_at = utcnow()
        written = 0
        batch: list[dict[str, Any]] = []

        session = self._session()
        try:
            for record in records:
                row = record.as_row()
                row["generation_id"] = generation_id
                row["imported_at"] = imported_at
                row["trigram_count"] = len(trigrams(record.normalized_name))
                batch.append(row)
                if len(batch) >= batch_size:
                    insert_rows_chunked(session, Company, batch)
                    session.commit()
                    written += len(batch)
                    batch.clear()
                    logger.info("Generation %s: %s companies written", generation_id, written)
            if batch:
                insert_rows_chunked(session, Company, batch)
                session.commit()
                written += len(batch)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("Generation %s: %s companies written in total", generation_id, written)
        return written

    def build_indexes(self, generation_id: int) -> int:
        """Fill the trigram table for the shadow generation; return rows added."""

        batch_size = self._batch_size()
        last_id = 0
        added = 0

        session = self._session()
        try:
            while True:
                page = session.execute(
                    select(Company.id, Company.normalized_name)
                    .where(Company.generation_id == generation_id)
                    .where(Company.id > last_id)
                    .order_by(Company.id)
                    .limit(batch_size)
                ).all()
                if not page:
                    break
                rows = [
                    {"company_id": company_id, "trigram": tg}
                    for company_id, normalized in page
                    for tg in sorted(trigrams(normalized))
                ]
                insert_rows_chunked(session, CompanyTrigram, rows)
                session.commit()
                added += len(rows)
                last_id = page[-1][0]

            session.execute(text("ANALYZE"))
            session.commit()
        finally:
            session.close()

        logger.info("Generation %s: fuzzy index built (%s trigrams)", generation_id, added)
        return added

    def swap(self, generation_id: int, *, record_count: int | None = None) -> int | None:
        """Make ``generation_id`` live; return the generation it replaced."""

        if not self._swap_lock.acquire(timeout=self.swap_timeout_seconds):
            raise SwapError(
                f"could not acquire swap lock within {self.swap_timeout_seconds}s"
            )
        try:
            session = self._session()
            try:
                previous = _flip_pointer(session, generation_id)
                now = utcnow()
                session.execute(
                    update(Generation)
                    .where(Generation.id == generation_id)
                    .values(
                        status=GENERATION_LIVE,
                        published_at=now,
                        record_count=record_count,
                    )
                )
                if previous is not None and previous != generation_id:
                    session.execute(
                        update(Generation)
                        .where(Generation.id == previous)
                        .values(status=GENERATION_RETIRED)
                    )
                session.commit()
            except Exception as e:
                session.rollback()
                raise SwapError(f"pointer flip to generation {generation_id} failed: {e}") from e
            finally:
                session.close()
        finally:
            self._swap_lock.release()

        logger.info("Generation %s is live (replaced %s)", generation_id, previous)
        if previous is not None and previous != generation_id:
            self._schedule_drop(previous)
        return previous

    def discard(self, generation_id: int) -> None:
        """Throw away a shadow generation after a failed run."""

        logger.warning("Discarding shadow generation %s", generation_id)
        self.drop_generation(generation_id, delete_record=True)

    def _schedule_drop(self, generation_id: int) -> None:
        t = threading.Thread(
            target=self._drop_retired,
            args=(generation_id,),
            name=f"drop_generation_{generation_id}",
            daemon=True,
        )
        self._drop_threads.append(t)
        t.start()

    def _drop_retired(self, generation_id: int) -> None:
        try:
            self.drop_generation(generation_id)
        except Exception:
            # Leftovers are purged by the next import's purge_stale().
            logger.exception("Dropping retired generation %s failed", generation_id)

    def wait_for_drops(self, timeout: float | None = None) -> None:
        for t in list(self._drop_threads):
            t.join(timeout=timeout)
        self._drop_threads = [t for t in self._drop_threads if t.is_alive()]

    def drop_generation(self, generation_id: int, *, delete_record: bool = False) -> None:
        """Delete a non-live generation's rows.

        Safe while searches run: a statement already reading this generation
        keeps its snapshot, and new statements resolve the pointer elsewhere.
        """

        session = self._session()
        try:
            if read_pointer(session) == generation_id:
                raise RegistryImportError(f"refusing to drop live generation {generation_id}")
            company_ids = select(Company.id).where(Company.generation_id == generation_id)
            session.execute(
                delete(CompanyTrigram).where(CompanyTrigram.company_id.in_(company_ids))
            )
            session.execute(delete(Company).where(Company.generation_id == generation_id))
            if delete_record:
                session.execute(delete(Generation).where(Generation.id == generation_id))
            else:
                session.execute(
                    update(Generation)
                    .where(Generation.id == generation_id)
                    .values(status=GENERATION_DROPPED)
                )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        logger.info("Generation %s dropped", generation_id)


# Module-level singleton used by the import job.
publisher = AtomicPublisher()

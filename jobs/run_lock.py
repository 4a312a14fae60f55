"""Database-backed "one import at a time" lock.

The admin API thread and ``python -m jobs.registry_import`` are separate
processes writing the same staging tables, so a ``threading.Lock`` cannot
keep them apart. The lock is the single ``import_run_lock`` row instead:
acquiring it is one conditional UPDATE, which SQLite's write lock serializes
across processes.

A process that dies mid-import never releases the row. Once it is older than
``IMPORT_LOCK_STALE_SECONDS`` the next run may take it over.
"""

from __future__ import annotations

import os
import socket
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

import db
from config import get_setting
from logging_utils import get_logger
from models.generations import ImportRunLock
from utils.time_utils import utcnow

logger = get_logger(__name__)

LOCK_ROW_ID = 1


def _default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class ImportLock:
    def __init__(
        self,
        *,
        session_factory: Any = None,
        holder: str | None = None,
        stale_after_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.holder = holder or _default_holder()
        self.stale_after_seconds = float(
            stale_after_seconds
            if stale_after_seconds is not None
            else get_setting("IMPORT_LOCK_STALE_SECONDS")
        )

    def _session(self):
        return (self.session_factory or db.SessionLocal)()

    def acquire(self) -> bool:
        """Take the lock; False if another live holder has it."""

        now = utcnow()
        cutoff = now - timedelta(seconds=self.stale_after_seconds)
        session = self._session()
        try:
            session.execute(
                sqlite_insert(ImportRunLock)
                .values(id=LOCK_ROW_ID, holder=None, acquired_at=None)
                .on_conflict_do_nothing(index_elements=["id"])
            )
            previous = session.execute(
                select(ImportRunLock.holder).where(ImportRunLock.id == LOCK_ROW_ID)
            ).scalar_one_or_none()
            result = session.execute(
                update(ImportRunLock)
                .where(ImportRunLock.id == LOCK_ROW_ID)
                .where(
                    or_(
                        ImportRunLock.holder.is_(None),
                        ImportRunLock.acquired_at < cutoff,
                    )
                )
                .values(holder=self.holder, acquired_at=now)
            )
            acquired = result.rowcount == 1
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if acquired and previous is not None:
            logger.warning(
                "Took over stale import lock | previous=%s holder=%s", previous, self.holder
            )
        elif not acquired:
            logger.info("Import lock busy | holder=%s", previous)
        return acquired

    def release(self) -> None:
        session = self._session()
        try:
            session.execute(
                update(ImportRunLock)
                .where(ImportRunLock.id == LOCK_ROW_ID)
                .where(ImportRunLock.holder == self.holder)
                .values(holder=None, acquired_at=None)
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def current_holder(self) -> str | None:
        session = self._session()
        try:
            return session.execute(
                select(ImportRunLock.holder).where(ImportRunLock.id == LOCK_ROW_ID)
            ).scalar_one_or_none()
        finally:
            session.close()

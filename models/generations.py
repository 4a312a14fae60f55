from __future__ import annotations

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from models import Base
from utils.time_utils import utcnow_sa_default

GENERATION_BUILDING = "building"
GENERATION_LIVE = "live"
GENERATION_RETIRED = "retired"
GENERATION_DROPPED = "dropped"


class Generation(Base):
    """One complete published snapshot of the company dataset.

    Lifecycle: ``building`` (shadow, invisible to searches) -> ``live`` (the
    pointer references it) -> ``retired`` (superseded, waiting for readers) ->
    ``dropped`` (rows deleted, record kept). A crashed import leaves a
    ``building`` generation behind; the next run purges it.
    """

    __tablename__ = "generations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String, nullable=False, default=GENERATION_BUILDING)
    record_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow_sa_default)
    published_at = Column(DateTime, nullable=True)


class PublicationPointer(Base):
    """Single-row table naming the live generation.

    Flipping ``generation_id`` is the only step that makes a new import
    visible, so a crash at any earlier point leaves the old snapshot intact.
    """

    __tablename__ = "publication_pointer"
    __table_args__ = (CheckConstraint("id = 1", name="ck_publication_pointer_single_row"),)

    id = Column(Integer, primary_key=True, default=1)
    generation_id = Column(Integer, ForeignKey("generations.id"), nullable=True)
    swapped_at = Column(DateTime, nullable=True)


class ImportRunLock(Base):
    """Single-row table recording which process currently runs an import.

    Lives in the database so the web process and the command-line job, which
    share one SQLite file, also share one lock.
    """

    __tablename__ = "import_run_lock"
    __table_args__ = (CheckConstraint("id = 1", name="ck_import_run_lock_single_row"),)

    id = Column(Integer, primary_key=True, default=1)
    holder = Column(String, nullable=True)
    acquired_at = Column(DateTime, nullable=True)

"""Full import of the business registry dump.

download -> parse -> stage -> resolve -> publish, streaming end to end:

- the parser feeds the staging loader lazily, so memory is bounded by the
  staging batch size, not the dump size
- the resolver streams into the publisher's shadow generation the same way
- only ``AtomicPublisher.swap`` makes the result visible

Any failure discards the shadow generation and leaves the live one untouched.

Usage:
    python jobs/registry_import.py [--dump-path rpo.sql.gz] [--url URL]
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from pathlib import Path

# Allow running this file directly (e.g. `python jobs/registry_import.py`).
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import logging_utils  # noqa: E402
from config import get_setting  # noqa: E402
from db import Base  # noqa: E402
from jobs.entity_resolver import EntityResolver  # noqa: E402
from jobs.publisher import AtomicPublisher, publisher as default_publisher  # noqa: E402
from jobs.run_lock import ImportLock  # noqa: E402
from jobs.staging_loader import StagingLoader  # noqa: E402
from logging_utils import get_logger  # noqa: E402
from support.source_ingest_base import (  # noqa: E402
    IngestRunResult,
    RegistryImportError,
    SourceIngestBase,
)
from utils.dump_parser import ParseStats, open_dump, parse_dump  # noqa: E402
from utils.registry_dump import download_dump  # noqa: E402

logger = get_logger(__name__)

# Staging tables are shared scratch space: one run at a time. The thread lock
# covers this process, ImportLock covers every process using the database.
_RUN_LOCK = threading.Lock()


class ImportAlreadyRunningError(RegistryImportError):
    pass


class RegistryImportJob(SourceIngestBase):
    source_name = "rpo"

    def __init__(
        self,
        *,
        dump_path: Path | str | None = None,
        url: str | None = None,
        raw_data_dir: Path | str | None = None,
        session_factory=None,
        publisher: AtomicPublisher | None = None,
        batch_size: int | None = None,
        run_lock: ImportLock | None = None,
    ) -> None:
        super().__init__(
            raw_data_dir=raw_data_dir or str(get_setting("DUMP_WORK_DIR")),
            session_factory=session_factory,
        )
        self.dump_path = Path(dump_path) if dump_path else None
        self.url = url
        self.publisher = publisher or default_publisher
        self.batch_size = batch_size
        self.run_lock = run_lock or ImportLock(session_factory=self.session_factory)

    def _download(self) -> Path:
        assert self.raw_data_dir is not None
        return download_dump(self.raw_data_dir / "rpo.sql.gz", url=self.url)

    def _ensure_schema(self) -> None:
        session = self.session_factory()
        try:
            Base.metadata.create_all(bind=session.get_bind())
        finally:
            session.close()

    def _rejected(self, reason: str) -> IngestRunResult:
        logger.warning("Import rejected: %s", reason)
        return IngestRunResult(
            success=False,
            record_count=0,
            duration_seconds=0.0,
            error=str(ImportAlreadyRunningError(reason)),
        )

    def run(self) -> IngestRunResult:
        if not _RUN_LOCK.acquire(blocking=False):
            return self._rejected("an import is already running in this process")
        try:
            try:
                self._ensure_schema()
                acquired = self.run_lock.acquire()
            except Exception as e:
                logger.exception("Could not take the import lock")
                return IngestRunResult(
                    success=False,
                    record_count=0,
                    duration_seconds=0.0,
                    error=str(e) or e.__class__.__name__,
                )
            if not acquired:
                return self._rejected(
                    f"an import is already running (holder={self.run_lock.current_holder()})"
                )
            try:
                return self._run_locked()
            finally:
                self.run_lock.release()
        finally:
            _RUN_LOCK.release()

    def _run_locked(self) -> IngestRunResult:
        started = time.perf_counter()
        stats = ParseStats()
        generation_id: int | None = None
        published = False
        downloaded: Path | None = None

        try:
            self.publisher.purge_stale()

            if self.dump_path is not None:
                dump_path = self.dump_path
            else:
                downloaded = dump_path = self._download()

            loader = StagingLoader(
                session_factory=self.session_factory, batch_size=self.batch_size
            )
            loader.reset()
            with open_dump(dump_path) as fh:
                loaded = loader.load(parse_dump(fh, stats=stats))
            logger.info(
                "Dump parsed | lines=%s rows=%s malformed=%s skipped_sections=%s",
                stats.lines_read,
                stats.total_rows,
                stats.total_malformed,
                len(stats.skipped_sections),
            )
            if stats.total_malformed:
                logger.warning(
                    "Malformed dump lines skipped: %s", stats.as_dict()["malformed"]
                )
            loader.build_indexes()

            generation_id = self.publisher.begin()
            resolver = EntityResolver(session_factory=self.session_factory)
            record_count = self.publisher.write(generation_id, resolver.resolve())
            self.publisher.build_indexes(generation_id)
            self.publisher.swap(generation_id, record_count=record_count)
            published = True

            loader.clear()

            duration = time.perf_counter() - started
            logger.info(
                "Import complete | records=%s staged=%s generation=%s duration=%.1fs",
                record_count,
                loaded.total,
                generation_id,
                duration,
            )
            return IngestRunResult(
                success=True,
                record_count=record_count,
                duration_seconds=duration,
                generation_id=generation_id,
                parse_stats=stats.as_dict(),
            )
        except Exception as e:
            logger.exception("Import failed; previous generation stays live")
            if generation_id is not None and not published:
                try:
                    self.publisher.discard(generation_id)
                except Exception:
                    logger.exception(
                        "Could not discard shadow generation %s", generation_id
                    )
            return IngestRunResult(
                success=False,
                record_count=0,
                duration_seconds=time.perf_counter() - started,
                error=str(e) or e.__class__.__name__,
                parse_stats=stats.as_dict(),
            )
        finally:
            if downloaded is not None:
                downloaded.unlink(missing_ok=True)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Import the business registry dump")
    p.add_argument(
        "--dump-path",
        default=None,
        help="Use a local dump (.sql or .sql.gz) instead of downloading",
    )
    p.add_argument("--url", default=None, help="Override DUMP_URL")
    p.add_argument("--batch-size", type=int, default=None, help="Rows per batch")
    p.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this run (e.g. DEBUG, INFO, WARNING)",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.log_level:
        logging_utils.configure_app_logging(args.log_level)

    job = RegistryImportJob(
        dump_path=args.dump_path, url=args.url, batch_size=args.batch_size
    )
    result = job.run()

    logger.info("=" * 50)
    logger.info("Import result | success=%s", result.success)
    logger.info("Import result | records=%s", result.record_count)
    logger.info("Import result | duration=%ss", round(result.duration_seconds))
    if result.error:
        logger.info("Import result | error=%s", result.error)
    logger.info("=" * 50)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())

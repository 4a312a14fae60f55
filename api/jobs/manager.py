from __future__ import annotations

import threading
import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from jobs.registry_import import RegistryImportJob
from logging_utils import get_logger
from support.source_ingest_base import IngestRunResult

logger = get_logger(__name__)

IMPORT_MODES = ("full", "test")


@dataclass
class JobState:
    running: bool = False
    job_id: Optional[str] = None
    mode: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    error: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "job_id": self.job_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
            "last_result": self.last_result,
        }


class ImportJobManager:
    """Runs the registry import in a daemon thread, one run at a time.

    The import runs in-process (not as a subprocess) so its outcome lands in
    this manager's state directly. Runs started by other processes are kept
    out by the import lock in the database (see ``jobs.run_lock``).
    """

    def __init__(self, job_factory: Optional[Callable[[], Any]] = None) -> None:
        self._lock = threading.Lock()
        self._state = JobState()
        self._thread: threading.Thread | None = None
        self._job_factory = job_factory or RegistryImportJob

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.as_dict()

    def is_running(self) -> bool:
        with self._lock:
            return self._state.running

    def start(self, mode: str = "test") -> Tuple[bool, Dict[str, Any]]:
        """Trigger an import.

        Returns ``(accepted, payload)``. ``payload`` carries ``job_id`` and
        ``status``: ``started`` for a full run, ``ok`` for test mode (nothing is
        imported). A full run is refused while another one is in flight.
        """

        if mode not in IMPORT_MODES:
            raise ValueError(f"unknown import mode {mode!r}")

        job_id = str(uuid.uuid4())
        logger.info("Import requested | mode=%s job_id=%s", mode, job_id)

        if mode == "test":
            return True, {
                "job_id": job_id,
                "status": "ok",
                "message": "Test mode - no import performed",
            }

        with self._lock:
            if self._state.running:
                return False, {
                    "job_id": self._state.job_id,
                    "status": "running",
                    "message": "An import is already running",
                }
            self._state = JobState(
                running=True,
                job_id=job_id,
                mode=mode,
                started_at=time.time(),
                last_result=self._state.last_result,
            )

        def _runner() -> None:
            try:
                result: IngestRunResult = self._job_factory().run()
                with self._lock:
                    self._state.last_result = result.as_dict()
                    if not result.success:
                        self._state.error = result.error
                logger.info(
                    "Import %s finished | success=%s records=%s",
                    job_id,
                    result.success,
                    result.record_count,
                )
            except Exception:
                logger.exception("Import %s crashed", job_id)
                with self._lock:
                    self._state.error = traceback.format_exc()
            finally:
                with self._lock:
                    self._state.running = False
                    self._state.ended_at = time.time()

        t = threading.Thread(target=_runner, name=f"registry_import_{job_id[:8]}", daemon=True)
        with self._lock:
            self._thread = t
        t.start()

        return True, {
            "job_id": job_id,
            "status": "started",
            "message": "Full import started",
        }

    def join(self, timeout: float | None = None) -> None:
        with self._lock:
            t = self._thread
        if t is not None:
            t.join(timeout=timeout)


# Module-level singleton
import_job = ImportJobManager()

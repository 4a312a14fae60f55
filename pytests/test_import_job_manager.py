from __future__ import annotations

import threading

import pytest

from api.jobs.manager import ImportJobManager
from pytests.common import BlockingJob
from support.source_ingest_base import IngestRunResult


def test_full_run_rejects_second_trigger_until_done():
    release = threading.Event()
    manager = ImportJobManager(job_factory=lambda: BlockingJob(release))

    accepted, first = manager.start("full")
    assert accepted is True
    assert first["status"] == "started"
    assert manager.get_state()["running"] is True

    accepted, second = manager.start("full")
    assert accepted is False
    assert second["status"] == "running"
    assert second["job_id"] == first["job_id"]

    release.set()
    manager.join(timeout=5)

    state = manager.get_state()
    assert state["running"] is False
    assert state["error"] is None
    assert state["last_result"]["record_count"] == 3
    assert state["ended_at"] is not None

    accepted, third = manager.start("full")
    assert accepted is True
    manager.join(timeout=5)


def test_failed_run_records_error():
    release = threading.Event()
    release.set()
    failed = IngestRunResult(
        success=False, record_count=0, duration_seconds=0.0, error="boom"
    )
    manager = ImportJobManager(job_factory=lambda: BlockingJob(release, failed))

    manager.start("full")
    manager.join(timeout=5)

    state = manager.get_state()
    assert state["error"] == "boom"
    assert state["last_result"]["success"] is False


def test_test_mode_never_runs_an_import():
    def factory():
        raise AssertionError("test mode must not build a job")

    manager = ImportJobManager(job_factory=factory)
    accepted, payload = manager.start("test")

    assert accepted is True
    assert payload["status"] == "ok"
    assert manager.get_state()["running"] is False


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        ImportJobManager().start("partial")

from __future__ import annotations

import threading
import time

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

import jobs.publisher as publisher_mod
from api.services.search_service import SearchService
from jobs.publisher import AtomicPublisher, SwapError, read_pointer
from models.companies import Company, CompanyTrigram
from models.generations import (
    GENERATION_BUILDING,
    GENERATION_DROPPED,
    GENERATION_LIVE,
    Generation,
)
from pytests.common import make_company, make_sqlite_engine, publish_companies


def _count(session, model, *where):
    return session.scalar(select(func.count()).select_from(model).where(*where))


def test_write_and_index_stay_invisible_until_swap(registry_db):
    pub = registry_db.publisher
    search = SearchService()

    gid = pub.begin()
    pub.write(gid, [make_company("00000001", "Alfa"), make_company("00000002", "Beta")])
    pub.build_indexes(gid)

    session = registry_db.session_factory()
    try:
        assert read_pointer(session) is None
        assert search.search(session, "alfa") == []
        assert search.get_count(session) == {"total": 0, "active": 0}

        pub.swap(gid, record_count=2)

        assert read_pointer(session) == gid
        assert [r.identifier for r in search.search(session, "alfa")] == ["00000001"]
        gen = session.get(Generation, gid)
        assert gen.status == GENERATION_LIVE
        assert gen.record_count == 2
        assert _count(session, CompanyTrigram) > 0
    finally:
        session.close()


def test_swap_drops_previous_generation_in_the_background(registry_db):
    pub = registry_db.publisher
    old = publish_companies(pub, [make_company("00000001", "Alfa")])
    new = publish_companies(pub, [make_company("00000001", "Alfa Nová")])

    pub.wait_for_drops(timeout=5)

    session = registry_db.session_factory()
    try:
        assert _count(session, Company, Company.generation_id == old) == 0
        assert _count(session, Company, Company.generation_id == new) == 1
        assert session.get(Generation, old).status == GENERATION_DROPPED
    finally:
        session.close()


def test_reads_stay_whole_while_another_process_swaps_and_drops(registry_db):
    """A second engine + publisher stands in for the command-line import."""

    search = SearchService()
    publish_companies(
        registry_db.publisher,
        [make_company(f"0000000{i}", f"Alfa Old {i}") for i in range(1, 6)],
    )

    other_engine = make_sqlite_engine(registry_db.engine.url.database)
    other_pub = AtomicPublisher(
        session_factory=sessionmaker(bind=other_engine, autoflush=False), batch_size=100
    )

    observed: list[tuple[int, set[str]]] = []
    errors: list[BaseException] = []
    stop = threading.Event()

    def reader():
        session = registry_db.session_factory()
        try:
            while not stop.is_set():
                results = search.search(session, "alfa", limit=50)
                observed.append((len(results), {r.name.split()[1] for r in results}))
        except BaseException as e:  # surfaced below
            errors.append(e)
        finally:
            session.close()

    readers = [threading.Thread(target=reader) for _ in range(3)]
    for t in readers:
        t.start()
    try:
        time.sleep(0.05)
        publish_companies(
            other_pub, [make_company(f"0000000{i}", f"Alfa New {i}") for i in range(1, 6)]
        )
        other_pub.wait_for_drops(timeout=5)
        time.sleep(0.05)
    finally:
        stop.set()
        for t in readers:
            t.join(timeout=10)
        other_engine.dispose()

    assert not errors
    assert observed
    assert all(count == 5 and len(names) == 1 for count, names in observed)
    assert observed[-1][1] == {"New"}

    session = registry_db.session_factory()
    try:
        assert _count(session, Company) == 5
    finally:
        session.close()


def test_search_during_swap_never_mixes_generations(registry_db, monkeypatch):
    pub = registry_db.publisher
    search = SearchService()

    publish_companies(pub, [make_company(f"0000000{i}", f"Alfa Old {i}") for i in range(1, 6)])
    new = pub.begin()
    pub.write(new, [make_company(f"0000000{i}", f"Alfa New {i}") for i in range(1, 6)])
    pub.build_indexes(new)

    original_flip = publisher_mod._flip_pointer

    def slow_flip(session, generation_id):
        previous = original_flip(session, generation_id)
        time.sleep(0.2)
        return previous

    monkeypatch.setattr(publisher_mod, "_flip_pointer", slow_flip)

    observed: list[set[str]] = []
    errors: list[BaseException] = []
    stop = threading.Event()

    def reader():
        session = registry_db.session_factory()
        try:
            while not stop.is_set():
                results = search.search(session, "alfa", limit=50)
                observed.append({r.name.split()[1] for r in results})
                assert len(results) == 5
        except BaseException as e:  # surfaced below
            errors.append(e)
        finally:
            session.close()

    readers = [threading.Thread(target=reader) for _ in range(3)]
    for t in readers:
        t.start()
    time.sleep(0.1)
    pub.swap(new)
    time.sleep(0.1)
    stop.set()
    for t in readers:
        t.join(timeout=10)

    assert not errors
    assert observed
    assert all(len(names) == 1 for names in observed)
    assert {"Old"} in observed
    assert {"New"} in observed


def test_swap_lock_timeout_raises_and_keeps_old_generation(registry_db):
    pub = registry_db.publisher
    pub.swap_timeout_seconds = 0.05
    old = publish_companies(pub, [make_company("00000001", "Alfa")])
    new = pub.begin()

    pub._swap_lock.acquire()
    try:
        with pytest.raises(SwapError):
            pub.swap(new)
    finally:
        pub._swap_lock.release()

    session = registry_db.session_factory()
    try:
        assert read_pointer(session) == old
        assert session.get(Generation, new).status == GENERATION_BUILDING
    finally:
        session.close()


def test_purge_stale_removes_abandoned_shadow_generations(registry_db):
    pub = registry_db.publisher
    live = publish_companies(pub, [make_company("00000001", "Alfa")])
    abandoned = pub.begin()
    pub.write(abandoned, [make_company("00000002", "Beta")])

    assert pub.purge_stale() == 1

    session = registry_db.session_factory()
    try:
        assert _count(session, Company, Company.generation_id == abandoned) == 0
        assert _count(session, Company, Company.generation_id == live) == 1
        assert read_pointer(session) == live
    finally:
        session.close()

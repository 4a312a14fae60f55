from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import func, inspect, select

from jobs.entity_resolver import EntityResolver, ResolutionError
from jobs.staging_loader import StagingLoader, StagingWriteError
from models.staging import StagingIdentifier, StagingOrganization
from utils.dump_layout import RelationKind

K = RelationKind
CLOSED = dt.date(2015, 1, 1)


def _ident(org_id, identifier, effective_to=None):
    return K.IDENTIFIER, {
        "organization_id": org_id,
        "identifier": identifier,
        "effective_from": None,
        "effective_to": effective_to,
    }


def _name(org_id, name, effective_to=None):
    return K.NAME, {
        "organization_id": org_id,
        "name": name,
        "effective_from": None,
        "effective_to": effective_to,
    }


def _address(org_id, street, city="Bratislava", postal_code="81101", effective_to=None):
    return K.ADDRESS, {
        "organization_id": org_id,
        "street": street,
        "municipality": city,
        "postal_code": postal_code,
        "effective_from": None,
        "effective_to": effective_to,
    }


def _legal_form(org_id, form_id, effective_to=None):
    return K.LEGAL_FORM_ASSIGNMENT, {
        "organization_id": org_id,
        "legal_form_id": form_id,
        "effective_from": None,
        "effective_to": effective_to,
    }


def _org(org_id, terminated_on=None):
    return K.ORGANIZATION, {"id": org_id, "terminated_on": terminated_on}


LEGAL_FORMS = [
    (K.LEGAL_FORM, {"id": 112, "name": "Spoločnosť s ručením obmedzeným"}),
    (K.LEGAL_FORM, {"id": 101, "name": "Akciová spoločnosť"}),
]


def _load(factory, rows, batch_size=2):
    loader = StagingLoader(session_factory=factory, batch_size=batch_size)
    loader.reset()
    result = loader.load(iter(rows))
    loader.build_indexes()
    return loader, result


def test_staging_load_batches_and_indexes(registry_db):
    rows = [_org(i) for i in range(1, 6)] + [_ident(i, f"0000000{i}") for i in range(1, 6)]
    loader, result = _load(registry_db.session_factory, rows, batch_size=2)

    assert result.rows == {K.ORGANIZATION: 5, K.IDENTIFIER: 5}
    assert result.total == 10

    index_names = {
        ix["name"] for ix in inspect(registry_db.engine).get_indexes("staging_names")
    }
    assert "ix_staging_names_org" in index_names

    loader.clear()
    session = registry_db.session_factory()
    try:
        assert session.scalar(select(func.count()).select_from(StagingIdentifier)) == 0
    finally:
        session.close()


def test_staging_batch_failure_aborts_with_relation_and_offset(registry_db):
    rows = [_org(1), _org(2), _org(3), _org(1)]
    loader = StagingLoader(session_factory=registry_db.session_factory, batch_size=2)
    loader.reset()

    with pytest.raises(StagingWriteError) as exc:
        loader.load(iter(rows))

    assert exc.value.relation is K.ORGANIZATION
    assert exc.value.offset == 2

    # The first batch was committed before the failing one.
    session = registry_db.session_factory()
    try:
        assert session.scalar(select(func.count()).select_from(StagingOrganization)) == 2
    finally:
        session.close()


def test_resolver_picks_current_values_with_named_tie_breaks(registry_db):
    rows = [
        *LEGAL_FORMS,
        # Two organizations currently claim identifier 1: smallest name wins.
        _org(1),
        _ident(1, "00000001"),
        _name(1, "Beta"),
        _org(2),
        _ident(2, "00000001"),
        _name(2, "Alfa"),
        # History plus several current rows.
        _org(3),
        _ident(3, "00000003"),
        _name(3, "Old Name", effective_to=CLOSED),
        _name(3, "Zeta"),
        _address(3, "Mlynská 5"),
        _address(3, "Hlavná 1"),
        _address(3, "Antolská 2", effective_to=CLOSED),
        _legal_form(3, 112),
        _legal_form(3, 101),
        # Only a closed name: no company.
        _org(4),
        _ident(4, "00000004"),
        _name(4, "Gone", effective_to=CLOSED),
        # Only a closed identifier: no company.
        _org(5),
        _ident(5, "00000005", effective_to=CLOSED),
        _name(5, "Former"),
        # Terminated organization stays, inactive.
        _org(6, terminated_on=dt.date(2020, 1, 1)),
        _ident(6, "00000006"),
        _name(6, "Ukončená s.r.o."),
        # Blank name: no company.
        _org(7),
        _ident(7, "00000007"),
        _name(7, "   "),
    ]
    _load(registry_db.session_factory, rows)

    resolved = list(
        EntityResolver(session_factory=registry_db.session_factory, fetch_size=2).resolve()
    )
    by_id = {r.identifier: r for r in resolved}

    assert [r.identifier for r in resolved] == ["00000001", "00000003", "00000006"]
    assert len(by_id) == len(resolved)

    assert by_id["00000001"].organization_id == 2
    assert by_id["00000001"].name == "Alfa"

    zeta = by_id["00000003"]
    assert zeta.name == "Zeta"
    assert zeta.normalized_name == "zeta"
    assert zeta.street == "Hlavná 1"
    assert zeta.legal_form == "Akciová spoločnosť"
    assert zeta.country == "Slovensko"
    assert zeta.is_active is True

    inactive = by_id["00000006"]
    assert inactive.is_active is False
    assert inactive.normalized_name == "ukoncena s.r.o."
    assert inactive.street is None
    assert inactive.legal_form is None


def test_resolver_is_deterministic_regardless_of_insert_order(registry_db):
    rows = [
        _org(1),
        _ident(1, "00000009"),
        _name(1, "Bravo"),
        _org(2),
        _ident(2, "00000009"),
        _name(2, "Bravo"),
    ]
    _load(registry_db.session_factory, list(reversed(rows)))
    first = list(EntityResolver(session_factory=registry_db.session_factory).resolve())

    _load(registry_db.session_factory, rows)
    second = list(EntityResolver(session_factory=registry_db.session_factory).resolve())

    assert first == second
    # Equal names fall back to the smallest organization key.
    assert first[0].organization_id == 1


def test_empty_identifier_relation_is_a_resolution_error(registry_db):
    _load(registry_db.session_factory, [_org(1), _name(1, "Alfa")])

    with pytest.raises(ResolutionError):
        list(EntityResolver(session_factory=registry_db.session_factory).resolve())


def test_nothing_resolvable_is_a_resolution_error(registry_db):
    _load(
        registry_db.session_factory,
        [_org(1), _ident(1, "00000001"), _name(1, "Alfa", effective_to=CLOSED)],
    )

    with pytest.raises(ResolutionError):
        list(EntityResolver(session_factory=registry_db.session_factory).resolve())

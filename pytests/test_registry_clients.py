from __future__ import annotations

import datetime as dt

import requests

from utils.bounded_cache import BoundedTTLCache
from utils.registry_clients import RpoClient, RuzClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    """Routes GETs by URL suffix; records every call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for suffix, outcome in self.routes.items():
            if url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return FakeResponse(404, {})


def _cache():
    return BoundedTTLCache(capacity=100, ttl_seconds=3600)


RUZ_DETAIL = {
    "id": 77,
    "ico": "35780701",
    "dic": "2020273893",
    "nazovUJ": "Slovak Telekom, a.s.",
    "ulica": "Bajkalská 28",
    "mesto": "Bratislava",
    "psc": "81762",
    "datumZalozenia": "1999-09-23",
    "pravnaForma": "Akciová spoločnosť",
    "velkostOrganizacie": "07",
}


def test_ruz_two_step_lookup_and_cache():
    session = FakeSession(
        {
            "/uctovne-jednotky": FakeResponse(200, {"id": [77], "existujeDalsieId": False}),
            "/uctovna-jednotka": FakeResponse(200, RUZ_DETAIL),
        }
    )
    client = RuzClient(base_url="https://ruz.test/api", cache=_cache(), session=session)

    company = client.get_by_identifier("35780701")
    assert company.dic == "2020273893"
    assert company.ic_dph == "SK2020273893"
    assert company.founded_on == "1999-09-23"
    assert company.size_code == "07"
    assert session.calls[0] == (
        "https://ruz.test/api/uctovne-jednotky",
        {"zmenene-od": "2000-01-01", "max-zaznamov": 1, "ico": "35780701"},
    )
    assert session.calls[1][1] == {"id": 77}

    assert client.get_by_identifier("35780701") is company
    assert len(session.calls) == 2


def test_ruz_not_found_is_cached_but_errors_are_not():
    session = FakeSession({"/uctovne-jednotky": FakeResponse(200, {"id": []})})
    client = RuzClient(base_url="https://ruz.test/api", cache=_cache(), session=session)

    assert client.get_by_identifier("00000001") is None
    assert client.get_by_identifier("00000001") is None
    assert len(session.calls) == 1

    failing = FakeSession({"/uctovne-jednotky": requests.ConnectionError("down")})
    client = RuzClient(
        base_url="https://ruz.test/api", cache=_cache(), session=failing, max_attempts=1
    )
    assert client.get_by_identifier("00000002") is None
    assert client.get_by_identifier("00000002") is None
    assert len(failing.calls) == 2


def test_rpo_persons_are_active_and_deduplicated():
    person = {
        "personName": {"formatedName": "Ing. Ján Novák"},
        "stakeholderType": {"value": "Konateľ"},
        "validFrom": "2015-01-01",
    }
    detail = {
        "id": 5,
        "stakeholders": [
            person,
            {
                "personName": {"givenNames": ["Mária"], "familyNames": ["Kováčová"]},
                "stakeholderType": {"value": "Prokurista"},
                "validTo": "2001-01-01",
            },
            {"companyName": {"value": "Holding a.s."}, "companyIdentifier": "11111111"},
        ],
        "organizationUnits": [
            {"stakeholders": [person]},
            {
                "stakeholders": [
                    {
                        "personName": {"givenNames": ["Peter"], "familyNames": ["Malý"]},
                        "validTo": "2999-12-31",
                    }
                ]
            },
        ],
    }
    session = FakeSession(
        {
            "/search": FakeResponse(200, {"results": [{"id": 5}]}),
            "/entity/5": FakeResponse(200, detail),
        }
    )
    client = RpoClient(base_url="https://rpo.test/v1", cache=_cache(), session=session)

    stakeholders = client.get_stakeholders("35780701")
    assert len(stakeholders) == 4

    persons = client.get_persons("35780701", today=dt.date(2024, 6, 1))
    assert [(p.person_name, p.role) for p in persons] == [
        ("Ing. Ján Novák", "Konateľ"),
        ("Peter Malý", "Neznáma funkcia"),
    ]
    assert session.calls[1] == ("https://rpo.test/v1/entity/5", {"showOrganizationUnits": "true"})
    # Second call served from cache.
    assert len(session.calls) == 2


def test_rpo_failure_returns_empty_list():
    session = FakeSession({"/search": FakeResponse(503, {})})
    client = RpoClient(
        base_url="https://rpo.test/v1", cache=_cache(), session=session, max_attempts=1
    )
    assert client.get_persons("35780701") == []

"""Clients for the two public registries used to enrich company details.

- RÚZ (register of financial statements): founding date, size code, DIČ
- RPO (statistical office business register): stakeholders

Both are best-effort. Transport errors and non-2xx answers are logged and
surface as ``None`` / ``[]``; only definitive answers ("found" or "no such
company") are cached.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Any

import requests

from config import get_setting
from logging_utils import get_logger
from utils.bounded_cache import MISSING, BoundedTTLCache

logger = get_logger(__name__)


class RegistryLookupError(RuntimeError):
    pass


@dataclass(frozen=True)
class RuzCompany:
    ruz_id: int | None
    identifier: str
    name: str | None
    dic: str | None
    legal_form: str | None
    street: str | None
    city: str | None
    postal_code: str | None
    founded_on: str | None
    size_code: str | None

    @property
    def ic_dph(self) -> str | None:
        return f"SK{self.dic}" if self.dic else None


@dataclass(frozen=True)
class Stakeholder:
    person_name: str | None
    company_name: str | None
    identifier: str | None
    role: str
    valid_from: str | None
    valid_to: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "person_name": self.person_name,
            "company_name": self.company_name,
            "identifier": self.identifier,
            "role": self.role,
            "valid_from": self.valid_from,
            "valid_to": self.valid_to,
        }


def default_lookup_cache() -> BoundedTTLCache:
    return BoundedTTLCache(
        capacity=int(get_setting("LOOKUP_CACHE_CAPACITY")),
        ttl_seconds=float(get_setting("LOOKUP_CACHE_TTL_SECONDS")),
    )


def _sleep_backoff(
    attempt_index: int, *, base_seconds: float = 0.5, cap_seconds: float = 4.0
) -> None:
    delay = min(base_seconds * (2**attempt_index), cap_seconds)
    time.sleep(delay)


def _get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    session: requests.Session | None = None,
    timeout_seconds: float | None = None,
    max_attempts: int = 2,
) -> Any:
    """HTTP GET returning decoded JSON; raises RegistryLookupError on failure."""

    if max_attempts <= 0:
        raise ValueError("max_attempts must be >= 1")

    s = session or requests.Session()
    timeout = float(timeout_seconds or get_setting("LOOKUP_TIMEOUT"))
    headers = {
        "User-Agent": str(get_setting("REGISTRY_USER_AGENT")),
        "Accept": "application/json",
    }

    for attempt in range(max_attempts):
        try:
            resp = s.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            logger.warning(
                "Registry request failed | url=%s attempt=%s err=%s", url, attempt + 1, e
            )
            if attempt < max_attempts - 1:
                _sleep_backoff(attempt)
                continue
            raise RegistryLookupError(f"request failed url={url}: {e}") from e

        if 200 <= resp.status_code < 300:
            try:
                return resp.json()
            except ValueError as e:
                raise RegistryLookupError(f"invalid JSON from {url}") from e

        logger.warning(
            "Registry non-2xx response | status=%s url=%s attempt=%s/%s",
            resp.status_code,
            url,
            attempt + 1,
            max_attempts,
        )
        if resp.status_code in (429, 500, 502, 503, 504) and attempt < max_attempts - 1:
            _sleep_backoff(attempt)
            continue
        raise RegistryLookupError(f"request failed status={resp.status_code} url={url}")

    raise RegistryLookupError(f"request failed url={url}")


class RuzClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        cache: BoundedTTLCache | None = None,
        session: requests.Session | None = None,
        max_attempts: int = 2,
    ) -> None:
        self.base_url = (base_url or str(get_setting("RUZ_API_BASE"))).rstrip("/")
        self.cache = cache if cache is not None else default_lookup_cache()
        self.session = session
        self.max_attempts = max_attempts

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        return _get_json(
            f"{self.base_url}/{path}",
            params=params,
            session=self.session,
            max_attempts=self.max_attempts,
        )

    def get_by_identifier(self, identifier: str) -> RuzCompany | None:
        """Two-step lookup: identifier -> internal unit id -> unit detail."""

        cached = self.cache.get(identifier, MISSING)
        if cached is not MISSING:
            return cached

        try:
            ids = self._get(
                "uctovne-jednotky",
                {"zmenene-od": "2000-01-01", "max-zaznamov": 1, "ico": identifier},
            )
            unit_ids = (ids or {}).get("id") or []
            if not unit_ids:
                logger.info("RUZ: no accounting unit for identifier %s", identifier)
                self.cache.set(identifier, None)
                return None

            detail = self._get("uctovna-jednotka", {"id": unit_ids[0]}) or {}
        except RegistryLookupError as e:
            logger.warning("RUZ lookup failed for %s: %s", identifier, e)
            return None

        size_code = detail.get("velkostOrganizacie")
        company = RuzCompany(
            ruz_id=detail.get("id"),
            identifier=str(detail.get("ico") or identifier),
            name=detail.get("nazovUJ"),
            dic=detail.get("dic") or None,
            legal_form=detail.get("pravnaForma"),
            street=detail.get("ulica"),
            city=detail.get("mesto"),
            postal_code=detail.get("psc"),
            founded_on=detail.get("datumZalozenia"),
            size_code=str(size_code) if size_code not in (None, "") else None,
        )
        self.cache.set(identifier, company)
        logger.debug("RUZ: found DIC %s for identifier %s", company.dic, identifier)
        return company


def _parse_stakeholder(raw: dict[str, Any]) -> Stakeholder:
    person = raw.get("personName") or {}
    person_name = person.get("formatedName")
    if not person_name and person.get("givenNames") and person.get("familyNames"):
        person_name = f"{' '.join(person['givenNames'])} {' '.join(person['familyNames'])}"

    return Stakeholder(
        person_name=person_name or None,
        company_name=(raw.get("companyName") or {}).get("value") or None,
        identifier=raw.get("companyIdentifier") or None,
        role=(raw.get("stakeholderType") or {}).get("value") or "Neznáma funkcia",
        valid_from=raw.get("validFrom") or None,
        valid_to=raw.get("validTo") or None,
    )


class RpoClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        cache: BoundedTTLCache | None = None,
        session: requests.Session | None = None,
        max_attempts: int = 2,
    ) -> None:
        self.base_url = (base_url or str(get_setting("RPO_API_BASE"))).rstrip("/")
        self.cache = cache if cache is not None else default_lookup_cache()
        self.session = session
        self.max_attempts = max_attempts

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return _get_json(
            f"{self.base_url}/{path}",
            params=params,
            session=self.session,
            max_attempts=self.max_attempts,
        )

    def get_stakeholders(self, identifier: str) -> list[Stakeholder] | None:
        """All stakeholders of the entity, deduplicated; None when unknown or on error."""

        cached = self.cache.get(identifier, MISSING)
        if cached is not MISSING:
            return cached

        try:
            found = self._get("search", {"identifier": identifier}) or {}
            results = found.get("results") or []
            if not results:
                logger.info("RPO: no entity for identifier %s", identifier)
                self.cache.set(identifier, None)
                return None

            detail = self._get(
                f"entity/{results[0]['id']}", {"showOrganizationUnits": "true"}
            ) or {}
        except (RegistryLookupError, KeyError) as e:
            logger.warning("RPO lookup failed for %s: %s", identifier, e)
            return None

        raw_items = list(detail.get("stakeholders") or [])
        for unit in detail.get("organizationUnits") or []:
            raw_items.extend(unit.get("stakeholders") or [])

        stakeholders: list[Stakeholder] = []
        seen: set[tuple[str | None, str | None, str]] = set()
        for raw in raw_items:
            s = _parse_stakeholder(raw)
            key = (s.person_name, s.company_name, s.role)
            if key in seen:
                continue
            seen.add(key)
            stakeholders.append(s)

        self.cache.set(identifier, stakeholders)
        logger.debug("RPO: %s stakeholders for identifier %s", len(stakeholders), identifier)
        return stakeholders

    def get_persons(self, identifier: str, *, today: date | None = None) -> list[Stakeholder]:
        """Currently active natural-person stakeholders."""

        stakeholders = self.get_stakeholders(identifier) or []
        today_iso = (today or date.today()).isoformat()
        return [
            s
            for s in stakeholders
            if s.person_name and (not s.valid_to or s.valid_to[:10] > today_iso)
        ]

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from api.services.search_service import SearchService
from logging_utils import get_logger
from utils.registry_clients import RpoClient, RuzClient
from utils.time_utils import parse_dump_date

logger = get_logger(__name__)

VIRTUAL_OFFICE_THRESHOLD = 50
NEW_COMPANY_MONTHS = 12


def size_category(size_code: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Map a RÚZ organization size code to (category, employee range)."""

    if size_code is None:
        return None, None
    try:
        code = int(str(size_code).strip())
    except ValueError:
        return None, None

    if code == 0:
        return "bez-zamestnancov", "0"
    if code == 1:
        return "mikro", "1-9"
    if code <= 3:
        return "mala", "10-24"
    if code <= 6:
        return "stredna", "25-149"
    return "velka", "150+"


def age_in_months(founded_on: date, today: date) -> int:
    return (today.year - founded_on.year) * 12 + (today.month - founded_on.month)


class CompanyDetailService:
    """Company lookup plus best-effort enrichment from RÚZ and RPO.

    Only the local lookup decides whether a company exists. Every enrichment
    step may fail independently; its fields are then left null (or empty).
    """

    def __init__(
        self,
        *,
        search: SearchService,
        ruz: RuzClient,
        rpo: RpoClient,
    ) -> None:
        self.search = search
        self.ruz = ruz
        self.rpo = rpo

    def get_detail(
        self,
        session: Session,
        identifier: str,
        *,
        today: Optional[date] = None,
    ) -> Optional[Dict[str, Any]]:
        # One statement: the record and its address count share a generation.
        found = self.search.get_with_address_count(session, identifier)
        if found is None:
            return None
        record, companies_at_address = found

        today = today or date.today()
        with ThreadPoolExecutor(max_workers=2) as ex:
            ruz_future = ex.submit(self.ruz.get_by_identifier, record.identifier)
            rpo_future = ex.submit(self.rpo.get_persons, record.identifier, today=today)

            try:
                ruz = ruz_future.result()
            except Exception:
                logger.exception("RUZ enrichment failed for %s", record.identifier)
                ruz = None
            try:
                persons = rpo_future.result()
            except Exception:
                logger.exception("RPO enrichment failed for %s", record.identifier)
                persons = []

        founded_on: Optional[str] = None
        age_months: Optional[int] = None
        size_code: Optional[str] = None
        dic: Optional[str] = None
        ic_dph: Optional[str] = None
        if ruz is not None:
            founded_on = ruz.founded_on
            size_code = ruz.size_code
            dic = ruz.dic
            ic_dph = ruz.ic_dph
            try:
                founded = parse_dump_date(founded_on)
            except ValueError:
                logger.warning(
                    "Unparseable founding date %r for %s", founded_on, record.identifier
                )
                founded = None
            if founded is not None:
                age_months = age_in_months(founded, today)

        category, employee_range = size_category(size_code)

        detail = record.as_dict()
        detail.update(
            {
                "founded_on": founded_on,
                "age_months": age_months,
                "is_new": age_months is not None and age_months < NEW_COMPANY_MONTHS,
                "size_code": size_code,
                "size_category": category,
                "employee_range": employee_range,
                "is_micro": category in ("mikro", "bez-zamestnancov"),
                "dic": dic,
                "ic_dph": ic_dph,
                "companies_at_address": companies_at_address,
                "is_virtual_office": companies_at_address > VIRTUAL_OFFICE_THRESHOLD,
                "stakeholders": [p.as_dict() for p in persons],
            }
        )
        return detail

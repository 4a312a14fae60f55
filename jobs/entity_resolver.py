"""Resolve staged registry history into one current record per identifier.

Every satellite relation is append-only history; a row whose ``effective_to``
is NULL is the currently valid one. Storage order is never used to choose
between several current rows. The choice is made by ``TIE_BREAK_POLICY``,
which is implemented with ``row_number() over (partition by ... order by ...)``:

- name: lexicographically smallest current name of the organization
- address: smallest ``(street, municipality, postal_code)``, NULLs last
- legal form: smallest catalog label (NULLs last), then smallest catalog key
- identifier shared by several organizations: the candidate whose resolved
  name is smallest, then the smallest organization key

An organization only produces a company if it has a current identifier and a
current, non-empty name.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select

import db
from config import get_setting
from logging_utils import get_logger
from models.staging import (
    StagingAddress,
    StagingIdentifier,
    StagingLegalForm,
    StagingLegalFormAssignment,
    StagingName,
    StagingOrganization,
)
from support.source_ingest_base import RegistryImportError
from utils.text_normalize import normalize_name

logger = get_logger(__name__)

TIE_BREAK_POLICY: dict[str, str] = {
    "name": "smallest name",
    "address": "smallest (street, municipality, postal_code), nulls last",
    "legal_form": "smallest label (nulls last), then smallest catalog key",
    "identifier": "smallest resolved name, then smallest organization key",
}

RESOLVE_FETCH_SIZE = 2000


class ResolutionError(RegistryImportError):
    pass


@dataclass(frozen=True)
class ResolvedCompany:
    identifier: str
    organization_id: int
    name: str
    normalized_name: str
    legal_form: str | None
    street: str | None
    city: str | None
    postal_code: str | None
    country: str
    is_active: bool

    def as_row(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "name": self.name,
            "normalized_name": self.normalized_name,
            "legal_form": self.legal_form,
            "street": self.street,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "is_active": self.is_active,
        }


def _current_names():
    ranked = (
        select(
            StagingName.organization_id.label("organization_id"),
            StagingName.name.label("name"),
            func.row_number()
            .over(
                partition_by=StagingName.organization_id,
                order_by=(StagingName.name, StagingName.row_id),
            )
            .label("rn"),
        )
        .where(StagingName.effective_to.is_(None))
        .where(StagingName.name.is_not(None))
        .where(func.trim(StagingName.name) != "")
        .subquery("ranked_names")
    )
    return (
        select(ranked.c.organization_id, ranked.c.name)
        .where(ranked.c.rn == 1)
        .subquery("current_names")
    )


def _current_addresses():
    ranked = (
        select(
            StagingAddress.organization_id.label("organization_id"),
            StagingAddress.street.label("street"),
            StagingAddress.municipality.label("municipality"),
            StagingAddress.postal_code.label("postal_code"),
            func.row_number()
            .over(
                partition_by=StagingAddress.organization_id,
                order_by=(
                    StagingAddress.street.asc().nulls_last(),
                    StagingAddress.municipality.asc().nulls_last(),
                    StagingAddress.postal_code.asc().nulls_last(),
                    StagingAddress.row_id,
                ),
            )
            .label("rn"),
        )
        .where(StagingAddress.effective_to.is_(None))
        .subquery("ranked_addresses")
    )
    return (
        select(
            ranked.c.organization_id,
            ranked.c.street,
            ranked.c.municipality,
            ranked.c.postal_code,
        )
        .where(ranked.c.rn == 1)
        .subquery("current_addresses")
    )


def _current_legal_forms():
    ranked = (
        select(
            StagingLegalFormAssignment.organization_id.label("organization_id"),
            StagingLegalForm.name.label("label"),
            func.row_number()
            .over(
                partition_by=StagingLegalFormAssignment.organization_id,
                order_by=(
                    StagingLegalForm.name.asc().nulls_last(),
                    StagingLegalFormAssignment.legal_form_id,
                    StagingLegalFormAssignment.row_id,
                ),
            )
            .label("rn"),
        )
        .select_from(StagingLegalFormAssignment)
        .outerjoin(
            StagingLegalForm,
            StagingLegalForm.id == StagingLegalFormAssignment.legal_form_id,
        )
        .where(StagingLegalFormAssignment.effective_to.is_(None))
        .subquery("ranked_legal_forms")
    )
    return (
        select(ranked.c.organization_id, ranked.c.label)
        .where(ranked.c.rn == 1)
        .subquery("current_legal_forms")
    )


def build_resolution_query():
    """The full resolution statement, one row per distinct identifier."""

    names = _current_names()
    addresses = _current_addresses()
    legal_forms = _current_legal_forms()

    candidates = (
        select(
            StagingIdentifier.identifier.label("identifier"),
            StagingIdentifier.organization_id.label("organization_id"),
            names.c.name.label("name"),
            func.row_number()
            .over(
                partition_by=StagingIdentifier.identifier,
                order_by=(names.c.name, StagingIdentifier.organization_id),
            )
            .label("rn"),
        )
        .select_from(StagingIdentifier)
        .join(names, names.c.organization_id == StagingIdentifier.organization_id)
        .where(StagingIdentifier.effective_to.is_(None))
        .subquery("identifier_candidates")
    )

    return (
        select(
            candidates.c.identifier,
            candidates.c.organization_id,
            candidates.c.name,
            legal_forms.c.label.label("legal_form"),
            addresses.c.street,
            addresses.c.municipality,
            addresses.c.postal_code,
            StagingOrganization.terminated_on,
        )
        .select_from(candidates)
        .outerjoin(
            StagingOrganization,
            StagingOrganization.id == candidates.c.organization_id,
        )
        .outerjoin(addresses, addresses.c.organization_id == candidates.c.organization_id)
        .outerjoin(
            legal_forms, legal_forms.c.organization_id == candidates.c.organization_id
        )
        .where(candidates.c.rn == 1)
        .order_by(candidates.c.identifier)
    )


class EntityResolver:
    def __init__(
        self,
        *,
        session_factory: Any = None,
        country: str | None = None,
        fetch_size: int = RESOLVE_FETCH_SIZE,
    ) -> None:
        self.session_factory = session_factory or db.SessionLocal
        self.country = country or str(get_setting("COMPANY_COUNTRY"))
        self.fetch_size = fetch_size

    def resolve(self) -> Iterator[ResolvedCompany]:
        """Stream resolved companies ordered by identifier.

        Raises ``ResolutionError`` when the identifier relation is empty or
        nothing resolves; publishing zero companies from a non-empty load
        would mean the dump layout no longer matches.
        """

        session = self.session_factory()
        try:
            staged = int(session.query(func.count(StagingIdentifier.row_id)).scalar() or 0)
            if staged == 0:
                raise ResolutionError("identifier relation is empty; refusing to resolve")

            logger.info("Resolving companies from %s staged identifier rows", staged)

            stmt = build_resolution_query().execution_options(yield_per=self.fetch_size)
            emitted = 0
            for row in session.execute(stmt):
                name = row.name.strip()
                emitted += 1
                yield ResolvedCompany(
                    identifier=row.identifier,
                    organization_id=row.organization_id,
                    name=name,
                    normalized_name=normalize_name(name),
                    legal_form=row.legal_form,
                    street=row.street,
                    city=row.municipality,
                    postal_code=row.postal_code,
                    country=self.country,
                    is_active=row.terminated_on is None,
                )

            if emitted == 0:
                raise ResolutionError(
                    f"no companies resolved from {staged} staged identifier rows"
                )
            logger.info("Resolved %s companies", emitted)
        finally:
            session.close()

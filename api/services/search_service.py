from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Float, and_, case, cast, func, literal, or_, select
from sqlalchemy.orm import Session, aliased

from config import get_setting
from jobs.publisher import live_generation
from models.companies import Company, CompanyTrigram
from utils.text_normalize import (
    escape_like,
    is_identifier_query,
    normalize_name,
    pad_identifier,
    trigrams,
)

TIER_EXACT = 0
TIER_PREFIX = 1
TIER_FUZZY = 2


@dataclass(frozen=True)
class CompanySummary:
    identifier: str
    name: str
    legal_form: Optional[str]
    city: Optional[str]
    is_active: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "name": self.name,
            "legal_form": self.legal_form,
            "city": self.city,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class CompanyRecord:
    identifier: str
    name: str
    normalized_name: str
    legal_form: Optional[str]
    street: Optional[str]
    city: Optional[str]
    postal_code: Optional[str]
    country: str
    is_active: bool
    imported_at: Optional[datetime]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "name": self.name,
            "legal_form": self.legal_form,
            "address": {
                "street": self.street,
                "city": self.city,
                "postal_code": self.postal_code,
                "country": self.country,
            },
            "is_active": self.is_active,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
        }


def clamp_limit(limit: Optional[int]) -> int:
    default = int(get_setting("SEARCH_DEFAULT_LIMIT"))
    maximum = int(get_setting("SEARCH_MAX_LIMIT"))
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


class SearchService:
    """Read side of the published company dataset.

    Every method runs a single statement that resolves the live generation
    inline (``live_generation()``), so each answer comes from one snapshot even
    while an import in this or another process swaps generations.
    """

    def __init__(
        self,
        *,
        similarity_threshold: Optional[float] = None,
        identifier_width: Optional[int] = None,
    ) -> None:
        self.similarity_threshold = float(
            similarity_threshold
            if similarity_threshold is not None
            else get_setting("SIMILARITY_THRESHOLD")
        )
        self.identifier_width = int(identifier_width or get_setting("IDENTIFIER_WIDTH"))

    def search(
        self,
        session: Session,
        query: str,
        limit: Optional[int] = None,
        include_inactive: bool = False,
    ) -> List[CompanySummary]:
        """Search by identifier prefix (all-digit input) or by name.

        Name results are ranked exact match, then prefix match, then fuzzy
        (trigram similarity above the threshold, or substring containment)
        ordered by similarity and name. All three tiers are evaluated in one
        statement, so a strong fuzzy hit can never outrank a prefix hit.
        """

        raw = (query or "").strip()
        limit = clamp_limit(limit)
        if not raw:
            return []

        if is_identifier_query(raw):
            stmt = self._identifier_search(raw)
        else:
            normalized = normalize_name(raw)
            if not normalized:
                return []
            stmt = self._name_search(normalized)

        stmt = stmt.where(Company.generation_id == live_generation())
        if not include_inactive:
            stmt = stmt.where(Company.is_active.is_(True))
        rows = session.execute(stmt.limit(limit)).all()

        return [
            CompanySummary(
                identifier=r.identifier,
                name=r.name,
                legal_form=r.legal_form,
                city=r.city,
                is_active=bool(r.is_active),
            )
            for r in rows
        ]

    def _summary_columns(self):
        return (
            Company.identifier,
            Company.name,
            Company.legal_form,
            Company.city,
            Company.is_active,
        )

    def _identifier_search(self, raw: str):
        return (
            select(*self._summary_columns())
            .where(Company.identifier.like(f"{raw}%"))
            .order_by(case((Company.identifier == raw, 0), else_=1), Company.identifier)
        )

    def _name_search(self, normalized: str):
        query_trigrams = sorted(trigrams(normalized))
        escaped = escape_like(normalized)

        exact = Company.normalized_name == normalized
        prefix = Company.normalized_name.like(f"{escaped}%", escape="\\")
        contains = Company.normalized_name.like(f"%{escaped}%", escape="\\")

        if query_trigrams:
            shared = (
                select(
                    CompanyTrigram.company_id.label("company_id"),
                    func.count().label("shared"),
                )
                .where(CompanyTrigram.trigram.in_(query_trigrams))
                .group_by(CompanyTrigram.company_id)
                .subquery("shared_trigrams")
            )
            shared_count = func.coalesce(shared.c.shared, 0)
            # |A ∩ B| / |A ∪ B| with |A ∪ B| = |A| + |B| - |A ∩ B|
            similarity = cast(shared_count, Float) / (
                len(query_trigrams) + Company.trigram_count - shared_count
            )
            base = select(*self._summary_columns()).select_from(Company).outerjoin(
                shared, shared.c.company_id == Company.id
            )
            matched = or_(prefix, contains, similarity >= self.similarity_threshold)
        else:
            similarity = literal(0.0)
            base = select(*self._summary_columns()).select_from(Company)
            matched = or_(prefix, contains)

        tier = case((exact, TIER_EXACT), (prefix, TIER_PREFIX), else_=TIER_FUZZY)
        return base.where(matched).order_by(
            tier, similarity.desc(), Company.name, Company.identifier
        )

    def _pad(self, identifier: str) -> Optional[str]:
        try:
            return pad_identifier(identifier, self.identifier_width)
        except ValueError:
            return None

    def get_by_identifier(self, session: Session, identifier: str) -> Optional[CompanyRecord]:
        """Exact lookup; ``"123"`` and ``"00000123"`` find the same company."""

        padded = self._pad(identifier)
        if padded is None:
            return None
        row = session.execute(
            select(Company)
            .where(Company.generation_id == live_generation())
            .where(Company.identifier == padded)
        ).scalar_one_or_none()
        return _record(row) if row is not None else None

    def get_with_address_count(
        self, session: Session, identifier: str
    ) -> Optional[Tuple[CompanyRecord, int]]:
        """Company plus the number of companies at its address, from one snapshot.

        The count is a correlated subquery over the company's own generation, so
        the record and the count can never straddle a swap.
        """

        padded = self._pad(identifier)
        if padded is None:
            return None

        neighbour = aliased(Company)
        same_address = (
            select(func.count(neighbour.id))
            .where(neighbour.generation_id == Company.generation_id)
            .where(neighbour.street == Company.street)
            .where(neighbour.city == Company.city)
            .where(
                or_(
                    Company.postal_code.is_(None),
                    Company.postal_code == "",
                    neighbour.postal_code == Company.postal_code,
                )
            )
            .correlate(Company)
            .scalar_subquery()
        )
        at_address = case(
            (and_(Company.street.is_not(None), Company.city.is_not(None)), same_address),
            else_=0,
        )
        row = session.execute(
            select(Company, at_address.label("companies_at_address"))
            .where(Company.generation_id == live_generation())
            .where(Company.identifier == padded)
        ).one_or_none()
        if row is None:
            return None
        company, count = row
        return _record(company), int(count or 0)

    def get_count(self, session: Session) -> Dict[str, int]:
        total, active = session.execute(
            select(
                func.count(Company.id),
                func.coalesce(func.sum(case((Company.is_active.is_(True), 1), else_=0)), 0),
            ).where(Company.generation_id == live_generation())
        ).one()
        return {"total": int(total or 0), "active": int(active or 0)}

    def count_at_address(
        self,
        session: Session,
        street: str,
        city: str,
        postal_code: Optional[str] = None,
    ) -> int:
        """Number of live companies registered at the same address."""

        stmt = (
            select(func.count(Company.id))
            .where(Company.generation_id == live_generation())
            .where(Company.street == street)
            .where(Company.city == city)
        )
        if postal_code:
            stmt = stmt.where(Company.postal_code == postal_code)
        return int(session.execute(stmt).scalar() or 0)


def _record(row: Company) -> CompanyRecord:
    return CompanyRecord(
        identifier=row.identifier,
        name=row.name,
        normalized_name=row.normalized_name,
        legal_form=row.legal_form,
        street=row.street,
        city=row.city,
        postal_code=row.postal_code,
        country=row.country,
        is_active=bool(row.is_active),
        imported_at=row.imported_at,
    )

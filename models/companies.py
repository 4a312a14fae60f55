from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from models import Base
from utils.time_utils import utcnow_sa_default


class Company(Base):
    """Published flat company record.

    Rows belong to exactly one generation; searches only ever read the
    generation named by ``publication_pointer``.

    Uniqueness:
    - ``(generation_id, identifier)`` is unique: one record per national
      identifier and snapshot.
    """

    __tablename__ = "companies"
    __table_args__ = (
        UniqueConstraint(
            "generation_id", "identifier", name="uq_companies_generation_identifier"
        ),
        Index("ix_companies_generation_normalized_name", "generation_id", "normalized_name"),
        Index("ix_companies_generation_address", "generation_id", "street", "city"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    generation_id = Column(
        Integer, ForeignKey("generations.id", ondelete="CASCADE"), nullable=False
    )

    # Fixed-width, zero-padded national identifier (IČO).
    identifier = Column(String(20), nullable=False)
    name = Column(Text, nullable=False)
    # normalize_name(name); never written independently of `name`.
    normalized_name = Column(Text, nullable=False)
    legal_form = Column(Text, nullable=True)

    street = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(50), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)

    # Size of the distinct trigram set of normalized_name (fuzzy scoring).
    trigram_count = Column(Integer, nullable=False, default=0)

    imported_at = Column(DateTime, nullable=False, default=utcnow_sa_default)


class CompanyTrigram(Base):
    """Fuzzy-match index: one row per distinct trigram of a company name."""

    __tablename__ = "company_trigrams"
    __table_args__ = (Index("ix_company_trigrams_trigram", "trigram", "company_id"),)

    company_id = Column(
        Integer,
        ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True,
    )
    trigram = Column(String(3), primary_key=True)

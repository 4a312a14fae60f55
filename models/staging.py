from __future__ import annotations

from sqlalchemy import Column, Date, Index, Integer, String, Text

from models import Base


class StagingOrganization(Base):
    """``rpo.organizations``: identity key plus optional termination date."""

    __tablename__ = "staging_organizations"

    id = Column(Integer, primary_key=True, autoincrement=False)
    terminated_on = Column(Date, nullable=True)


class StagingIdentifier(Base):
    """``rpo.organization_identifier_entries`` (append-only history)."""

    __tablename__ = "staging_identifiers"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False)
    # Zero-padded to IDENTIFIER_WIDTH by the parser.
    identifier = Column(String(20), nullable=False)
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)


class StagingName(Base):
    __tablename__ = "staging_names"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False)
    name = Column(Text, nullable=True)
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)


class StagingAddress(Base):
    __tablename__ = "staging_addresses"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False)
    street = Column(Text, nullable=True)
    municipality = Column(Text, nullable=True)
    postal_code = Column(String(20), nullable=True)
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)


class StagingLegalFormAssignment(Base):
    __tablename__ = "staging_legal_form_assignments"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False)
    legal_form_id = Column(Integer, nullable=False)
    effective_from = Column(Date, nullable=True)
    effective_to = Column(Date, nullable=True)


class StagingLegalForm(Base):
    """``rpo.legal_forms`` catalog: key -> human readable label."""

    __tablename__ = "staging_legal_forms"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(200), nullable=True)


# Organization-key lookup indexes. The staging loader drops them before a load
# and creates them once all rows are in, so bulk inserts don't maintain them.
ORGANIZATION_KEY_INDEXES: tuple[Index, ...] = (
    Index("ix_staging_identifiers_org", StagingIdentifier.organization_id),
    Index("ix_staging_names_org", StagingName.organization_id),
    Index("ix_staging_addresses_org", StagingAddress.organization_id),
    Index(
        "ix_staging_legal_form_assignments_org",
        StagingLegalFormAssignment.organization_id,
    ),
)

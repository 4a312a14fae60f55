"""SQLAlchemy models package.

Important: This project uses a single declarative Base defined in `db.py`.
Import `Base` from this package in all model modules.

Example:

    Base.metadata.create_all(...)

This keeps `Base.metadata` consistent across the app.
"""

from db import Base  # re-export a single shared Base

# Import models so they are registered with SQLAlchemy metadata on startup.
# This makes `Base.metadata.create_all()` create all tables for a fresh DB.
from models.generations import Generation, ImportRunLock, PublicationPointer  # noqa: F401
from models.companies import Company, CompanyTrigram  # noqa: F401
from models.staging import (  # noqa: F401
    StagingAddress,
    StagingIdentifier,
    StagingLegalForm,
    StagingLegalFormAssignment,
    StagingName,
    StagingOrganization,
)

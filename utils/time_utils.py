"""Time helpers.

Keep all timestamps timezone-aware UTC; Python 3.12+ deprecates the naive
``datetime.utcnow()``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Return the current time as a timezone-aware datetime in UTC (+00:00)."""

    return datetime.now(timezone.utc)


def utcnow_sa_default() -> datetime:
    """SQLAlchemy column default for import/publish timestamps."""

    return utcnow()


def parse_dump_date(raw: str | None) -> date | None:
    """Parse a dump date column (``YYYY-MM-DD``, optionally with a time part).

    ``None`` stays ``None`` (the column was ``\\N``).

    Raises:
        ValueError: if the text is not an ISO date.
    """

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    # Timestamps like "2019-05-01 00:00:00" only need their date part.
    return date.fromisoformat(text[:10])

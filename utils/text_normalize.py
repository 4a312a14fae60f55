"""Text helpers shared by the import pipeline and the search engine.

``normalize_name`` is the single definition of "normalized for search": the
import stores its output in ``companies.normalized_name`` and the search engine
applies it to queries, so both sides always agree.

Trigram similarity follows PostgreSQL's pg_trgm: every alphanumeric word is
padded with two spaces in front and one behind, the score is the Jaccard index
of the two trigram sets.
"""

from __future__ import annotations

import re
import unicodedata

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)
_DIGITS_RE = re.compile(r"^[0-9]+$")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def normalize_name(text: str | None) -> str:
    """Trim, lower-case and fold diacritics ("Žilina " -> "zilina").

    Idempotent: ``normalize_name(normalize_name(x)) == normalize_name(x)``.
    """

    if not text:
        return ""
    # Lower first: some upper-case letters decompose into a base + mark.
    return strip_diacritics(text.strip().lower()).strip()


def is_identifier_query(text: str) -> bool:
    """True when the trimmed query consists of ASCII digits only."""

    return bool(_DIGITS_RE.match((text or "").strip()))


def pad_identifier(raw: str | None, width: int) -> str:
    """Normalize a national identifier to ``width`` zero-padded digits.

    Spaces are ignored ("357 807 01" is accepted).

    Raises:
        ValueError: for empty, non-numeric or over-long identifiers.
    """

    value = "".join((raw or "").split())
    if not value:
        raise ValueError("identifier is empty")
    if not _DIGITS_RE.match(value):
        raise ValueError(f"identifier must be numeric: {raw!r}")
    if len(value) > width:
        raise ValueError(f"identifier longer than {width} digits: {raw!r}")
    return value.zfill(width)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards; use with ``escape="\\\\"``."""

    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def trigrams(text: str | None) -> set[str]:
    """Return the pg_trgm-style trigram set of ``text``."""

    result: set[str] = set()
    for word in _WORD_RE.findall((text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            result.add(padded[i : i + 3])
    return result


def trigram_similarity(a: str | None, b: str | None) -> float:
    ta = trigrams(a)
    tb = trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)

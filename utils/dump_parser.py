"""Streaming parser for the registry ``pg_dump`` text file.

The dump is far too large to load, so everything here works line by line:

- ``COPY rpo.<relation> (...) FROM stdin;`` opens a section
- every following line is one tab-separated row in COPY text format
- a line consisting of ``\\.`` closes the section

Only relations listed in ``utils.dump_layout.DUMP_LAYOUT`` are emitted; all
other sections are read through and dropped. Rows that are too short or whose
fields do not convert (bad integer key, bad date, non-numeric identifier) are
counted in ``ParseStats`` and skipped. A broken line never aborts the run.
"""

from __future__ import annotations

import gzip
import re
from collections import Counter
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from config import get_setting
from logging_utils import get_logger
from utils.dump_layout import (
    DUMP_SCHEMA,
    LAYOUT_BY_RELATION,
    RelationKind,
    RelationLayout,
)
from utils.text_normalize import pad_identifier
from utils.time_utils import parse_dump_date

logger = get_logger(__name__)

NULL_SENTINEL = "\\N"
END_MARKER = "\\."

_COPY_RE = re.compile(
    r'^COPY\s+(?:"?(?P<schema>[\w]+)"?\.)?"?(?P<relation>[\w]+)"?\s*(?:\(|FROM\b)'
)

_SIMPLE_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
}

PROGRESS_EVERY_LINES = 500_000


@dataclass
class ParseStats:
    lines_read: int = 0
    rows: Counter = field(default_factory=Counter)
    malformed: Counter = field(default_factory=Counter)
    skipped_sections: list[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(self.rows.values())

    @property
    def total_malformed(self) -> int:
        return sum(self.malformed.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "lines_read": self.lines_read,
            "rows": {str(k.value): v for k, v in self.rows.items()},
            "malformed": {str(k.value): v for k, v in self.malformed.items()},
            "skipped_sections": list(self.skipped_sections),
        }


def decode_copy_field(raw: str) -> str | None:
    """Decode one COPY text-format field.

    ``\\N`` is NULL; backslash escapes cover ``\\\\``, ``\\t``, ``\\n`` and
    friends plus octal (``\\101``) and hex (``\\x41``) byte values. Escaped
    bytes are collected and decoded as UTF-8, so ``\\305\\275`` becomes "Ž".

    Raises:
        UnicodeDecodeError: escaped bytes that are not valid UTF-8.
    """

    if raw == NULL_SENTINEL:
        return None
    if "\\" not in raw:
        return raw

    out: list[str] = []
    pending = bytearray()

    def flush() -> None:
        if pending:
            out.append(pending.decode("utf-8"))
            pending.clear()

    i = 0
    n = len(raw)
    while i < n:
        ch = raw[i]
        if ch != "\\" or i + 1 >= n:
            flush()
            out.append(ch)
            i += 1
            continue

        nxt = raw[i + 1]
        if nxt in "01234567":
            j = i + 1
            while j < n and j < i + 4 and raw[j] in "01234567":
                j += 1
            # Three octal digits can exceed a byte; the server keeps the low 8 bits.
            pending.append(int(raw[i + 1 : j], 8) & 0xFF)
            i = j
        elif nxt == "x" and i + 2 < n and raw[i + 2] in "0123456789abcdefABCDEF":
            j = i + 2
            while j < n and j < i + 4 and raw[j] in "0123456789abcdefABCDEF":
                j += 1
            pending.append(int(raw[i + 2 : j], 16))
            i = j
        else:
            flush()
            # Unknown escape: the backslash is dropped, the char kept.
            out.append(_SIMPLE_ESCAPES.get(nxt, nxt))
            i += 2
    flush()
    return "".join(out)


def _required_int(value: str | None, name: str) -> int:
    if value is None:
        raise ValueError(f"{name} is NULL")
    return int(value)


def _convert_row(
    kind: RelationKind, values: dict[str, str | None], identifier_width: int
) -> dict[str, Any]:
    """Turn decoded text fields into the typed staging row for ``kind``."""

    if kind is RelationKind.ORGANIZATION:
        return {
            "id": _required_int(values["id"], "id"),
            "terminated_on": parse_dump_date(values["terminated_on"]),
        }
    if kind is RelationKind.LEGAL_FORM:
        return {"id": _required_int(values["id"], "id"), "name": values["name"]}

    row: dict[str, Any] = {
        "organization_id": _required_int(values["organization_id"], "organization_id"),
        "effective_from": parse_dump_date(values["effective_from"]),
        "effective_to": parse_dump_date(values["effective_to"]),
    }
    if kind is RelationKind.IDENTIFIER:
        row["identifier"] = pad_identifier(values["identifier"], identifier_width)
    elif kind is RelationKind.NAME:
        row["name"] = values["name"]
    elif kind is RelationKind.ADDRESS:
        row["street"] = values["street"]
        row["municipality"] = values["municipality"]
        row["postal_code"] = values["postal_code"]
    elif kind is RelationKind.LEGAL_FORM_ASSIGNMENT:
        row["legal_form_id"] = _required_int(values["legal_form_id"], "legal_form_id")
    return row


def _parse_row(
    layout: RelationLayout, line: str, identifier_width: int
) -> dict[str, Any] | None:
    fields = line.split("\t")
    if len(fields) < layout.min_fields:
        return None
    try:
        values = {
            name: decode_copy_field(fields[pos]) for name, pos in layout.columns.items()
        }
        return _convert_row(layout.kind, values, identifier_width)
    except ValueError:
        return None


def _to_text(line: bytes | str) -> str:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


def parse_dump(
    lines: Iterable[bytes | str],
    *,
    stats: ParseStats | None = None,
    identifier_width: int | None = None,
    schema: str = DUMP_SCHEMA,
) -> Iterator[tuple[RelationKind, dict[str, Any]]]:
    """Lazily yield ``(relation kind, row)`` pairs from a dump line stream.

    Pass a ``ParseStats`` to observe counts while (and after) the generator runs.
    """

    stats = stats if stats is not None else ParseStats()
    width = int(identifier_width or get_setting("IDENTIFIER_WIDTH"))

    in_section = False
    layout: RelationLayout | None = None

    for raw in lines:
        line = _to_text(raw)
        stats.lines_read += 1
        if stats.lines_read % PROGRESS_EVERY_LINES == 0:
            logger.info(
                "Parsed %s lines (rows=%s malformed=%s)",
                stats.lines_read,
                stats.total_rows,
                stats.total_malformed,
            )

        if not in_section:
            m = _COPY_RE.match(line)
            if not m:
                continue
            in_section = True
            relation = m.group("relation")
            layout = None
            if (m.group("schema") or "") == schema:
                layout = LAYOUT_BY_RELATION.get(relation)
            if layout is None:
                stats.skipped_sections.append(f"{m.group('schema')}.{relation}")
                logger.debug("Skipping dump section %s.%s", m.group("schema"), relation)
            else:
                logger.info("Reading dump section %s.%s", schema, relation)
            continue

        if line == END_MARKER:
            in_section = False
            layout = None
            continue

        if layout is None:
            continue

        # Every extracted relation has several columns, so a blank line is a broken row.
        row = _parse_row(layout, line, width) if line else None
        if row is None:
            stats.malformed[layout.kind] += 1
            continue

        stats.rows[layout.kind] += 1
        yield layout.kind, row

    if in_section:
        logger.warning("Dump ended inside a COPY section (missing %s)", END_MARKER)


@contextmanager
def open_dump(path: Path | str) -> Iterator[BinaryIO]:
    """Open a dump file as a binary line stream, decompressing ``.gz`` on the fly."""

    p = Path(path)
    with p.open("rb") as head:
        gzipped = head.read(2) == b"\x1f\x8b"
    fh: BinaryIO = gzip.open(p, "rb") if gzipped else p.open("rb")  # type: ignore[assignment]
    try:
        yield fh
    finally:
        fh.close()

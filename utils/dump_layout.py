"""Column-position table for the registry dump.

The dump is a ``pg_dump`` text file. Each relation we care about arrives as a
``COPY rpo.<relation> (...) FROM stdin;`` section of tab-separated lines. Fields
are picked by ordinal position, never by the header, so a schema change in the
source is a one-place edit here.

Positions below match the ``rpo`` schema published by Slovensko.Digital.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class RelationKind(str, enum.Enum):
    ORGANIZATION = "organization"
    IDENTIFIER = "identifier"
    NAME = "name"
    ADDRESS = "address"
    LEGAL_FORM_ASSIGNMENT = "legal_form_assignment"
    LEGAL_FORM = "legal_form"


@dataclass(frozen=True)
class RelationLayout:
    kind: RelationKind
    source_relation: str
    # field name -> 0-based column position in the COPY line
    columns: dict[str, int]

    @property
    def min_fields(self) -> int:
        return max(self.columns.values()) + 1


DUMP_SCHEMA = "rpo"

DUMP_LAYOUT: tuple[RelationLayout, ...] = (
    RelationLayout(
        kind=RelationKind.ORGANIZATION,
        source_relation="organizations",
        columns={"id": 0, "terminated_on": 2},
    ),
    RelationLayout(
        kind=RelationKind.IDENTIFIER,
        source_relation="organization_identifier_entries",
        columns={
            "organization_id": 1,
            "identifier": 2,
            "effective_from": 3,
            "effective_to": 4,
        },
    ),
    RelationLayout(
        kind=RelationKind.NAME,
        source_relation="organization_name_entries",
        columns={
            "organization_id": 1,
            "name": 2,
            "effective_from": 3,
            "effective_to": 4,
        },
    ),
    RelationLayout(
        kind=RelationKind.ADDRESS,
        source_relation="organization_address_entries",
        columns={
            "organization_id": 1,
            "street": 3,
            "postal_code": 6,
            "municipality": 7,
            "effective_from": 9,
            "effective_to": 10,
        },
    ),
    RelationLayout(
        kind=RelationKind.LEGAL_FORM_ASSIGNMENT,
        source_relation="organization_legal_form_entries",
        columns={
            "organization_id": 1,
            "legal_form_id": 2,
            "effective_from": 3,
            "effective_to": 4,
        },
    ),
    RelationLayout(
        kind=RelationKind.LEGAL_FORM,
        source_relation="legal_forms",
        columns={"id": 0, "name": 1},
    ),
)

LAYOUT_BY_RELATION: dict[str, RelationLayout] = {
    layout.source_relation: layout for layout in DUMP_LAYOUT
}
LAYOUT_BY_KIND: dict[RelationKind, RelationLayout] = {
    layout.kind: layout for layout in DUMP_LAYOUT
}

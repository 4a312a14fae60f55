from __future__ import annotations

import datetime as dt
import gzip

from pytests.common import (
    address_row,
    copy_section,
    entry_row,
    legal_form_row,
    org_row,
    write_dump,
)
from utils.dump_layout import DUMP_LAYOUT, LAYOUT_BY_KIND, RelationKind
from utils.dump_parser import ParseStats, decode_copy_field, open_dump, parse_dump


def _lines(text: str) -> list[bytes]:
    return text.encode("utf-8").splitlines(keepends=True)


def test_decode_copy_field_escapes_and_null():
    assert decode_copy_field("\\N") is None
    assert decode_copy_field("a\\tb") == "a\tb"
    assert decode_copy_field("line\\nbreak") == "line\nbreak"
    assert decode_copy_field("back\\\\slash") == "back\\slash"
    assert decode_copy_field("\\101") == "A"
    assert decode_copy_field("\\x41") == "A"
    assert decode_copy_field("") == ""


def test_decode_copy_field_joins_escaped_utf8_bytes():
    # "Žilina" with the two bytes of "Ž" escaped, once octal and once hex.
    assert decode_copy_field("\\305\\275ilina") == "Žilina"
    assert decode_copy_field("\\xc5\\xbdilina") == "Žilina"
    assert decode_copy_field("Ko\\305\\241ice\\tSK") == "Košice\tSK"


def test_invalid_escaped_bytes_make_the_row_malformed():
    text = copy_section(
        "organization_name_entries",
        [entry_row(1, 1, "Firma \\305"), entry_row(2, 2, "Firma \\305\\275")],
    )
    stats = ParseStats()
    rows = list(parse_dump(_lines(text), stats=stats))

    assert [r["name"] for _k, r in rows] == ["Firma Ž"]
    assert stats.malformed[RelationKind.NAME] == 1


def test_blank_line_inside_section_counts_as_malformed():
    text = (
        "COPY rpo.organizations (id, established_on, terminated_on) FROM stdin;\n"
        "1\t2001-01-01\t\\N\n"
        "\n"
        "2\t2001-01-01\t\\N\n"
        "\\.\n"
    )
    stats = ParseStats()
    rows = list(parse_dump(_lines(text), stats=stats))

    assert [r["id"] for _k, r in rows] == [1, 2]
    assert stats.malformed[RelationKind.ORGANIZATION] == 1


def test_layout_covers_every_relation_kind():
    assert {layout.kind for layout in DUMP_LAYOUT} == set(RelationKind)
    assert LAYOUT_BY_KIND[RelationKind.ADDRESS].min_fields == 11


def test_parse_dump_emits_typed_rows_per_relation():
    text = (
        copy_section("organizations", [org_row(1), org_row(2, "2020-05-01")])
        + copy_section("organization_identifier_entries", [entry_row(10, 1, "123")])
        + copy_section("organization_name_entries", [entry_row(20, 1, "Firma\\tA")])
        + copy_section(
            "organization_address_entries",
            [address_row(30, 1, street="Hlavná 1", postal_code="81101", city="Bratislava")],
        )
        + copy_section("organization_legal_form_entries", [entry_row(40, 1, 112)])
        + copy_section("legal_forms", [legal_form_row(112, "s.r.o.")])
    )
    stats = ParseStats()
    rows = list(parse_dump(_lines(text), stats=stats, identifier_width=8))

    by_kind = {}
    for kind, row in rows:
        by_kind.setdefault(kind, []).append(row)

    assert by_kind[RelationKind.ORGANIZATION] == [
        {"id": 1, "terminated_on": None},
        {"id": 2, "terminated_on": dt.date(2020, 5, 1)},
    ]
    assert by_kind[RelationKind.IDENTIFIER][0]["identifier"] == "00000123"
    assert by_kind[RelationKind.NAME][0]["name"] == "Firma\tA"
    assert by_kind[RelationKind.NAME][0]["effective_to"] is None
    assert by_kind[RelationKind.ADDRESS][0] == {
        "organization_id": 1,
        "effective_from": dt.date(2010, 1, 1),
        "effective_to": None,
        "street": "Hlavná 1",
        "municipality": "Bratislava",
        "postal_code": "81101",
    }
    assert by_kind[RelationKind.LEGAL_FORM_ASSIGNMENT][0]["legal_form_id"] == 112
    assert by_kind[RelationKind.LEGAL_FORM] == [{"id": 112, "name": "s.r.o."}]

    assert stats.total_rows == 7
    assert stats.total_malformed == 0


def test_malformed_lines_are_counted_not_fatal():
    text = copy_section(
        "organization_identifier_entries",
        [
            entry_row(1, 1, "11111111"),
            [2, 1],  # too short
            entry_row(3, "not-an-int", "22222222"),
            entry_row(4, 2, "ABC"),  # non-numeric identifier
            entry_row(5, 3, "33333333", effective_from="31.12.2020"),
            entry_row(6, 4, "44444444"),
        ],
    )
    stats = ParseStats()
    rows = list(parse_dump(_lines(text), stats=stats, identifier_width=8))

    assert [r["identifier"] for _k, r in rows] == ["11111111", "44444444"]
    assert stats.malformed[RelationKind.IDENTIFIER] == 4
    assert stats.rows[RelationKind.IDENTIFIER] == 2


def test_unknown_sections_are_skipped():
    text = (
        copy_section("organization_stakeholder_entries", [[1, 2, "x"]])
        + copy_section("organizations", [org_row(9)], schema="other")
        + copy_section("organizations", [org_row(1)])
    )
    stats = ParseStats()
    rows = list(parse_dump(_lines(text), stats=stats))

    assert rows == [(RelationKind.ORGANIZATION, {"id": 1, "terminated_on": None})]
    assert "rpo.organization_stakeholder_entries" in stats.skipped_sections
    assert "other.organizations" in stats.skipped_sections


def test_lines_outside_sections_are_ignored():
    text = "CREATE TABLE rpo.organizations (id bigint);\n1\t2\t3\n" + copy_section(
        "organizations", [org_row(5)]
    )
    assert [r for _k, r in parse_dump(_lines(text))] == [{"id": 5, "terminated_on": None}]


def test_parse_dump_is_lazy():
    def endless():
        yield b"COPY rpo.organizations (id, a, b) FROM stdin;\n"
        i = 0
        while True:
            i += 1
            yield f"{i}\t\\N\t\\N\n".encode()

    gen = parse_dump(endless())
    first = [next(gen) for _ in range(3)]
    assert [r["id"] for _k, r in first] == [1, 2, 3]


def test_open_dump_detects_gzip(tmp_path):
    section = copy_section("organizations", [org_row(1)])
    gz = write_dump(tmp_path / "dump.sql.gz", section)
    plain = write_dump(tmp_path / "dump.sql", section, compress=False)

    assert gzip.decompress(gz.read_bytes()) == plain.read_bytes()
    for path in (gz, plain):
        with open_dump(path) as fh:
            rows = list(parse_dump(fh))
        assert rows == [(RelationKind.ORGANIZATION, {"id": 1, "terminated_on": None})]

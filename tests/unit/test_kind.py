"""Tests for kind trees, type strings and Arrow interop."""

from __future__ import annotations

import msgspec
import pyarrow as pa
import pytest

from orcrows.errors import KindParseError
from orcrows.kind import (
    BinaryKind,
    BooleanKind,
    CharKind,
    DateKind,
    DecimalKind,
    DoubleKind,
    IntKind,
    Kind,
    KindField,
    ListKind,
    LongKind,
    MapKind,
    StringKind,
    StructKind,
    TimestampInstantKind,
    TimestampKind,
    UnionKind,
    VarcharKind,
    kind_from_arrow,
    kind_to_arrow,
    parse_kind,
    project_kind,
    render_kind,
)

_NESTED_TYPE_STRING = (
    "struct<long1:bigint,name:string,tags:array<string>,"
    "attrs:map<string,int>,amount:decimal(10,2),"
    "inner:struct<flag:boolean,day:date>,choice:uniontype<int,string>>"
)


def test_parse_kind_nested_struct() -> None:
    """Ensure nested type strings parse into the expected kind tree."""
    kind = parse_kind(_NESTED_TYPE_STRING)
    assert kind == StructKind(
        fields=(
            KindField("long1", LongKind()),
            KindField("name", StringKind()),
            KindField("tags", ListKind(element=StringKind())),
            KindField("attrs", MapKind(key=StringKind(), value=IntKind())),
            KindField("amount", DecimalKind(precision=10, scale=2)),
            KindField(
                "inner",
                StructKind(fields=(KindField("flag", BooleanKind()), KindField("day", DateKind()))),
            ),
            KindField("choice", UnionKind(variants=(IntKind(), StringKind()))),
        )
    )


def test_render_kind_round_trips_type_string() -> None:
    """Ensure render_kind produces a string parse_kind accepts unchanged."""
    kind = parse_kind(_NESTED_TYPE_STRING)
    assert render_kind(kind) == _NESTED_TYPE_STRING
    assert parse_kind(render_kind(kind)) == kind


def test_parse_kind_special_forms() -> None:
    """Ensure parameterized and multi-word type names are recognized."""
    assert parse_kind("varchar(20)") == VarcharKind(max_length=20)
    assert parse_kind("char()") == CharKind(max_length=0)
    assert parse_kind("timestamp with local time zone") == TimestampInstantKind()
    assert parse_kind("decimal") == DecimalKind(precision=38, scale=10)
    assert parse_kind("struct<`my col`:binary>") == StructKind(
        fields=(KindField("my col", BinaryKind()),)
    )
    assert parse_kind("struct<>") == StructKind()


@pytest.mark.parametrize(
    "type_string",
    ["", "struct<a:int", "array<>", "map<int>", "decimal(10)", "frobnicate", "int int"],
)
def test_parse_kind_rejects_invalid_strings(type_string: str) -> None:
    """Ensure malformed type strings raise KindParseError."""
    with pytest.raises(KindParseError):
        parse_kind(type_string)


def test_kind_from_arrow_schema() -> None:
    """Ensure Arrow schemas map to struct kinds in field order."""
    schema = pa.schema(
        [
            pa.field("a", pa.int64()),
            pa.field("b", pa.large_string()),
            pa.field("c", pa.timestamp("us", tz="UTC")),
            pa.field("d", pa.timestamp("ns")),
            pa.field("e", pa.list_(pa.float64())),
        ]
    )
    assert kind_from_arrow(schema) == StructKind(
        fields=(
            KindField("a", LongKind()),
            KindField("b", StringKind()),
            KindField("c", TimestampInstantKind()),
            KindField("d", TimestampKind()),
            KindField("e", ListKind(element=DoubleKind())),
        )
    )


def test_kind_from_arrow_rejects_unknown_types() -> None:
    """Ensure Arrow types without a kind raise TypeError."""
    with pytest.raises(TypeError):
        kind_from_arrow(pa.duration("s"))


def test_kind_to_arrow_round_trips() -> None:
    """Ensure kind_to_arrow and kind_from_arrow agree on nested kinds."""
    kind = StructKind(
        fields=(
            KindField("m", MapKind(key=StringKind(), value=ListKind(element=IntKind()))),
            KindField("d", DecimalKind(precision=12, scale=4)),
        )
    )
    assert kind_from_arrow(kind_to_arrow(kind)) == kind


def test_project_kind_keeps_file_order() -> None:
    """Ensure projection keeps file order and ignores unknown names."""
    kind = parse_kind("struct<a:int,b:string,c:double>")
    assert isinstance(kind, StructKind)
    projected = project_kind(kind, ["c", "a", "missing"])
    assert projected.names() == ("a", "c")
    assert project_kind(kind, None) is kind
    assert projected.index_of("c") == 1
    assert projected.index_of("b") is None


def test_kind_display_names() -> None:
    """Ensure display names are used consistently in error messages."""
    assert LongKind().display() == "Long"
    assert DecimalKind(precision=10, scale=2).display() == "Decimal(precision=10, scale=2)"
    assert ListKind(element=StringKind()).display() == "List(String)"
    assert MapKind(key=StringKind(), value=LongKind()).display() == "Map(String, Long)"


def test_kind_tree_serializes_with_tags() -> None:
    """Ensure kind trees encode as tagged JSON and decode back."""
    kind = ListKind(element=DecimalKind(precision=5, scale=1))
    payload = msgspec.json.encode(kind)
    assert b'"kind":"List"' in payload
    assert msgspec.json.decode(payload, type=Kind) == kind


def test_render_kind_quotes_special_field_names() -> None:
    """Ensure field names that are not plain words survive a render and parse."""
    kind = StructKind(
        fields=(
            KindField("my col", IntKind()),
            KindField("a:b,c<d>", StringKind()),
            KindField("tick`name", LongKind()),
            KindField("plain_name.x", BooleanKind()),
        )
    )
    rendered = render_kind(kind)
    assert rendered.startswith("struct<`my col`:int,`a:b,c<d>`:string,`tick``name`:bigint,")
    assert "plain_name.x:boolean" in rendered
    assert parse_kind(rendered) == kind

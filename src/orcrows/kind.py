"""Kind tree: the column schema reported by the storage engine.

Kinds are immutable tagged variants. They are built from the Arrow schema the
engine reports (``kind_from_arrow``) or parsed from ORC type strings such as
``struct<long1:bigint,list:array<string>>`` (``parse_kind``).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import ClassVar

import msgspec
import pyarrow as pa

from orcrows.errors import KindParseError


class _KindBase(msgspec.Struct, frozen=True):
    """Shared behaviour of every kind variant."""

    orc_name: ClassVar[str] = ""

    def display(self) -> str:
        """Return the short name used in error messages.

        Returns
        -------
        str
            Kind name, e.g. ``Long`` or ``Decimal(precision=10, scale=2)``.
        """
        return type(self).__struct_config__.tag


class BooleanKind(_KindBase, frozen=True, tag="Boolean", tag_field="kind"):
    """Boolean column."""

    orc_name: ClassVar[str] = "boolean"


class ByteKind(_KindBase, frozen=True, tag="Byte", tag_field="kind"):
    """8-bit signed integer column."""

    orc_name: ClassVar[str] = "tinyint"


class ShortKind(_KindBase, frozen=True, tag="Short", tag_field="kind"):
    """16-bit signed integer column."""

    orc_name: ClassVar[str] = "smallint"


class IntKind(_KindBase, frozen=True, tag="Int", tag_field="kind"):
    """32-bit signed integer column."""

    orc_name: ClassVar[str] = "int"


class LongKind(_KindBase, frozen=True, tag="Long", tag_field="kind"):
    """64-bit signed integer column."""

    orc_name: ClassVar[str] = "bigint"


class FloatKind(_KindBase, frozen=True, tag="Float", tag_field="kind"):
    """32-bit floating point column."""

    orc_name: ClassVar[str] = "float"


class DoubleKind(_KindBase, frozen=True, tag="Double", tag_field="kind"):
    """64-bit floating point column."""

    orc_name: ClassVar[str] = "double"


class StringKind(_KindBase, frozen=True, tag="String", tag_field="kind"):
    """UTF-8 string column."""

    orc_name: ClassVar[str] = "string"


class BinaryKind(_KindBase, frozen=True, tag="Binary", tag_field="kind"):
    """Opaque bytes column."""

    orc_name: ClassVar[str] = "binary"


class TimestampKind(_KindBase, frozen=True, tag="Timestamp", tag_field="kind"):
    """Timestamp column without time zone (seconds + nanoseconds)."""

    orc_name: ClassVar[str] = "timestamp"


class TimestampInstantKind(_KindBase, frozen=True, tag="TimestampInstant", tag_field="kind"):
    """Timestamp column anchored to UTC."""

    orc_name: ClassVar[str] = "timestamp with local time zone"


class DateKind(_KindBase, frozen=True, tag="Date", tag_field="kind"):
    """Date column (days since 1970-01-01)."""

    orc_name: ClassVar[str] = "date"


class DecimalKind(_KindBase, frozen=True, tag="Decimal", tag_field="kind"):
    """Fixed-point decimal column."""

    precision: int
    scale: int

    orc_name: ClassVar[str] = "decimal"

    def display(self) -> str:
        return f"Decimal(precision={self.precision}, scale={self.scale})"


class VarcharKind(_KindBase, frozen=True, tag="Varchar", tag_field="kind"):
    """Bounded-length string column."""

    max_length: int

    orc_name: ClassVar[str] = "varchar"

    def display(self) -> str:
        return f"Varchar({self.max_length})"


class CharKind(_KindBase, frozen=True, tag="Char", tag_field="kind"):
    """Fixed-length string column."""

    max_length: int

    orc_name: ClassVar[str] = "char"

    def display(self) -> str:
        return f"Char({self.max_length})"


class KindField(msgspec.Struct, frozen=True):
    """Named child of a struct kind."""

    name: str
    kind: Kind


class StructKind(_KindBase, frozen=True, tag="Struct", tag_field="kind"):
    """Struct column with ordered, named children."""

    fields: tuple[KindField, ...] = ()

    orc_name: ClassVar[str] = "struct"

    def names(self) -> tuple[str, ...]:
        """Return child names in file order.

        Returns
        -------
        tuple[str, ...]
            Field names.
        """
        return tuple(field.name for field in self.fields)

    def index_of(self, name: str) -> int | None:
        """Return the position of a child by name, if present.

        Returns
        -------
        int | None
            Child index or ``None`` when no child has that name.
        """
        for index, field in enumerate(self.fields):
            if field.name == name:
                return index
        return None


class ListKind(_KindBase, frozen=True, tag="List", tag_field="kind"):
    """Homogeneous list column."""

    element: Kind

    orc_name: ClassVar[str] = "array"

    def display(self) -> str:
        return f"List({self.element.display()})"


class MapKind(_KindBase, frozen=True, tag="Map", tag_field="kind"):
    """Key/value map column."""

    key: Kind
    value: Kind

    orc_name: ClassVar[str] = "map"

    def display(self) -> str:
        return f"Map({self.key.display()}, {self.value.display()})"


class UnionKind(_KindBase, frozen=True, tag="Union", tag_field="kind"):
    """Tagged union column; each row holds a value of exactly one variant."""

    variants: tuple[Kind, ...] = ()

    orc_name: ClassVar[str] = "uniontype"


type Kind = (
    BooleanKind
    | ByteKind
    | ShortKind
    | IntKind
    | LongKind
    | FloatKind
    | DoubleKind
    | StringKind
    | BinaryKind
    | TimestampKind
    | TimestampInstantKind
    | DateKind
    | DecimalKind
    | VarcharKind
    | CharKind
    | StructKind
    | ListKind
    | MapKind
    | UnionKind
)

INTEGER_KINDS: tuple[type[_KindBase], ...] = (ByteKind, ShortKind, IntKind, LongKind)
STRING_KINDS: tuple[type[_KindBase], ...] = (StringKind, VarcharKind, CharKind)
TIMESTAMP_KINDS: tuple[type[_KindBase], ...] = (TimestampKind, TimestampInstantKind)

_SIMPLE_KINDS: dict[str, _KindBase] = {
    kind.orc_name: kind
    for kind in (
        BooleanKind(),
        ByteKind(),
        ShortKind(),
        IntKind(),
        LongKind(),
        FloatKind(),
        DoubleKind(),
        StringKind(),
        BinaryKind(),
        TimestampKind(),
        TimestampInstantKind(),
        DateKind(),
    )
}

_DEFAULT_DECIMAL_PRECISION = 38
_DEFAULT_DECIMAL_SCALE = 10


# -----------------------------------------------------------------------------
# Arrow interop
# -----------------------------------------------------------------------------


def kind_from_arrow(data_type: pa.DataType | pa.Schema) -> Kind:
    """Return the kind tree describing an Arrow type or schema.

    Parameters
    ----------
    data_type
        Arrow data type, or a schema (treated as a struct of its fields).

    Returns
    -------
    Kind
        Kind tree equivalent to the Arrow type.

    Raises
    ------
    TypeError
        Raised when the Arrow type has no column kind equivalent.
    """
    if isinstance(data_type, pa.Schema):
        return StructKind(
            fields=tuple(KindField(field.name, kind_from_arrow(field.type)) for field in data_type)
        )
    types = pa.types
    simple = _arrow_simple_kind(data_type)
    if simple is not None:
        return simple
    if types.is_timestamp(data_type):
        return TimestampInstantKind() if data_type.tz is not None else TimestampKind()
    if types.is_decimal(data_type):
        return DecimalKind(precision=data_type.precision, scale=data_type.scale)
    if types.is_struct(data_type):
        return StructKind(
            fields=tuple(
                KindField(data_type.field(i).name, kind_from_arrow(data_type.field(i).type))
                for i in range(data_type.num_fields)
            )
        )
    if types.is_map(data_type):
        return MapKind(
            key=kind_from_arrow(data_type.key_type),
            value=kind_from_arrow(data_type.item_type),
        )
    if types.is_list(data_type) or types.is_large_list(data_type):
        return ListKind(element=kind_from_arrow(data_type.value_type))
    if types.is_union(data_type):
        return UnionKind(
            variants=tuple(
                kind_from_arrow(data_type.field(i).type) for i in range(data_type.num_fields)
            )
        )
    msg = f"Arrow type {data_type} has no column kind equivalent."
    raise TypeError(msg)


def _arrow_simple_kind(data_type: pa.DataType) -> Kind | None:
    types = pa.types
    checks = (
        (types.is_boolean, BooleanKind),
        (types.is_int8, ByteKind),
        (types.is_int16, ShortKind),
        (types.is_int32, IntKind),
        (types.is_int64, LongKind),
        (types.is_float32, FloatKind),
        (types.is_float64, DoubleKind),
        (types.is_string, StringKind),
        (types.is_large_string, StringKind),
        (types.is_binary, BinaryKind),
        (types.is_large_binary, BinaryKind),
        (types.is_date32, DateKind),
    )
    for check, kind_type in checks:
        if check(data_type):
            return kind_type()
    return None


def kind_to_arrow(kind: Kind) -> pa.DataType:
    """Return the Arrow type used to store a kind.

    Returns
    -------
    pyarrow.DataType
        Arrow storage type for the kind.
    """
    simple: dict[type[_KindBase], pa.DataType] = {
        BooleanKind: pa.bool_(),
        ByteKind: pa.int8(),
        ShortKind: pa.int16(),
        IntKind: pa.int32(),
        LongKind: pa.int64(),
        FloatKind: pa.float32(),
        DoubleKind: pa.float64(),
        StringKind: pa.string(),
        VarcharKind: pa.string(),
        CharKind: pa.string(),
        BinaryKind: pa.binary(),
        TimestampKind: pa.timestamp("ns"),
        TimestampInstantKind: pa.timestamp("ns", tz="UTC"),
        DateKind: pa.date32(),
    }
    resolved = simple.get(type(kind))
    if resolved is not None:
        return resolved
    match kind:
        case DecimalKind(precision=precision, scale=scale):
            return pa.decimal128(precision, scale)
        case StructKind(fields=fields):
            return pa.struct([pa.field(field.name, kind_to_arrow(field.kind)) for field in fields])
        case ListKind(element=element):
            return pa.list_(kind_to_arrow(element))
        case MapKind(key=key, value=value):
            return pa.map_(kind_to_arrow(key), kind_to_arrow(value))
        case UnionKind(variants=variants):
            return pa.dense_union(
                [pa.field(f"_{index}", kind_to_arrow(item)) for index, item in enumerate(variants)]
            )
    msg = f"Kind {kind!r} has no Arrow equivalent."
    raise TypeError(msg)


def project_kind(kind: StructKind, names: Iterable[str] | None) -> StructKind:
    """Return the struct restricted to the given top-level names, in file order.

    Names absent from the struct are ignored; the schema validator reports them.

    Returns
    -------
    StructKind
        Projected struct kind.
    """
    if names is None:
        return kind
    wanted = set(names)
    return StructKind(fields=tuple(field for field in kind.fields if field.name in wanted))


# -----------------------------------------------------------------------------
# Type strings
# -----------------------------------------------------------------------------


def _is_plain_word(name: str) -> bool:
    return bool(name) and all(char.isalnum() or char in "_." for char in name)


def _render_field_name(name: str) -> str:
    if _is_plain_word(name):
        return name
    escaped = name.replace("`", "``")
    return f"`{escaped}`"


def render_kind(kind: Kind) -> str:
    """Render a kind as an ORC type string.

    Returns
    -------
    str
        Type string accepted by ``parse_kind``.
    """
    match kind:
        case DecimalKind(precision=precision, scale=scale):
            return f"decimal({precision},{scale})"
        case VarcharKind(max_length=length) | CharKind(max_length=length):
            return f"{kind.orc_name}({length})"
        case StructKind(fields=fields):
            inner = ",".join(
                f"{_render_field_name(field.name)}:{render_kind(field.kind)}" for field in fields
            )
            return f"struct<{inner}>"
        case ListKind(element=element):
            return f"array<{render_kind(element)}>"
        case MapKind(key=key, value=value):
            return f"map<{render_kind(key)},{render_kind(value)}>"
        case UnionKind(variants=variants):
            return f"uniontype<{','.join(render_kind(item) for item in variants)}>"
    return kind.orc_name


def parse_kind(type_string: str) -> Kind:
    """Parse an ORC type string into a kind tree.

    Parameters
    ----------
    type_string
        Type string such as ``struct<a:int,b:array<string>>``.

    Returns
    -------
    Kind
        Parsed kind tree.

    Raises
    ------
    KindParseError
        Raised when the string is not a valid type description.
    """
    parser = _KindParser(type_string)
    kind = parser.parse_type()
    parser.expect_end()
    return kind


class _KindParser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    def _error(self, expected: str) -> KindParseError:
        found = self._text[self._pos : self._pos + 10] or "end of input"
        msg = f"Invalid type string {self._text!r}: expected {expected} at {self._pos}, found {found!r}"
        return KindParseError(msg)

    def _skip_spaces(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1

    def _peek(self) -> str:
        self._skip_spaces()
        return self._text[self._pos] if self._pos < len(self._text) else ""

    def _consume(self, char: str) -> None:
        if self._peek() != char:
            raise self._error(repr(char))
        self._pos += 1

    def _word(self) -> str:
        self._skip_spaces()
        start = self._pos
        while self._pos < len(self._text) and (
            self._text[self._pos].isalnum() or self._text[self._pos] in "_."
        ):
            self._pos += 1
        return self._text[start : self._pos]

    def _number(self) -> int:
        word = self._word()
        if not word.isdigit():
            raise self._error("an integer")
        return int(word)

    def expect_end(self) -> None:
        if self._peek():
            raise self._error("end of input")

    def parse_type(self) -> Kind:
        name = self._word().lower()
        if not name:
            raise self._error("a type name")
        if name == "timestamp" and self._text[self._pos :].lower().lstrip().startswith("with"):
            for part in ("with", "local", "time", "zone"):
                if self._word().lower() != part:
                    raise self._error(repr(part))
            return TimestampInstantKind()
        simple = _SIMPLE_KINDS.get(name)
        if simple is not None:
            return simple
        parsers = {
            "decimal": self._parse_decimal,
            "varchar": lambda: VarcharKind(max_length=self._parse_length()),
            "char": lambda: CharKind(max_length=self._parse_length()),
            "array": self._parse_array,
            "map": self._parse_map,
            "struct": self._parse_struct,
            "uniontype": self._parse_union,
        }
        parse = parsers.get(name)
        if parse is None:
            raise self._error("a known type name")
        return parse()

    def _parse_length(self) -> int:
        self._consume("(")
        length = 0 if self._peek() == ")" else self._number()
        self._consume(")")
        return length

    def _parse_decimal(self) -> Kind:
        if self._peek() != "(":
            return DecimalKind(precision=_DEFAULT_DECIMAL_PRECISION, scale=_DEFAULT_DECIMAL_SCALE)
        self._consume("(")
        precision = self._number()
        self._consume(",")
        scale = self._number()
        self._consume(")")
        return DecimalKind(precision=precision, scale=scale)

    def _parse_array(self) -> Kind:
        self._consume("<")
        element = self.parse_type()
        self._consume(">")
        return ListKind(element=element)

    def _parse_map(self) -> Kind:
        self._consume("<")
        key = self.parse_type()
        self._consume(",")
        value = self.parse_type()
        self._consume(">")
        return MapKind(key=key, value=value)

    def _parse_struct(self) -> Kind:
        self._consume("<")
        fields: list[KindField] = []
        if self._peek() != ">":
            fields.extend(self._struct_fields())
        self._consume(">")
        return StructKind(fields=tuple(fields))

    def _struct_fields(self) -> Iterator[KindField]:
        while True:
            name = self._field_name()
            self._consume(":")
            yield KindField(name, self.parse_type())
            if self._peek() != ",":
                return
            self._consume(",")

    def _field_name(self) -> str:
        if self._peek() == "`":
            self._pos += 1
            return self._quoted_name()
        name = self._word()
        if not name:
            raise self._error("a field name")
        return name

    def _quoted_name(self) -> str:
        # A doubled backquote stands for one literal backquote.
        parts: list[str] = []
        while True:
            end = self._text.find("`", self._pos)
            if end < 0:
                raise self._error("a closing backquote")
            parts.append(self._text[self._pos : end])
            self._pos = end + 1
            if self._text[self._pos : self._pos + 1] != "`":
                return "`".join(parts)
            self._pos += 1

    def _parse_union(self) -> Kind:
        self._consume("<")
        variants = [self.parse_type()]
        while self._peek() == ",":
            self._consume(",")
            variants.append(self.parse_type())
        self._consume(">")
        return UnionKind(variants=tuple(variants))


__all__ = [
    "INTEGER_KINDS",
    "STRING_KINDS",
    "TIMESTAMP_KINDS",
    "BinaryKind",
    "BooleanKind",
    "ByteKind",
    "CharKind",
    "DateKind",
    "DecimalKind",
    "DoubleKind",
    "FloatKind",
    "IntKind",
    "Kind",
    "KindField",
    "ListKind",
    "LongKind",
    "MapKind",
    "ShortKind",
    "StringKind",
    "StructKind",
    "TimestampInstantKind",
    "TimestampKind",
    "UnionKind",
    "VarcharKind",
    "kind_from_arrow",
    "kind_to_arrow",
    "parse_kind",
    "project_kind",
    "render_kind",
]

"""Schema validation between target row types and kind trees.

A target row type is described once as a ``TargetSpec`` tree (which kinds each
field accepts, whether it is nullable, which Python value it decodes to). The
validator walks that tree against the kind tree of the selected columns and
collects every structural mismatch before any batch is read.
"""

from __future__ import annotations

import datetime as dt
import decimal
import keyword
import types
from dataclasses import dataclass, replace
from functools import cache
from typing import Annotated, Any, Literal, TypeAliasType, Union, get_args, get_origin

import msgspec

from orcrows.errors import SchemaMismatch, SchemaMismatchError, UnsupportedKindError
from orcrows.kind import (
    BinaryKind,
    BooleanKind,
    DateKind,
    DecimalKind,
    DoubleKind,
    Kind,
    ListKind,
    LongKind,
    MapKind,
    STRING_KINDS,
    StructKind,
    TIMESTAMP_KINDS,
    UnionKind,
)
from orcrows.types import DecimalScale, KindHint, Timestamp, UnionValue

type Category = Literal[
    "any",
    "boolean",
    "integer",
    "float",
    "string",
    "binary",
    "decimal",
    "date",
    "timestamp",
    "struct",
    "list",
    "map",
    "union",
]
type TimestampRepresentation = Literal["struct", "nanos", "datetime"]

_MISSING = "missing"


# -----------------------------------------------------------------------------
# Field name escaping
# -----------------------------------------------------------------------------


def escape_field_name(name: str) -> str:
    """Return the Python attribute name used for a column name.

    Column names that collide with Python keywords gain a trailing underscore
    (``class`` becomes ``class_``), as do names that already end in
    underscores after such a stem, so the mapping stays injective.

    Returns
    -------
    str
        Attribute name.
    """
    if keyword.iskeyword(name.rstrip("_")):
        return f"{name}_"
    return name


def unescape_field_name(name: str) -> str:
    """Return the column name for a Python attribute name.

    Returns
    -------
    str
        Column name; the inverse of ``escape_field_name``.
    """
    if name.endswith("_") and keyword.iskeyword(name.rstrip("_")):
        return name[:-1]
    return name


# -----------------------------------------------------------------------------
# Target descriptions
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One declared field of a target struct type."""

    attribute: str
    name: str
    spec: TargetSpec


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """Decoding contract of one Python annotation."""

    annotation: object
    category: Category
    accepted: tuple[type, ...] = ()
    nullable: bool = False
    representation: TimestampRepresentation | None = None
    decimal_scale: int | None = None
    row_type: type | None = None
    fields: tuple[FieldDescriptor, ...] = ()
    element: TargetSpec | None = None
    key: TargetSpec | None = None
    value: TargetSpec | None = None

    @property
    def display_name(self) -> str:
        annotation = self.annotation
        if isinstance(annotation, type):
            return annotation.__qualname__
        return repr(annotation)

    @property
    def expected(self) -> str:
        """Return the expected kind name used in mismatch reports.

        Returns
        -------
        str
            Kind name such as ``Long`` or ``List``.
        """
        if not self.accepted:
            return "any"
        return self.accepted[0].__struct_config__.tag

    def as_nullable(self) -> TargetSpec:
        """Return a copy of this spec that decodes null rows to ``None``.

        Returns
        -------
        TargetSpec
            Nullable copy.
        """
        if self.nullable:
            return self
        return replace(self, nullable=True)


@dataclass(frozen=True, slots=True)
class _Hints:
    kind_hint: KindHint | None = None
    decimal_scale: int | None = None


def _unwrap_alias(annotation: object) -> object:
    while isinstance(annotation, TypeAliasType):
        annotation = annotation.__value__
    return annotation


def _split_optional(annotation: object) -> tuple[object, bool]:
    origin = get_origin(annotation)
    if origin not in {Union, types.UnionType}:
        return annotation, False
    args = get_args(annotation)
    rest = tuple(arg for arg in args if arg is not type(None))
    if len(rest) == len(args) or len(rest) != 1:
        msg = repr(annotation)
        raise UnsupportedKindError(None, msg)
    return _unwrap_alias(rest[0]), True


def _split_annotated(annotation: object) -> tuple[object, _Hints]:
    if get_origin(annotation) is not Annotated:
        return annotation, _Hints()
    base, *metadata = get_args(annotation)
    kind_hint = next((item for item in metadata if isinstance(item, KindHint)), None)
    scale = next((item.scale for item in metadata if isinstance(item, DecimalScale)), None)
    return _unwrap_alias(base), _Hints(kind_hint=kind_hint, decimal_scale=scale)


def describe_target(annotation: object) -> TargetSpec:
    """Describe how values of an annotation are decoded.

    Returns
    -------
    TargetSpec
        Decoding contract for the annotation.

    Raises
    ------
    UnsupportedKindError
        Raised when the annotation has no column kind counterpart.
    """
    return _describe_cached(annotation)


@cache
def _describe_cached(annotation: object) -> TargetSpec:
    return _describe(annotation, frozenset())


def _describe(annotation: object, seen: frozenset[type]) -> TargetSpec:
    original = annotation
    annotation = _unwrap_alias(annotation)
    annotation, nullable = _split_optional(annotation)
    annotation, hints = _split_annotated(annotation)
    if not nullable:
        annotation, nullable = _split_optional(annotation)
    spec = _describe_base(annotation, hints, seen)
    return replace(spec, annotation=original, nullable=nullable)


def _describe_base(  # noqa: PLR0911
    annotation: object,
    hints: _Hints,
    seen: frozenset[type],
) -> TargetSpec:
    hinted = (hints.kind_hint.kind,) if hints.kind_hint is not None else None
    if annotation is Any:
        return TargetSpec(annotation, "any")
    if annotation is bool:
        return TargetSpec(annotation, "boolean", (BooleanKind,))
    if annotation is int:
        if hints.kind_hint is not None and hints.kind_hint.representation == "nanos":
            return TargetSpec(annotation, "timestamp", TIMESTAMP_KINDS, representation="nanos")
        return TargetSpec(annotation, "integer", hinted or (LongKind,))
    if annotation is float:
        return TargetSpec(annotation, "float", hinted or (DoubleKind,))
    if annotation is str:
        return TargetSpec(annotation, "string", STRING_KINDS)
    if annotation is bytes:
        return TargetSpec(annotation, "binary", (BinaryKind,))
    if annotation is decimal.Decimal:
        return TargetSpec(annotation, "decimal", (DecimalKind,), decimal_scale=hints.decimal_scale)
    if annotation is dt.datetime:
        return TargetSpec(annotation, "timestamp", TIMESTAMP_KINDS, representation="datetime")
    if annotation is dt.date:
        return TargetSpec(annotation, "date", (DateKind,))
    if annotation is Timestamp:
        return TargetSpec(annotation, "timestamp", TIMESTAMP_KINDS, representation="struct")
    if annotation is UnionValue:
        return TargetSpec(annotation, "union", (UnionKind,))
    if isinstance(annotation, type) and issubclass(annotation, msgspec.Struct):
        return _describe_struct(annotation, seen)
    origin = get_origin(annotation)
    args = get_args(annotation)
    if annotation is list or origin is list:
        element = _describe(args[0], seen) if args else TargetSpec(Any, "any")
        return TargetSpec(annotation, "list", (ListKind,), element=element)
    if annotation is dict or origin is dict:
        key = _describe(args[0], seen) if args else TargetSpec(Any, "any")
        value = _describe(args[1], seen) if args else TargetSpec(Any, "any")
        return TargetSpec(annotation, "map", (MapKind,), key=key, value=value)
    raise UnsupportedKindError(None, repr(annotation))


def _describe_struct(row_type: type[msgspec.Struct], seen: frozenset[type]) -> TargetSpec:
    if row_type in seen:
        msg = f"{row_type.__qualname__} (recursive)"
        raise UnsupportedKindError(None, msg)
    nested = seen | {row_type}
    descriptors = []
    for info in msgspec.structs.fields(row_type):
        name = info.encode_name if info.encode_name != info.name else unescape_field_name(info.name)
        descriptors.append(
            FieldDescriptor(attribute=info.name, name=name, spec=_describe(info.type, nested))
        )
    return TargetSpec(row_type, "struct", (StructKind,), row_type=row_type, fields=tuple(descriptors))


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def check_kind(spec: TargetSpec, kind: Kind, path: str = "") -> list[SchemaMismatch]:
    """Return every structural mismatch between a target spec and a kind.

    Returns
    -------
    list[SchemaMismatch]
        Mismatches in depth-first field order; empty when compatible.
    """
    if spec.category == "any":
        return []
    if not isinstance(kind, spec.accepted):
        return [SchemaMismatch(path or "<root>", spec.expected, kind.display())]
    mismatches: list[SchemaMismatch] = []
    if isinstance(kind, StructKind):
        for descriptor in spec.fields:
            child_path = _join(path, descriptor.name)
            index = kind.index_of(descriptor.name)
            if index is None:
                mismatches.append(SchemaMismatch(child_path, descriptor.spec.expected, _MISSING))
                continue
            mismatches.extend(check_kind(descriptor.spec, kind.fields[index].kind, child_path))
    elif isinstance(kind, ListKind) and spec.element is not None:
        mismatches.extend(check_kind(spec.element, kind.element, f"{path}[]"))
    elif isinstance(kind, MapKind) and spec.key is not None and spec.value is not None:
        mismatches.extend(check_kind(spec.key, kind.key, f"{path}{{key}}"))
        mismatches.extend(check_kind(spec.value, kind.value, f"{path}{{value}}"))
    return mismatches


def row_columns(row_type: object) -> list[str]:
    """Return the top-level column names a row type reads.

    Returns
    -------
    list[str]
        Column names in declaration order.
    """
    return RowSchema.of(row_type).columns()


@dataclass(frozen=True, slots=True)
class RowSchema:
    """Validated shape of a row type read from the top-level struct of a file."""

    spec: TargetSpec

    @classmethod
    def of(cls, row_type: object) -> RowSchema:
        """Describe a row type.

        Returns
        -------
        RowSchema
            Schema for the row type.

        Raises
        ------
        UnsupportedKindError
            Raised when the row type is not a struct type.
        """
        spec = describe_target(row_type)
        if spec.category != "struct":
            raise UnsupportedKindError("Struct", spec.display_name)
        return cls(spec)

    @property
    def fields(self) -> tuple[FieldDescriptor, ...]:
        return self.spec.fields

    def columns(self) -> list[str]:
        return [descriptor.name for descriptor in self.spec.fields]

    def validate(self, kind: Kind) -> None:
        """Check the selected kind against the row type.

        Raises
        ------
        SchemaMismatchError
            Raised with every mismatch when the kind is incompatible.
        """
        mismatches = check_kind(self.spec, kind)
        if mismatches:
            raise SchemaMismatchError(self.spec.display_name, mismatches)


__all__ = [
    "FieldDescriptor",
    "RowSchema",
    "TargetSpec",
    "check_kind",
    "describe_target",
    "escape_field_name",
    "row_columns",
    "unescape_field_name",
]

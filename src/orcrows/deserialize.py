"""Per-kind decoders turning column batches into row values.

Decoders are bound once, after validation, to a (target spec, kind) pair and
then reused for every batch. Each decoder receives the batch and the indices
of the rows to decode. Null rows are filtered out before any payload or child
batch is touched, so a null parent never reads its children's undefined slots.
"""

from __future__ import annotations

import datetime as dt
import decimal
import logging
from collections.abc import Callable, MutableSequence
from typing import TYPE_CHECKING, Any, cast

import numpy as np

from orcrows.errors import (
    DecimalScaleOverflowError,
    DuplicateMapKeyError,
    InvalidUtf8Error,
    MalformedOffsetsError,
    NullEncounteredError,
    SchemaMismatchError,
    ValueOutOfRangeError,
)
from orcrows.kind import (
    BinaryKind,
    BooleanKind,
    DateKind,
    DecimalKind,
    DoubleKind,
    FloatKind,
    INTEGER_KINDS,
    Kind,
    ListKind,
    MapKind,
    STRING_KINDS,
    StructKind,
    TimestampInstantKind,
    TIMESTAMP_KINDS,
    UnionKind,
)
from orcrows.obs import read_span
from orcrows.schema import TargetSpec, check_kind, describe_target
from orcrows.types import Timestamp, UnionValue

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from orcrows.vector import ColumnBatch

_LOGGER = logging.getLogger(__name__)

_NANOS_PER_SECOND = 1_000_000_000
_MAX_DECIMAL_PRECISION = 38
_EPOCH_ORDINAL = dt.date(1970, 1, 1).toordinal()
_EPOCH_NAIVE = dt.datetime(1970, 1, 1)  # noqa: DTZ001
_EPOCH_UTC = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)

type RowIndices = NDArray[np.int64]


# -----------------------------------------------------------------------------
# Decoder base
# -----------------------------------------------------------------------------


class Decoder:
    """Decode selected rows of one column batch into Python values."""

    __slots__ = ("nullable", "path")

    def __init__(self, path: str, *, nullable: bool) -> None:
        self.path = path
        self.nullable = nullable

    def decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        """Decode the given rows, mapping null rows to ``None``.

        Returns
        -------
        list[Any]
            One value per requested row, in request order.

        Raises
        ------
        NullEncounteredError
            Raised when a null row is found and the target is not optional.
        """
        not_null = batch.not_null
        if not_null is None or len(rows) == 0:
            return self._decode(batch, rows)
        valid = not_null[rows]
        if valid.all():
            return self._decode(batch, rows)
        if not self.nullable:
            raise NullEncounteredError(self.path)
        out: list[Any] = [None] * len(rows)
        positions = np.flatnonzero(valid).tolist()
        for position, value in zip(positions, self._decode(batch, rows[valid]), strict=True):
            out[position] = value
        return out

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        raise NotImplementedError


class BooleanDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        return batch.try_into_booleans().values[rows].tolist()


class IntegerDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        return batch.try_into_integers().values[rows].tolist()


class FloatDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        return batch.try_into_floats().values[rows].tolist()


class DateDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        days = batch.try_into_integers().values[rows].tolist()
        out: list[Any] = []
        for day in days:
            try:
                out.append(dt.date.fromordinal(_EPOCH_ORDINAL + day))
            except (ValueError, OverflowError) as exc:
                raise ValueOutOfRangeError(self.path, day, "datetime.date") from exc
        return out


def _checked_ranges(
    path: str,
    offsets: NDArray[np.integer],
    rows: RowIndices,
) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    starts = offsets[rows].astype(np.int64)
    ends = offsets[rows + 1].astype(np.int64)
    bad = np.flatnonzero(starts > ends)
    if bad.size:
        first = int(bad[0])
        raise MalformedOffsetsError(path, int(rows[first]), int(starts[first]), int(ends[first]))
    return starts, ends


class BinaryDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_bytes()
        starts, ends = _checked_ranges(self.path, view.offsets, rows)
        data = view.data
        return [bytes(data[start:end]) for start, end in zip(starts.tolist(), ends.tolist())]


class StringDecoder(Decoder):
    __slots__ = ()

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_bytes()
        starts, ends = _checked_ranges(self.path, view.offsets, rows)
        data = view.data
        try:
            return [str(data[start:end], "utf-8") for start, end in zip(starts.tolist(), ends.tolist())]
        except UnicodeDecodeError as exc:
            msg = f"Invalid UTF-8 in string column {self.path}: {exc.reason}"
            raise InvalidUtf8Error(msg) from exc


class TimestampDecoder(Decoder):
    __slots__ = ("_instant", "_representation")

    def __init__(
        self,
        path: str,
        *,
        nullable: bool,
        representation: str,
        instant: bool,
    ) -> None:
        super().__init__(path, nullable=nullable)
        self._representation = representation
        self._instant = instant

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_timestamps()
        seconds = view.seconds[rows].tolist()
        nanos = view.nanoseconds[rows].tolist()
        if self._representation == "nanos":
            return [sec * _NANOS_PER_SECOND + ns for sec, ns in zip(seconds, nanos, strict=True)]
        if self._representation == "datetime":
            epoch = _EPOCH_UTC if self._instant else _EPOCH_NAIVE
            out: list[Any] = []
            for sec, ns in zip(seconds, nanos, strict=True):
                try:
                    out.append(epoch + dt.timedelta(seconds=sec, microseconds=ns // 1000))
                except OverflowError as exc:
                    value = Timestamp(sec, ns)
                    raise ValueOutOfRangeError(self.path, value, "datetime.datetime") from exc
            return out
        return [Timestamp(sec, ns) for sec, ns in zip(seconds, nanos, strict=True)]


def _decimal_from_unscaled(unscaled: int, scale: int) -> decimal.Decimal:
    digits = tuple(int(char) for char in str(abs(unscaled)))
    return decimal.Decimal((1 if unscaled < 0 else 0, digits, -scale))


class DecimalDecoder(Decoder):
    __slots__ = ("_target_scale",)

    def __init__(self, path: str, *, nullable: bool, target_scale: int | None) -> None:
        super().__init__(path, nullable=nullable)
        self._target_scale = target_scale

    def _rescale(self, unscaled: int, scale: int) -> int:
        target = cast("int", self._target_scale)
        if target >= scale:
            rescaled = unscaled * 10 ** (target - scale)
            if len(str(abs(rescaled))) > _MAX_DECIMAL_PRECISION:
                msg = (
                    f"Decimal {unscaled}e-{scale} in {self.path} exceeds "
                    f"{_MAX_DECIMAL_PRECISION} digits at scale {target}"
                )
                raise DecimalScaleOverflowError(msg)
            return rescaled
        quotient, remainder = divmod(abs(unscaled), 10 ** (scale - target))
        if remainder:
            msg = f"Decimal {unscaled}e-{scale} in {self.path} cannot be rescaled to {target} without rounding"
            raise DecimalScaleOverflowError(msg)
        return -quotient if unscaled < 0 else quotient

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_decimals()
        scale = view.scale
        out: list[Any] = []
        for row in rows.tolist():
            unscaled = view.unscaled(row)
            if self._target_scale is None:
                out.append(_decimal_from_unscaled(unscaled, scale))
            else:
                out.append(_decimal_from_unscaled(self._rescale(unscaled, scale), self._target_scale))
        return out


# -----------------------------------------------------------------------------
# Nested decoders
# -----------------------------------------------------------------------------


class StructDecoder(Decoder):
    """Decode struct rows into instances of a row type (or plain dicts)."""

    __slots__ = ("_attributes", "_children", "_factory", "_indices")

    def __init__(
        self,
        path: str,
        *,
        nullable: bool,
        factory: Callable[..., Any] | None,
        children: list[tuple[str, int, Decoder]],
    ) -> None:
        super().__init__(path, nullable=nullable)
        self._factory = factory
        self._attributes = tuple(attribute for attribute, _, _ in children)
        self._indices = tuple(index for _, index, _ in children)
        self._children = tuple(decoder for _, _, decoder in children)

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_structs()
        columns = [
            decoder.decode(view.fields[index], rows)
            for index, decoder in zip(self._indices, self._children, strict=True)
        ]
        attributes = self._attributes
        factory = self._factory
        if not columns:
            return [factory() if factory is not None else {} for _ in range(len(rows))]
        if factory is None:
            return [dict(zip(attributes, values, strict=True)) for values in zip(*columns, strict=True)]
        return [
            factory(**dict(zip(attributes, values, strict=True)))
            for values in zip(*columns, strict=True)
        ]


def _flatten_ranges(
    starts: NDArray[np.int64],
    ends: NDArray[np.int64],
) -> tuple[NDArray[np.int64], list[int], list[int]]:
    lengths = ends - starts
    positions = np.cumsum(lengths) - lengths
    total = int(lengths.sum())
    flat = np.arange(total, dtype=np.int64) + np.repeat(starts - positions, lengths)
    return flat, positions.tolist(), lengths.tolist()


class ListDecoder(Decoder):
    __slots__ = ("_element",)

    def __init__(self, path: str, *, nullable: bool, element: Decoder) -> None:
        super().__init__(path, nullable=nullable)
        self._element = element

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_lists()
        starts, ends = _checked_ranges(self.path, view.offsets, rows)
        flat, positions, lengths = _flatten_ranges(starts, ends)
        values = self._element.decode(view.elements, flat)
        return [values[position : position + length] for position, length in zip(positions, lengths)]


class MapDecoder(Decoder):
    __slots__ = ("_key", "_value")

    def __init__(self, path: str, *, nullable: bool, key: Decoder, value: Decoder) -> None:
        super().__init__(path, nullable=nullable)
        self._key = key
        self._value = value

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_maps()
        starts, ends = _checked_ranges(self.path, view.offsets, rows)
        flat, positions, lengths = _flatten_ranges(starts, ends)
        keys = self._key.decode(view.keys, flat)
        values = self._value.decode(view.values, flat)
        out: list[Any] = []
        for position, length in zip(positions, lengths):
            row_keys = keys[position : position + length]
            entries = dict(zip(row_keys, values[position : position + length], strict=True))
            if len(entries) != length:
                raise DuplicateMapKeyError(self.path, _first_duplicate(row_keys))
            out.append(entries)
        return out


def _first_duplicate(keys: list[Any]) -> object:
    seen: set[Any] = set()
    for key in keys:
        if key in seen:
            return key
        seen.add(key)
    return None


class UnionDecoder(Decoder):
    """Decode union rows into ``UnionValue`` using the row discriminant."""

    __slots__ = ("_variants",)

    def __init__(self, path: str, *, nullable: bool, variants: list[Decoder]) -> None:
        super().__init__(path, nullable=nullable)
        self._variants = tuple(variants)

    def _decode(self, batch: ColumnBatch, rows: RowIndices) -> list[Any]:
        view = batch.try_into_unions()
        tags = view.tags[rows]
        offsets = view.offsets[rows]
        out: list[Any] = [None] * len(rows)
        for tag, decoder in enumerate(self._variants):
            selected = np.flatnonzero(tags == tag)
            if not selected.size:
                continue
            values = decoder.decode(view.variants[tag], offsets[selected])
            for position, value in zip(selected.tolist(), values, strict=True):
                out[position] = UnionValue(tag, value)
        return out


# -----------------------------------------------------------------------------
# Binding
# -----------------------------------------------------------------------------


def _child_path(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def dynamic_decoder(kind: Kind, path: str = "") -> Decoder:
    """Build a decoder for any kind without a declared target type.

    Structs and maps decode to ``dict``, lists to ``list``, unions to
    ``UnionValue`` and timestamps to ``Timestamp``. Every level is nullable.

    Returns
    -------
    Decoder
        Decoder for the kind.
    """
    return _build(describe_target(Any), kind, path)


def _build_dynamic(kind: Kind, path: str) -> Decoder:  # noqa: PLR0911
    match kind:
        case StructKind(fields=fields):
            children = [
                (field.name, index, _build_dynamic(field.kind, _child_path(path, field.name)))
                for index, field in enumerate(fields)
            ]
            return StructDecoder(path, nullable=True, factory=None, children=children)
        case ListKind(element=element):
            return ListDecoder(path, nullable=True, element=_build_dynamic(element, f"{path}[]"))
        case MapKind(key=key, value=value):
            return MapDecoder(
                path,
                nullable=True,
                key=_build_dynamic(key, f"{path}{{key}}"),
                value=_build_dynamic(value, f"{path}{{value}}"),
            )
        case UnionKind(variants=variants):
            return UnionDecoder(
                path,
                nullable=True,
                variants=[_build_dynamic(variant, path) for variant in variants],
            )
        case DecimalKind():
            return DecimalDecoder(path, nullable=True, target_scale=None)
        case TimestampInstantKind():
            return TimestampDecoder(path, nullable=True, representation="struct", instant=True)
        case DateKind():
            return DateDecoder(path, nullable=True)
        case BooleanKind():
            return BooleanDecoder(path, nullable=True)
        case BinaryKind():
            return BinaryDecoder(path, nullable=True)
        case FloatKind() | DoubleKind():
            return FloatDecoder(path, nullable=True)
    if isinstance(kind, INTEGER_KINDS):
        return IntegerDecoder(path, nullable=True)
    if isinstance(kind, STRING_KINDS):
        return StringDecoder(path, nullable=True)
    if isinstance(kind, TIMESTAMP_KINDS):
        return TimestampDecoder(path, nullable=True, representation="struct", instant=False)
    msg = f"No decoder for kind {kind.display()}"
    raise TypeError(msg)


def _build(spec: TargetSpec, kind: Kind, path: str) -> Decoder:  # noqa: PLR0911
    nullable = spec.nullable
    match spec.category:
        case "any":
            return _build_dynamic(kind, path)
        case "boolean":
            return BooleanDecoder(path, nullable=nullable)
        case "integer":
            return IntegerDecoder(path, nullable=nullable)
        case "float":
            return FloatDecoder(path, nullable=nullable)
        case "string":
            return StringDecoder(path, nullable=nullable)
        case "binary":
            return BinaryDecoder(path, nullable=nullable)
        case "date":
            return DateDecoder(path, nullable=nullable)
        case "decimal":
            return DecimalDecoder(path, nullable=nullable, target_scale=spec.decimal_scale)
        case "timestamp":
            return TimestampDecoder(
                path,
                nullable=nullable,
                representation=spec.representation or "struct",
                instant=isinstance(kind, TimestampInstantKind),
            )
        case "union":
            return _build_dynamic(kind, path) if nullable else _non_null(_build_dynamic(kind, path))
        case "list":
            list_kind = cast("ListKind", kind)
            element = _build(cast("TargetSpec", spec.element), list_kind.element, f"{path}[]")
            return ListDecoder(path, nullable=nullable, element=element)
        case "map":
            map_kind = cast("MapKind", kind)
            return MapDecoder(
                path,
                nullable=nullable,
                key=_build(cast("TargetSpec", spec.key), map_kind.key, f"{path}{{key}}"),
                value=_build(cast("TargetSpec", spec.value), map_kind.value, f"{path}{{value}}"),
            )
    struct_kind = cast("StructKind", kind)
    children = []
    for descriptor in spec.fields:
        index = cast("int", struct_kind.index_of(descriptor.name))
        child_path = _child_path(path, descriptor.name)
        children.append(
            (
                descriptor.attribute,
                index,
                _build(descriptor.spec, struct_kind.fields[index].kind, child_path),
            )
        )
    return StructDecoder(path, nullable=nullable, factory=spec.row_type, children=children)


def _non_null(decoder: Decoder) -> Decoder:
    decoder.nullable = False
    return decoder


class Deserializer[T]:
    """Bound decoder for one target type over one kind.

    Obtained from ``bind_decoder`` only, after the kind has been validated.
    """

    __slots__ = ("_decoder", "kind", "spec")

    def __init__(self, spec: TargetSpec, kind: Kind, decoder: Decoder) -> None:
        self.spec = spec
        self.kind = kind
        self._decoder = decoder

    def __repr__(self) -> str:
        return f"Deserializer({self.spec.display_name}, kind={self.kind.display()})"

    def append_range(
        self,
        batch: ColumnBatch,
        start: int,
        length: int,
        out: MutableSequence[T | None],
    ) -> None:
        """Decode rows ``[start, start + length)`` and append them to ``out``.

        ``out`` is only extended once the whole range decoded successfully.

        Raises
        ------
        IndexError
            Raised when the range falls outside the batch.
        """
        if start < 0 or length < 0 or start + length > batch.num_elements:
            msg = f"Row range [{start}, {start + length}) is outside a batch of {batch.num_elements} rows."
            raise IndexError(msg)
        rows = np.arange(start, start + length, dtype=np.int64)
        out.extend(self._decoder.decode(batch, rows))

    def decode_whole(self, batch: ColumnBatch) -> list[T | None]:
        """Decode every row of a batch into a fresh list.

        Returns
        -------
        list[T | None]
            Decoded rows; null rows are ``None``.
        """
        rows = np.arange(batch.num_elements, dtype=np.int64)
        return self._decoder.decode(batch, rows)


def bind_decoder[T](target: type[T] | TargetSpec | object, kind: Kind) -> Deserializer[T]:
    """Validate a target type against a kind and bind its decoder.

    Null rows at the top level decode to ``None`` whatever the target's own
    nullability; nested non-optional fields raise on null.

    Returns
    -------
    Deserializer[T]
        Decoder bound to the kind.

    Raises
    ------
    SchemaMismatchError
        Raised with every structural mismatch when the kind is incompatible.
    """
    spec = target if isinstance(target, TargetSpec) else describe_target(target)
    with read_span("orcrows.bind_decoder", attributes={"target": spec.display_name}):
        mismatches = check_kind(spec, kind)
        if mismatches:
            raise SchemaMismatchError(spec.display_name, mismatches)
        root = spec.as_nullable()
        decoder = _build(root, kind, "")
    _LOGGER.debug("Bound decoder for %s over %s", spec.display_name, kind.display())
    return Deserializer(root, kind, decoder)


__all__ = [
    "BinaryDecoder",
    "BooleanDecoder",
    "DateDecoder",
    "DecimalDecoder",
    "Decoder",
    "Deserializer",
    "FloatDecoder",
    "IntegerDecoder",
    "ListDecoder",
    "MapDecoder",
    "StringDecoder",
    "StructDecoder",
    "TimestampDecoder",
    "UnionDecoder",
    "bind_decoder",
    "dynamic_decoder",
]

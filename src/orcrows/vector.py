"""Column batches: read-only, kind-typed views over engine-produced buffers.

An ``OwnedColumnBatch`` is allocated once per row reader and refilled in place
by every read. Decoders only ever see a ``ColumnBatch`` borrowed from it; a
borrowed view is stamped with the owner's generation and refuses to hand out
payloads once the owner has been refilled.

Payload accessors read the Arrow buffers directly (validity bitmap, values,
offsets) rather than materializing Python objects, so that the decoders decide
which rows are touched.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pyarrow as pa

from orcrows.errors import MismatchedColumnKindError, ReaderStateError, StaleBatchError
from orcrows.kind import (
    BinaryKind,
    BooleanKind,
    ByteKind,
    CharKind,
    DateKind,
    DecimalKind,
    DoubleKind,
    FloatKind,
    IntKind,
    Kind,
    ListKind,
    LongKind,
    MapKind,
    ShortKind,
    StringKind,
    StructKind,
    TimestampInstantKind,
    TimestampKind,
    UnionKind,
    VarcharKind,
    kind_to_arrow,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

_NANOS_PER_SECOND = 1_000_000_000
_UNIT_NANOS = {"s": _NANOS_PER_SECOND, "ms": 1_000_000, "us": 1_000, "ns": 1}

_INTEGER_DTYPES: dict[type, type[np.signedinteger]] = {
    ByteKind: np.int8,
    ShortKind: np.int16,
    IntKind: np.int32,
    LongKind: np.int64,
    DateKind: np.int32,
}
_FLOAT_DTYPES: dict[type, type[np.floating]] = {FloatKind: np.float32, DoubleKind: np.float64}

_ARROW_CHECKS: dict[type, Callable[[pa.DataType], bool]] = {
    BooleanKind: pa.types.is_boolean,
    ByteKind: pa.types.is_int8,
    ShortKind: pa.types.is_int16,
    IntKind: pa.types.is_int32,
    LongKind: pa.types.is_int64,
    FloatKind: pa.types.is_float32,
    DoubleKind: pa.types.is_float64,
    StringKind: lambda t: pa.types.is_string(t) or pa.types.is_large_string(t),
    VarcharKind: lambda t: pa.types.is_string(t) or pa.types.is_large_string(t),
    CharKind: lambda t: pa.types.is_string(t) or pa.types.is_large_string(t),
    BinaryKind: lambda t: pa.types.is_binary(t) or pa.types.is_large_binary(t),
    TimestampKind: pa.types.is_timestamp,
    TimestampInstantKind: pa.types.is_timestamp,
    DateKind: pa.types.is_date32,
    DecimalKind: pa.types.is_decimal,
    StructKind: pa.types.is_struct,
    ListKind: lambda t: pa.types.is_list(t) or pa.types.is_large_list(t),
    MapKind: pa.types.is_map,
    UnionKind: pa.types.is_union,
}


# -----------------------------------------------------------------------------
# Typed views
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BooleanView:
    """Boolean payload unpacked from the values bitmap."""

    values: NDArray[np.bool_]


@dataclass(frozen=True, slots=True)
class IntegerView:
    """Integer payload (Byte, Short, Int, Long; Date as days since the epoch)."""

    values: NDArray[np.signedinteger]


@dataclass(frozen=True, slots=True)
class FloatView:
    """Floating point payload (Float, Double)."""

    values: NDArray[np.floating]


@dataclass(frozen=True, slots=True)
class BytesView:
    """Variable-length payload (String, Varchar, Char, Binary)."""

    offsets: NDArray[np.integer]
    data: memoryview

    def value(self, row: int) -> bytes:
        """Return the raw bytes of one row.

        Returns
        -------
        bytes
            Copy of the row's bytes.
        """
        return bytes(self.data[int(self.offsets[row]) : int(self.offsets[row + 1])])


@dataclass(frozen=True, slots=True)
class TimestampView:
    """Timestamp payload split into seconds and non-negative nanoseconds."""

    seconds: NDArray[np.int64]
    nanoseconds: NDArray[np.int64]


@dataclass(frozen=True, slots=True)
class DecimalView:
    """Decimal payload as little-endian two's complement words."""

    words: NDArray[np.uint64]
    precision: int
    scale: int

    def unscaled(self, row: int) -> int:
        """Return the unscaled integer value of one row.

        Returns
        -------
        int
            Unscaled value; the decimal value is ``unscaled * 10**-scale``.
        """
        row_words = self.words[row]
        value = 0
        for index, word in enumerate(row_words.tolist()):
            value |= word << (64 * index)
        width = 64 * len(row_words)
        if value >> (width - 1):
            value -= 1 << width
        return value


@dataclass(frozen=True, slots=True)
class StructView:
    """Struct payload: one child batch per field, aligned with the parent rows."""

    names: tuple[str, ...]
    fields: tuple[ColumnBatch, ...]


@dataclass(frozen=True, slots=True)
class ListView:
    """List payload: row ``i`` spans ``elements[offsets[i]:offsets[i + 1]]``."""

    offsets: NDArray[np.integer]
    elements: ColumnBatch


@dataclass(frozen=True, slots=True)
class MapView:
    """Map payload: row ``i`` spans ``offsets[i]:offsets[i + 1]`` of keys and values."""

    offsets: NDArray[np.integer]
    keys: ColumnBatch
    values: ColumnBatch


@dataclass(frozen=True, slots=True)
class UnionView:
    """Union payload: variant index and variant-relative offset of every row."""

    tags: NDArray[np.integer]
    offsets: NDArray[np.integer]
    variants: tuple[ColumnBatch, ...]


type ColumnView = (
    BooleanView
    | IntegerView
    | FloatView
    | BytesView
    | TimestampView
    | DecimalView
    | StructView
    | ListView
    | MapView
    | UnionView
)


# -----------------------------------------------------------------------------
# Buffer helpers
# -----------------------------------------------------------------------------


def _unpack_bitmap(buffer: pa.Buffer | None, offset: int, length: int) -> NDArray[np.bool_]:
    if buffer is None:
        return np.ones(length, dtype=np.bool_)
    first = offset // 8
    last = (offset + length + 7) // 8
    raw = np.frombuffer(buffer, dtype=np.uint8, count=last)[first:last]
    bits = np.unpackbits(raw, bitorder="little")
    start = offset - first * 8
    return bits[start : start + length].astype(np.bool_)


def _fixed_values(array: pa.Array, dtype: type[np.generic]) -> NDArray:
    length = len(array)
    buffer = array.buffers()[1]
    if buffer is None or length == 0:
        return np.empty(0, dtype=dtype)
    return np.frombuffer(buffer, dtype=dtype, count=array.offset + length)[array.offset :]


def _offsets(array: pa.Array, *, large: bool) -> NDArray[np.integer]:
    dtype = np.int64 if large else np.int32
    length = len(array)
    buffer = array.buffers()[1]
    if buffer is None:
        return np.zeros(length + 1, dtype=dtype)
    count = array.offset + length + 1
    return np.frombuffer(buffer, dtype=dtype, count=count)[array.offset :]


# -----------------------------------------------------------------------------
# Batches
# -----------------------------------------------------------------------------


class ColumnBatch:
    """Borrowed, read-only view over one column of an engine batch.

    Views are only valid until the owning ``OwnedColumnBatch`` is refilled;
    values needed past that point must be copied out by the caller.
    """

    __slots__ = ("_array", "_generation", "_kind", "_not_null", "_owner")

    def __init__(
        self,
        array: pa.Array,
        kind: Kind,
        *,
        owner: OwnedColumnBatch | None = None,
    ) -> None:
        self._array = array
        self._kind = kind
        self._owner = owner
        self._generation = owner.generation if owner is not None else 0
        self._not_null: NDArray[np.bool_] | None = None

    def __repr__(self) -> str:
        return f"ColumnBatch(kind={self._kind.display()}, num_elements={len(self._array)})"

    def __len__(self) -> int:
        return len(self._array)

    def _check_live(self) -> None:
        if self._owner is not None and self._owner.generation != self._generation:
            msg = "Column batch view used after its owning batch was refilled."
            raise StaleBatchError(msg)

    def _child(self, array: pa.Array, kind: Kind) -> ColumnBatch:
        child = ColumnBatch(array, kind, owner=self._owner)
        child._generation = self._generation
        return child

    @property
    def kind(self) -> Kind:
        return self._kind

    @property
    def num_elements(self) -> int:
        return len(self._array)

    @property
    def has_nulls(self) -> bool:
        self._check_live()
        return self._array.null_count > 0

    @property
    def not_null(self) -> NDArray[np.bool_] | None:
        """Return the validity of every row, or ``None`` when no row is null.

        Returns
        -------
        numpy.ndarray | None
            Boolean mask; ``False`` marks a null row.
        """
        if not self.has_nulls:
            return None
        if self._not_null is None:
            self._not_null = _unpack_bitmap(
                self._array.buffers()[0], self._array.offset, len(self._array)
            )
        return self._not_null

    def is_null(self, row: int) -> bool:
        """Return whether a row is null.

        Returns
        -------
        bool
            ``True`` when the row is null.
        """
        not_null = self.not_null
        return not_null is not None and not bool(not_null[row])

    def to_arrow(self) -> pa.Array:
        """Return the underlying Arrow array.

        Returns
        -------
        pyarrow.Array
            Array backing this view.
        """
        self._check_live()
        return self._array

    # -- checked conversions ---------------------------------------------------

    def view(self) -> ColumnView:
        """Return the kind-specific payload view.

        Returns
        -------
        ColumnView
            Typed view matching this batch's kind.

        Raises
        ------
        MismatchedColumnKindError
            Raised when the buffers do not hold the declared kind.
        """
        self._check_live()
        kind = self._kind
        check = _ARROW_CHECKS[type(kind)]
        if not check(self._array.type):
            msg = f"Column of kind {kind.display()} is backed by Arrow type {self._array.type}."
            raise MismatchedColumnKindError(msg)
        builders: dict[type, Callable[[], ColumnView]] = {
            BooleanKind: self._boolean_view,
            StructKind: self._struct_view,
            ListKind: self._list_view,
            MapKind: self._map_view,
            UnionKind: self._union_view,
            DecimalKind: self._decimal_view,
            TimestampKind: self._timestamp_view,
            TimestampInstantKind: self._timestamp_view,
        }
        builder = builders.get(type(kind))
        if builder is not None:
            return builder()
        integer_dtype = _INTEGER_DTYPES.get(type(kind))
        if integer_dtype is not None:
            return IntegerView(_fixed_values(self._array, integer_dtype))
        float_dtype = _FLOAT_DTYPES.get(type(kind))
        if float_dtype is not None:
            return FloatView(_fixed_values(self._array, float_dtype))
        return self._bytes_view()

    def _try_into[V](self, view_type: type[V]) -> V:
        view = self.view()
        if not isinstance(view, view_type):
            msg = (
                f"Cannot view a {self._kind.display()} column as {view_type.__name__}; "
                f"it is a {type(view).__name__}."
            )
            raise MismatchedColumnKindError(msg)
        return view

    def try_into_booleans(self) -> BooleanView:
        return self._try_into(BooleanView)

    def try_into_integers(self) -> IntegerView:
        return self._try_into(IntegerView)

    def try_into_floats(self) -> FloatView:
        return self._try_into(FloatView)

    def try_into_bytes(self) -> BytesView:
        return self._try_into(BytesView)

    def try_into_timestamps(self) -> TimestampView:
        return self._try_into(TimestampView)

    def try_into_decimals(self) -> DecimalView:
        return self._try_into(DecimalView)

    def try_into_structs(self) -> StructView:
        return self._try_into(StructView)

    def try_into_lists(self) -> ListView:
        return self._try_into(ListView)

    def try_into_maps(self) -> MapView:
        return self._try_into(MapView)

    def try_into_unions(self) -> UnionView:
        return self._try_into(UnionView)

    # -- view builders -----------------------------------------------------------

    def _boolean_view(self) -> BooleanView:
        array = self._array
        return BooleanView(_unpack_bitmap(array.buffers()[1], array.offset, len(array)))

    def _bytes_view(self) -> BytesView:
        array = self._array
        large = pa.types.is_large_string(array.type) or pa.types.is_large_binary(array.type)
        data = array.buffers()[2]
        return BytesView(
            offsets=_offsets(array, large=large),
            data=memoryview(data) if data is not None else memoryview(b""),
        )

    def _timestamp_view(self) -> TimestampView:
        array = self._array
        raw = _fixed_values(array, np.int64)
        # Split in the source unit so coarse units never overflow int64 nanoseconds.
        unit_nanos = _UNIT_NANOS[array.type.unit]
        seconds, fraction = np.divmod(raw, _NANOS_PER_SECOND // unit_nanos)
        nanoseconds = fraction * unit_nanos
        return TimestampView(seconds=seconds, nanoseconds=nanoseconds)

    def _decimal_view(self) -> DecimalView:
        array = self._array
        kind = self._kind
        width = array.type.byte_width // 8
        length = len(array)
        buffer = array.buffers()[1]
        if buffer is None or length == 0:
            words = np.empty((0, width), dtype=np.uint64)
        else:
            count = (array.offset + length) * width
            words = np.frombuffer(buffer, dtype=np.uint64, count=count).reshape(-1, width)
            words = words[array.offset :]
        assert isinstance(kind, DecimalKind)
        return DecimalView(words=words, precision=kind.precision, scale=kind.scale)

    def _struct_view(self) -> StructView:
        kind = self._kind
        assert isinstance(kind, StructKind)
        array = self._array
        if array.type.num_fields != len(kind.fields):
            msg = (
                f"Struct kind declares {len(kind.fields)} fields but the batch "
                f"holds {array.type.num_fields} columns."
            )
            raise MismatchedColumnKindError(msg)
        children = tuple(
            self._child(array.field(index), field.kind) for index, field in enumerate(kind.fields)
        )
        return StructView(names=kind.names(), fields=children)

    def _list_view(self) -> ListView:
        kind = self._kind
        assert isinstance(kind, ListKind)
        array = self._array
        return ListView(
            offsets=_offsets(array, large=pa.types.is_large_list(array.type)),
            elements=self._child(array.values, kind.element),
        )

    def _map_view(self) -> MapView:
        kind = self._kind
        assert isinstance(kind, MapKind)
        array = self._array
        return MapView(
            offsets=_offsets(array, large=False),
            keys=self._child(array.keys, kind.key),
            values=self._child(array.items, kind.value),
        )

    def _union_view(self) -> UnionView:
        kind = self._kind
        assert isinstance(kind, UnionKind)
        array = self._array
        code_to_index = {code: index for index, code in enumerate(array.type.type_codes)}
        codes = np.asarray(array.type_codes.to_numpy(zero_copy_only=False))
        tags = np.fromiter((code_to_index[code] for code in codes.tolist()), dtype=np.int64)
        if array.type.mode == "dense":
            offsets = np.asarray(array.offsets.to_numpy(zero_copy_only=False), dtype=np.int64)
        else:
            offsets = np.arange(len(array), dtype=np.int64)
        variants = tuple(
            self._child(array.field(index), variant) for index, variant in enumerate(kind.variants)
        )
        return UnionView(tags=tags, offsets=offsets, variants=variants)


class OwnedColumnBatch:
    """Reusable, fixed-capacity batch exclusively owned by one row reader."""

    __slots__ = ("_array", "_capacity", "_generation", "_kind")

    def __init__(self, capacity: int, kind: Kind) -> None:
        if capacity <= 0:
            msg = f"Batch capacity must be positive, got {capacity}."
            raise ValueError(msg)
        self._capacity = capacity
        self._kind = kind
        self._array: pa.Array | None = None
        self._generation = 0

    def __repr__(self) -> str:
        return (
            f"OwnedColumnBatch(capacity={self._capacity}, num_elements={self.num_elements}, "
            f"kind={self._kind.display()})"
        )

    def __len__(self) -> int:
        return self.num_elements

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def kind(self) -> Kind:
        return self._kind

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def num_elements(self) -> int:
        return 0 if self._array is None else len(self._array)

    def borrow(self) -> ColumnBatch:
        """Return a view valid until the next refill of this batch.

        Returns
        -------
        ColumnBatch
            Borrowed view over the current contents.
        """
        if self._array is None:
            self._array = pa.array([], type=kind_to_arrow(self._kind))
        return ColumnBatch(self._array, self._kind, owner=self)

    def fill(self, array: pa.Array) -> None:
        """Replace the batch contents; invalidates every borrowed view.

        Raises
        ------
        ReaderStateError
            Raised when the array holds more rows than the batch capacity.
        """
        if len(array) > self._capacity:
            msg = f"Cannot fill a batch of capacity {self._capacity} with {len(array)} rows."
            raise ReaderStateError(msg)
        self._array = array
        self._generation += 1

    def clear(self) -> None:
        """Drop the batch contents; invalidates every borrowed view."""
        self._array = None
        self._generation += 1


__all__ = [
    "BooleanView",
    "BytesView",
    "ColumnBatch",
    "ColumnView",
    "DecimalView",
    "FloatView",
    "IntegerView",
    "ListView",
    "MapView",
    "OwnedColumnBatch",
    "StructView",
    "TimestampView",
    "UnionView",
]

"""Tests for column batches and their typed views."""

from __future__ import annotations

from decimal import Decimal

import numpy as np
import pyarrow as pa
import pytest

from orcrows.errors import MismatchedColumnKindError, ReaderStateError, StaleBatchError
from orcrows.kind import (
    BooleanKind,
    DecimalKind,
    IntKind,
    ListKind,
    LongKind,
    MapKind,
    StringKind,
    TimestampKind,
    kind_from_arrow,
)
from orcrows.vector import (
    BooleanView,
    BytesView,
    ColumnBatch,
    IntegerView,
    OwnedColumnBatch,
    StructView,
)

_CAPACITY = 4


def test_not_null_is_none_without_nulls() -> None:
    """Ensure batches without nulls report no validity mask."""
    batch = ColumnBatch(pa.array([1, 2, 3], type=pa.int64()), LongKind())
    assert not batch.has_nulls
    assert batch.not_null is None
    assert not batch.is_null(1)


def test_not_null_respects_slice_offset() -> None:
    """Ensure the validity mask honours the array offset."""
    array = pa.array([None, 1, None, 3, 4, None, 6, 7, 8, None], type=pa.int32()).slice(3, 7)
    batch = ColumnBatch(array, IntKind())
    mask = batch.not_null
    assert mask is not None
    assert mask.tolist() == [True, True, False, True, True, True, False]
    assert batch.is_null(2)


def test_integer_view_reads_sliced_values() -> None:
    """Ensure integer payloads start at the array offset."""
    array = pa.array(list(range(10)), type=pa.int64()).slice(4, 3)
    view = ColumnBatch(array, LongKind()).try_into_integers()
    assert isinstance(view, IntegerView)
    assert view.values.tolist() == [4, 5, 6]


def test_boolean_view_unpacks_bits() -> None:
    """Ensure boolean payloads are unpacked from the values bitmap."""
    array = pa.array([True, False, True, True, False, False, True, False, True]).slice(1)
    view = ColumnBatch(array, BooleanKind()).try_into_booleans()
    assert isinstance(view, BooleanView)
    assert view.values.tolist() == [False, True, True, False, False, True, False, True]


def test_bytes_view_offsets_and_values() -> None:
    """Ensure string payloads expose offsets and raw bytes."""
    array = pa.array(["a", "", "xyz", None, "é"]).slice(1)
    view = ColumnBatch(array, StringKind()).try_into_bytes()
    assert isinstance(view, BytesView)
    assert view.value(0) == b""
    assert view.value(1) == b"xyz"
    assert view.value(3) == "é".encode()
    assert len(view.offsets) == len(array) + 1


def test_timestamp_view_splits_seconds_and_nanos() -> None:
    """Ensure timestamps split into seconds and non-negative nanoseconds."""
    array = pa.array([1_500_000_000, -1, 0], type=pa.timestamp("ns"))
    view = ColumnBatch(array, TimestampKind()).try_into_timestamps()
    assert view.seconds.tolist() == [1, -1, 0]
    assert view.nanoseconds.tolist() == [500_000_000, 999_999_999, 0]


def test_timestamp_view_scales_coarse_units() -> None:
    """Ensure second and microsecond units are scaled to nanoseconds."""
    array = pa.array([2, -3], type=pa.timestamp("us"))
    view = ColumnBatch(array, TimestampKind()).try_into_timestamps()
    assert view.seconds.tolist() == [0, -1]
    assert view.nanoseconds.tolist() == [2000, 999_997_000]


def test_decimal_view_unscaled_values() -> None:
    """Ensure decimal words decode to signed unscaled integers."""
    values = [Decimal("1.25"), Decimal("-7.50"), Decimal("99999999.99")]
    array = pa.array(values, type=pa.decimal128(10, 2))
    view = ColumnBatch(array, DecimalKind(precision=10, scale=2)).try_into_decimals()
    assert [view.unscaled(row) for row in range(3)] == [125, -750, 9_999_999_999]
    assert view.scale == 2


def test_struct_view_children_follow_parent_slice() -> None:
    """Ensure struct children are aligned with a sliced parent."""
    array = pa.array([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}, {"a": 3, "b": "z"}]).slice(1)
    batch = ColumnBatch(array, kind_from_arrow(array.type))
    view = batch.try_into_structs()
    assert isinstance(view, StructView)
    assert view.names == ("a", "b")
    assert view.fields[0].try_into_integers().values.tolist() == [2, 3]


def test_list_and_map_views_use_absolute_offsets() -> None:
    """Ensure list and map offsets index the unsliced child arrays."""
    lists = pa.array([[1], [2, 3], [], [4]], type=pa.list_(pa.int64())).slice(1)
    list_view = ColumnBatch(lists, ListKind(element=LongKind())).try_into_lists()
    assert list_view.offsets.tolist() == [1, 3, 3, 4]
    assert list_view.elements.try_into_integers().values.tolist() == [1, 2, 3, 4]
    maps = pa.array([[("a", 1)], [("b", 2), ("c", 3)]], type=pa.map_(pa.string(), pa.int32()))
    map_view = ColumnBatch(maps, MapKind(key=StringKind(), value=IntKind())).try_into_maps()
    assert map_view.offsets.tolist() == [0, 1, 3]
    assert map_view.values.try_into_integers().values.tolist() == [1, 2, 3]


def test_union_view_maps_type_codes_to_variants() -> None:
    """Ensure dense union rows expose the variant index and offset."""
    types = pa.array([0, 1, 0], type=pa.int8())
    offsets = pa.array([0, 0, 1], type=pa.int32())
    array = pa.UnionArray.from_dense(
        types,
        offsets,
        [pa.array([10, 20], type=pa.int32()), pa.array(["s"], type=pa.string())],
    )
    view = ColumnBatch(array, kind_from_arrow(array.type)).try_into_unions()
    assert view.tags.tolist() == [0, 1, 0]
    assert view.offsets.tolist() == [0, 0, 1]
    assert len(view.variants) == 2


def test_checked_conversion_rejects_wrong_category() -> None:
    """Ensure views of another kind category raise instead of casting."""
    batch = ColumnBatch(pa.array(["a"]), StringKind())
    with pytest.raises(MismatchedColumnKindError):
        batch.try_into_integers()


def test_view_rejects_buffers_of_another_kind() -> None:
    """Ensure a kind that disagrees with the buffers is reported."""
    batch = ColumnBatch(pa.array([1, 2], type=pa.int32()), LongKind())
    with pytest.raises(MismatchedColumnKindError):
        batch.view()


def test_owned_batch_refill_invalidates_views() -> None:
    """Ensure borrowed views go stale when the owning batch is refilled."""
    owned = OwnedColumnBatch(_CAPACITY, LongKind())
    owned.fill(pa.array([1, 2], type=pa.int64()))
    borrowed = owned.borrow()
    assert borrowed.try_into_integers().values.tolist() == [1, 2]
    owned.fill(pa.array([3], type=pa.int64()))
    with pytest.raises(StaleBatchError):
        borrowed.try_into_integers()
    assert owned.borrow().try_into_integers().values.tolist() == [3]


def test_owned_batch_stale_children() -> None:
    """Ensure child views of a struct go stale with their parent."""
    struct = pa.array([{"a": 1}])
    owned = OwnedColumnBatch(_CAPACITY, kind_from_arrow(struct.type))
    owned.fill(struct)
    child = owned.borrow().try_into_structs().fields[0]
    owned.clear()
    with pytest.raises(StaleBatchError):
        child.view()


def test_owned_batch_enforces_capacity() -> None:
    """Ensure a batch cannot be filled past its capacity."""
    owned = OwnedColumnBatch(_CAPACITY, LongKind())
    with pytest.raises(ReaderStateError):
        owned.fill(pa.array(np.arange(_CAPACITY + 1), type=pa.int64()))
    with pytest.raises(ValueError, match="capacity"):
        OwnedColumnBatch(0, LongKind())


def test_owned_batch_starts_empty() -> None:
    """Ensure a fresh batch borrows as an empty view of its kind."""
    owned = OwnedColumnBatch(_CAPACITY, LongKind())
    assert owned.num_elements == 0
    assert owned.borrow().num_elements == 0


def test_timestamp_view_coarse_units_do_not_overflow() -> None:
    """Ensure second and millisecond values beyond the nanosecond range split exactly."""
    seconds = pa.array([-(2**40), 2**40], type=pa.timestamp("s"))
    view = ColumnBatch(seconds, TimestampKind()).try_into_timestamps()
    assert view.seconds.tolist() == [-(2**40), 2**40]
    assert view.nanoseconds.tolist() == [0, 0]
    millis = pa.array([-1, 2**50 + 7], type=pa.timestamp("ms"))
    view = ColumnBatch(millis, TimestampKind()).try_into_timestamps()
    assert view.seconds.tolist() == [-1, (2**50 + 7) // 1000]
    assert view.nanoseconds.tolist() == [999_000_000, (2**50 + 7) % 1000 * 1_000_000]

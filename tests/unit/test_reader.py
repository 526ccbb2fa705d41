"""Tests for the reader and the row reader state machine."""

from __future__ import annotations

from collections.abc import Sequence

import pyarrow as pa
import pytest

from orcrows.deserialize import bind_decoder
from orcrows.errors import ReaderStateError, StaleBatchError, UnderlyingIoError
from orcrows.reader import Reader, ReaderState, RowReaderOptions
from orcrows.sources import ArrowTableSource
from orcrows.vector import OwnedColumnBatch
from tests.test_helpers.orc_seed import I64_MAX, Long1Row, long1_table, nested_table

_STRIPE_ROWS = 7
_CAPACITY = 3


class FailOnceSource(ArrowTableSource):
    """Table source whose first read of one stripe fails."""

    def __init__(self, table: pa.Table, *, stripe_rows: int, failing_stripe: int) -> None:
        super().__init__(table, stripe_rows=stripe_rows)
        self._failing_stripe: int | None = failing_stripe

    def read_stripe(self, index: int, columns: Sequence[str] | None = None) -> pa.RecordBatch:
        if index == self._failing_stripe:
            self._failing_stripe = None
            msg = f"Stripe {index} is temporarily unreadable."
            raise UnderlyingIoError(msg)
        return super().read_stripe(index, columns)


def _failing_reader() -> Reader:
    table = pa.table({"id": pa.array(list(range(6)), type=pa.int64())})
    return Reader(FailOnceSource(table, stripe_rows=3, failing_stripe=1))


def _id_reader() -> Reader:
    return Reader.from_table(nested_table(20), stripe_rows=_STRIPE_ROWS)


def _read_ids(reader: Reader, *, capacity: int = _CAPACITY, seek: int | None = None) -> list[int]:
    ids: list[int] = []
    with reader.row_reader(RowReaderOptions().include_names(["id"])) as row_reader:
        if seek is not None:
            row_reader.seek_to_row(seek)
        batch = row_reader.row_batch(capacity)
        while row_reader.read_into(batch):
            assert batch.num_elements <= capacity
            view = batch.borrow().try_into_structs().fields[0]
            ids.extend(view.try_into_integers().values.tolist())
    return ids


def test_manual_buffer_api_decodes_long1() -> None:
    """Ensure the manual batch API decodes two maximal int64 rows."""
    reader = Reader.from_table(long1_table())
    row_reader = reader.row_reader(RowReaderOptions().include_names(["long1"]))
    deserializer = bind_decoder(Long1Row, row_reader.selected_kind())
    batch = row_reader.row_batch(1024)
    out: list[Long1Row | None] = []
    while row_reader.read_into(batch):
        view = batch.borrow()
        deserializer.append_range(view, 0, view.num_elements, out)
    assert out == [Long1Row(I64_MAX), Long1Row(I64_MAX)]
    assert row_reader.state is ReaderState.EXHAUSTED


def test_reader_metadata() -> None:
    """Ensure row counts and stripe layout are reported."""
    reader = _id_reader()
    assert reader.row_count() == 20
    stripes = reader.stripes()
    assert [(item.first_row, item.rows_count) for item in stripes] == [(0, 7), (7, 7), (14, 6)]
    assert reader.locate_row(9) == (1, 2)
    assert reader.locate_row(20) == (3, 0)
    assert reader.kind().names()[0] == "id"


def test_reads_never_cross_stripes() -> None:
    """Ensure every batch stays inside one stripe and rows stay ordered."""
    reader = _id_reader()
    sizes: list[int] = []
    with reader.row_reader() as row_reader:
        batch = row_reader.row_batch(5)
        while row_reader.read_into(batch):
            sizes.append(batch.num_elements)
    assert sizes == [5, 2, 5, 2, 5, 1]
    assert _read_ids(reader) == list(range(20))


def test_row_number_and_state_transitions() -> None:
    """Ensure the row reader tracks position and moves through its states."""
    reader = _id_reader()
    row_reader = reader.row_reader()
    assert row_reader.state is ReaderState.IDLE
    batch = row_reader.row_batch(_CAPACITY)
    assert row_reader.read_into(batch)
    assert row_reader.state is ReaderState.READING
    assert row_reader.row_number() == _CAPACITY
    with pytest.raises(ReaderStateError):
        row_reader.seek_to_row(0)
    while row_reader.read_into(batch):
        pass
    assert row_reader.state is ReaderState.EXHAUSTED
    assert batch.num_elements == 0
    row_reader.seek_to_row(18)
    assert row_reader.read_into(batch)
    assert batch.num_elements == 2
    row_reader.close()
    assert row_reader.state is ReaderState.CLOSED
    with pytest.raises(ReaderStateError):
        row_reader.read_into(batch)


@pytest.mark.parametrize("start", [0, 1, 6, 7, 13, 19, 20])
def test_seek_to_row_matches_skip(start: int) -> None:
    """Ensure seeking then reading equals skipping rows of a full read."""
    reader = _id_reader()
    assert _read_ids(reader, seek=start) == _read_ids(reader)[start:]


def test_seek_out_of_range() -> None:
    """Ensure seeking past the end is rejected."""
    with _id_reader().row_reader() as row_reader, pytest.raises(IndexError):
        row_reader.seek_to_row(21)


def test_projection_selects_file_order() -> None:
    """Ensure included names are read in file order and others are skipped."""
    reader = _id_reader()
    options = RowReaderOptions().include_names(["name", "id", "not-a-column"])
    with reader.row_reader(options) as row_reader:
        assert row_reader.selected_kind().names() == ("id", "name")
        batch = row_reader.row_batch(_CAPACITY)
        assert row_reader.read_into(batch)
        assert batch.borrow().to_arrow().type.names == ["id", "name"]


def test_options_are_immutable() -> None:
    """Ensure include_names returns a new options object."""
    base = RowReaderOptions()
    selected = base.include_names(["a"])
    assert base.include is None
    assert selected.include == ("a",)
    assert selected.include_names(["b"]).include == ("b",)


def test_borrowed_view_goes_stale_after_next_read() -> None:
    """Ensure views from a previous read cannot be used after a refill."""
    with _id_reader().row_reader() as row_reader:
        batch = row_reader.row_batch(_CAPACITY)
        row_reader.read_into(batch)
        view = batch.borrow()
        row_reader.read_into(batch)
        with pytest.raises(StaleBatchError):
            view.try_into_structs()


def test_batch_from_other_reader_is_rejected() -> None:
    """Ensure a batch allocated for another projection is refused."""
    reader = _id_reader()
    with reader.row_reader() as full, reader.row_reader(
        RowReaderOptions().include_names(["id"])
    ) as narrow:
        batch = full.row_batch(_CAPACITY)
        with pytest.raises(ReaderStateError):
            narrow.read_into(batch)


def test_table_source_rejects_missing_stripe() -> None:
    """Ensure engine-level failures surface as UnderlyingIoError."""
    reader = Reader.from_table(pa.table({"a": [1]}))
    with pytest.raises(UnderlyingIoError):
        reader.source.read_stripe(5)


def test_fork_shares_data() -> None:
    """Ensure forked readers read the same rows independently."""
    reader = _id_reader()
    forked = reader.fork()
    assert _read_ids(forked, seek=10) == list(range(10, 20))
    assert _read_ids(reader) == list(range(20))


def _batch_ids(batch: OwnedColumnBatch) -> list[int]:
    view = batch.borrow().try_into_structs().fields[0]
    return view.try_into_integers().values.tolist()


def test_failed_stripe_load_keeps_position() -> None:
    """Ensure a failed stripe load can be retried without replaying rows."""
    with _failing_reader().row_reader() as row_reader:
        batch = row_reader.row_batch(_CAPACITY)
        ids: list[int] = []
        assert row_reader.read_into(batch)
        ids.extend(_batch_ids(batch))
        with pytest.raises(UnderlyingIoError):
            row_reader.read_into(batch)
        assert row_reader.row_number() == 3
        while row_reader.read_into(batch):
            ids.extend(_batch_ids(batch))
        assert ids == list(range(6))
        assert row_reader.row_number() == 6


def test_failed_seek_keeps_reader_idle() -> None:
    """Ensure a seek whose stripe load fails leaves the reader usable."""
    with _failing_reader().row_reader() as row_reader:
        with pytest.raises(UnderlyingIoError):
            row_reader.seek_to_row(4)
        assert row_reader.state is ReaderState.IDLE
        row_reader.seek_to_row(4)
        batch = row_reader.row_batch(_CAPACITY)
        assert row_reader.read_into(batch)
        assert _batch_ids(batch) == [4, 5]

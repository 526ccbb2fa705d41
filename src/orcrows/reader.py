"""File reader and row reader state machine.

``Reader`` owns one stripe source and its kind tree. ``RowReader`` is a cursor
over it: it fills a caller-held ``OwnedColumnBatch`` one chunk at a time and
never crosses a stripe boundary within a single read.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from types import TracebackType
from typing import BinaryIO, Self

import pyarrow as pa

from orcrows.errors import ReaderStateError
from orcrows.kind import StructKind, kind_from_arrow, project_kind
from orcrows.obs import read_span
from orcrows.sources import (
    DEFAULT_TABLE_STRIPE_ROWS,
    ArrowTableSource,
    OrcFileSource,
    StripeSource,
)
from orcrows.vector import OwnedColumnBatch

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StripeInformation:
    """Position and size of one stripe."""

    index: int
    first_row: int
    rows_count: int


@dataclass(frozen=True, slots=True)
class RowReaderOptions:
    """Options for opening a row reader.

    ``include`` lists the top-level column names to read; ``None`` reads every
    column.
    """

    include: tuple[str, ...] | None = None

    def include_names(self, names: Iterable[str]) -> RowReaderOptions:
        """Return options selecting the given columns, replacing any selection.

        Returns
        -------
        RowReaderOptions
            New options object.
        """
        return replace(self, include=tuple(names))


class ReaderState(StrEnum):
    """Lifecycle states of a row reader."""

    IDLE = "idle"
    READING = "reading"
    EXHAUSTED = "exhausted"
    CLOSED = "closed"


class Reader:
    """Typed-access entry point over one columnar file or table."""

    def __init__(self, source: StripeSource) -> None:
        self._source = source
        kind = kind_from_arrow(source.schema)
        if not isinstance(kind, StructKind):
            msg = f"Top-level kind must be a struct, got {kind.display()}."
            raise TypeError(msg)
        self._kind = kind
        self._stripe_starts: list[int] | None = None

    @classmethod
    def from_local_file(cls, path: str | Path) -> Reader:
        """Open an ORC file from the local filesystem.

        Returns
        -------
        Reader
            Reader over the file; forks open independent handles.
        """
        return cls(OrcFileSource(Path(path)))

    @classmethod
    def from_file(cls, file_obj: BinaryIO) -> Reader:
        """Open an ORC file from a seekable binary file object.

        Readers built this way cannot fork concurrent cursors.

        Returns
        -------
        Reader
            Reader over the file object.
        """
        return cls(OrcFileSource(file_obj))

    @classmethod
    def from_table(
        cls,
        table: pa.Table,
        *,
        stripe_rows: int = DEFAULT_TABLE_STRIPE_ROWS,
    ) -> Reader:
        """Wrap an in-memory Arrow table.

        Returns
        -------
        Reader
            Reader over the table.
        """
        return cls(ArrowTableSource(table, stripe_rows=stripe_rows))

    def __repr__(self) -> str:
        return f"Reader({self._source!r})"

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def source(self) -> StripeSource:
        return self._source

    @property
    def supports_concurrent_cursors(self) -> bool:
        return self._source.supports_concurrent_cursors

    def kind(self) -> StructKind:
        return self._kind

    def row_count(self) -> int:
        return self._source.num_rows

    def _starts(self) -> list[int]:
        if self._stripe_starts is None:
            starts = [0]
            for index in range(self._source.num_stripes):
                starts.append(starts[-1] + self._source.stripe_rows(index))
            self._stripe_starts = starts
        return self._stripe_starts

    def stripes(self) -> list[StripeInformation]:
        """Return the position and row count of every stripe.

        Returns
        -------
        list[StripeInformation]
            Stripes in file order.
        """
        starts = self._starts()
        return [
            StripeInformation(index=index, first_row=starts[index], rows_count=starts[index + 1] - starts[index])
            for index in range(len(starts) - 1)
        ]

    def locate_row(self, row: int) -> tuple[int, int]:
        """Return the stripe holding a row and the row's offset within it.

        Returns
        -------
        tuple[int, int]
            ``(stripe_index, offset)``; rows at or past the end map to
            ``(num_stripes, 0)``.
        """
        starts = self._starts()
        if row >= starts[-1]:
            return len(starts) - 1, 0
        stripe = bisect.bisect_right(starts, row) - 1
        return stripe, row - starts[stripe]

    def fork(self) -> Reader:
        """Return a reader with an independent cursor over the same data.

        Returns
        -------
        Reader
            Independent reader.

        Raises
        ------
        ResourceNotConcurrentSafeError
            Raised when the source cannot open independent cursors.
        """
        forked = Reader(self._source.fork())
        forked._stripe_starts = self._stripe_starts
        return forked

    def row_reader(self, options: RowReaderOptions | None = None) -> RowReader:
        return RowReader(self, options or RowReaderOptions())

    def close(self) -> None:
        self._source.close()


class RowReader:
    """Cursor producing successive batches of the selected columns.

    A row reader is not safe for concurrent use; open one per thread.
    """

    def __init__(self, reader: Reader, options: RowReaderOptions) -> None:
        self._reader = reader
        self._options = options
        self._selected = project_kind(reader.kind(), options.include)
        self._columns = list(self._selected.names()) if options.include is not None else None
        self._state = ReaderState.IDLE
        self._row = 0
        self._stripe = 0
        self._offset = 0
        self._current: pa.StructArray | None = None

    def __repr__(self) -> str:
        return f"RowReader(state={self._state}, row={self._row}, selected={self._selected.names()})"

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def options(self) -> RowReaderOptions:
        return self._options

    def selected_kind(self) -> StructKind:
        return self._selected

    def _check_open(self) -> None:
        if self._state is ReaderState.CLOSED:
            msg = "Row reader is closed."
            raise ReaderStateError(msg)

    def row_batch(self, capacity: int) -> OwnedColumnBatch:
        """Allocate the reusable batch this reader fills.

        Returns
        -------
        OwnedColumnBatch
            Empty batch of the selected kind.
        """
        self._check_open()
        return OwnedColumnBatch(capacity, self._selected)

    def _load_stripe(self, index: int) -> pa.StructArray:
        with read_span("orcrows.load_stripe", attributes={"stripe": index}):
            if self._columns == []:
                # A batch with no columns has no length, so size the rows from the stripe.
                rows = self._reader.source.stripe_rows(index)
                array = pa.array([{}] * rows, type=pa.struct([]))
                _LOGGER.debug("Loaded stripe %d with %d rows and no columns", index, rows)
                return array
            batch = self._reader.source.read_stripe(index, self._columns)
            if self._columns is not None:
                batch = batch.select(self._columns)
            array = batch.to_struct_array()
        _LOGGER.debug("Loaded stripe %d with %d rows", index, len(array))
        return array

    def read_into(self, batch: OwnedColumnBatch) -> bool:
        """Fill ``batch`` with the next rows of the current stripe.

        Returns
        -------
        bool
            ``False`` once every row has been read; the batch is then empty.

        Raises
        ------
        ReaderStateError
            Raised when the reader is closed or the batch has another kind.
        """
        self._check_open()
        if batch.kind != self._selected:
            msg = "Batch was not allocated for this reader's selected kind."
            raise ReaderStateError(msg)
        if self._state is ReaderState.EXHAUSTED:
            batch.clear()
            return False
        self._state = ReaderState.READING
        num_stripes = self._reader.source.num_stripes
        while self._current is None or self._offset >= len(self._current):
            stripe = self._stripe if self._current is None else self._stripe + 1
            if stripe >= num_stripes:
                self._stripe, self._offset, self._current = stripe, 0, None
                self._state = ReaderState.EXHAUSTED
                batch.clear()
                return False
            # Position only moves once the stripe is loaded, so a failed load can be retried.
            current = self._load_stripe(stripe)
            self._stripe, self._offset, self._current = stripe, 0, current
        take = min(batch.capacity, len(self._current) - self._offset)
        batch.fill(self._current.slice(self._offset, take))
        self._offset += take
        self._row += take
        return True

    def row_number(self) -> int:
        return self._row

    def seek_to_row(self, row: int) -> None:
        """Reposition the cursor so the next read starts at ``row``.

        Raises
        ------
        ReaderStateError
            Raised unless the reader is idle or exhausted.
        IndexError
            Raised when ``row`` is outside ``[0, row_count]``.
        """
        self._check_open()
        if self._state not in {ReaderState.IDLE, ReaderState.EXHAUSTED}:
            msg = f"seek_to_row is only valid from idle or exhausted, not {self._state}."
            raise ReaderStateError(msg)
        total = self._reader.row_count()
        if row < 0 or row > total:
            msg = f"Row {row} is outside [0, {total}]."
            raise IndexError(msg)
        stripe, offset = self._reader.locate_row(row)
        current = self._load_stripe(stripe) if offset else None
        self._stripe, self._offset, self._current = stripe, offset, current
        self._row = row
        self._state = ReaderState.READING
        _LOGGER.debug("Seeked to row %d (stripe %d, offset %d)", row, stripe, offset)

    def close(self) -> None:
        self._current = None
        self._state = ReaderState.CLOSED


__all__ = ["Reader", "ReaderState", "RowReader", "RowReaderOptions", "StripeInformation"]

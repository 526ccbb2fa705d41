"""Sequential iteration over typed rows."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from types import TracebackType
from typing import Self

from orcrows.config import ReadProfile, resolve_read_profile
from orcrows.deserialize import Deserializer, bind_decoder
from orcrows.errors import DeserializationError
from orcrows.reader import Reader, RowReaderOptions
from orcrows.schema import row_columns

_LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1024


def decode_row_range[T](
    reader: Reader,
    deserializer: Deserializer[T],
    options: RowReaderOptions,
    start: int,
    stop: int,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[T | None]:
    """Decode rows ``[start, stop)`` with a fresh row reader.

    Returns
    -------
    list[T | None]
        Decoded rows in file order.
    """
    wanted = stop - start
    out: list[T | None] = []
    if wanted <= 0:
        return out
    with reader.row_reader(options) as row_reader:
        if row_reader.selected_kind() != deserializer.kind:
            msg = "Deserializer was bound to a different selected kind."
            raise ValueError(msg)
        row_reader.seek_to_row(start)
        batch = row_reader.row_batch(batch_size)
        while len(out) < wanted and row_reader.read_into(batch):
            view = batch.borrow()
            deserializer.append_range(view, 0, min(view.num_elements, wanted - len(out)), out)
    return out


class RowIterator[T]:
    """Iterate decoded rows of one row type, front to back or back to front.

    The row type is validated against the selected columns when the iterator
    is built, before any batch is read.
    """

    def __init__(
        self,
        reader: Reader,
        row_type: type[T],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        options: RowReaderOptions | None = None,
    ) -> None:
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}."
            raise ValueError(msg)
        self._reader = reader
        self._row_type = row_type
        self._batch_size = batch_size
        self._options = options or RowReaderOptions().include_names(row_columns(row_type))
        self._row_reader = reader.row_reader(self._options)
        self._deserializer: Deserializer[T] = bind_decoder(row_type, self._row_reader.selected_kind())
        self._batch = self._row_reader.row_batch(batch_size)
        self._front: deque[T | None] = deque()
        self._back: list[T | None] = []
        self._position = 0
        self._end = reader.row_count()

    @classmethod
    def from_profile(
        cls,
        reader: Reader,
        row_type: type[T],
        profile: ReadProfile | None = None,
        *,
        options: RowReaderOptions | None = None,
    ) -> RowIterator[T]:
        """Build an iterator sized by a read profile.

        Returns
        -------
        RowIterator[T]
            Iterator using the profile's batch size.
        """
        resolved = profile or resolve_read_profile()
        return cls(reader, row_type, batch_size=resolved.batch_size, options=options)

    def __repr__(self) -> str:
        return f"RowIterator({self._row_type.__qualname__}, remaining={len(self)})"

    def __iter__(self) -> Self:
        return self

    def __len__(self) -> int:
        return self._end - self._position

    def __next__(self) -> T | None:
        if self._position >= self._end:
            raise StopIteration
        if not self._front:
            if not self._row_reader.read_into(self._batch):
                self._end = self._position
                raise StopIteration
            try:
                decoded = self._deserializer.decode_whole(self._batch.borrow())
            except Exception:
                # The failed batch is dropped; iteration resumes after it.
                self._position = min(self._row_reader.row_number(), self._end)
                raise
            self._front.extend(decoded)
        self._position += 1
        return self._front.popleft()

    def next_back(self) -> T | None:
        """Return the last remaining row.

        Trailing rows are decoded one batch at a time by a separate row reader
        positioned at ``remaining - batch_size``; row order within that batch is
        preserved.

        Returns
        -------
        T | None
            Last remaining row.

        Raises
        ------
        StopIteration
            Raised when no row remains.
        """
        if self._position >= self._end:
            raise StopIteration
        if not self._back:
            start = max(self._position, self._end - self._batch_size)
            try:
                self._back = decode_row_range(
                    self._reader,
                    self._deserializer,
                    self._options,
                    start,
                    self._end,
                    batch_size=self._batch_size,
                )
            except DeserializationError:
                # The failed trailing batch is dropped; backward iteration resumes before it.
                self._end = start
                raise
            if len(self._back) != self._end - start:
                msg = f"Expected {self._end - start} trailing rows, decoded {len(self._back)}."
                raise RuntimeError(msg)
        self._end -= 1
        return self._back.pop()

    def __reversed__(self) -> Iterator[T | None]:
        while True:
            try:
                yield self.next_back()
            except StopIteration:
                return

    def seek(self, row: int) -> None:
        """Position the iterator so the next row yielded is ``row``.

        Rows already consumed from the back stay consumed.

        Raises
        ------
        IndexError
            Raised when ``row`` is past the remaining range.
        """
        if row < 0 or row > self._end:
            msg = f"Row {row} is outside [0, {self._end}]."
            raise IndexError(msg)
        self._row_reader.close()
        self._row_reader = self._reader.row_reader(self._options)
        self._row_reader.seek_to_row(row)
        self._batch = self._row_reader.row_batch(self._batch_size)
        self._front.clear()
        if row > self._end - len(self._back):
            del self._back[: row - (self._end - len(self._back))]
        self._position = row
        _LOGGER.debug("RowIterator positioned at row %d", row)

    def collect(self) -> list[T | None]:
        return list(self)

    def close(self) -> None:
        self._row_reader.close()
        self._front.clear()
        self._back.clear()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["DEFAULT_BATCH_SIZE", "RowIterator", "decode_row_range"]

"""Engine adapters producing stripe-sized Arrow record batches.

The storage engine itself (binary decoding, compression, I/O) is pyarrow. An
adapter only exposes what the row reader needs: the schema, the row count, and
random access to stripes with a column projection.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

import pyarrow as pa

from orcrows.errors import ResourceNotConcurrentSafeError, UnderlyingIoError

_LOGGER = logging.getLogger(__name__)

DEFAULT_TABLE_STRIPE_ROWS = 65_536

_ENGINE_ERRORS = (pa.ArrowException, OSError)


@runtime_checkable
class StripeSource(Protocol):
    """Read-only, stripe-addressable columnar data."""

    @property
    def schema(self) -> pa.Schema: ...

    @property
    def num_rows(self) -> int: ...

    @property
    def num_stripes(self) -> int: ...

    @property
    def supports_concurrent_cursors(self) -> bool: ...

    def stripe_rows(self, index: int) -> int: ...

    def read_stripe(self, index: int, columns: Sequence[str] | None = None) -> pa.RecordBatch: ...

    def fork(self) -> StripeSource: ...

    def close(self) -> None: ...


def _engine_error(action: str, exc: BaseException) -> UnderlyingIoError:
    return UnderlyingIoError(f"Storage engine failed to {action}: {exc}")


class OrcFileSource:
    """ORC file read through ``pyarrow.orc``.

    A source opened from a path can fork independent handles for parallel
    reads; a source wrapping a caller-provided file object cannot.
    """

    def __init__(self, source: str | Path | BinaryIO) -> None:
        from pyarrow import orc

        self._path = Path(source) if isinstance(source, (str, Path)) else None
        self._handle: pa.NativeFile | None = None
        try:
            if self._path is not None:
                self._handle = pa.memory_map(str(self._path), "r")
                self._file = orc.ORCFile(self._handle)
            else:
                self._file = orc.ORCFile(source)
        except _ENGINE_ERRORS as exc:
            if self._handle is not None:
                self._handle.close()
            raise _engine_error(f"open ORC source {source!r}", exc) from exc
        self._stripe_rows: dict[int, int] = {}
        _LOGGER.debug(
            "Opened ORC source %s: %d rows in %d stripes",
            self._path if self._path is not None else "<file object>",
            self.num_rows,
            self.num_stripes,
        )

    def __repr__(self) -> str:
        origin = str(self._path) if self._path is not None else "<file object>"
        return f"OrcFileSource({origin!r}, rows={self.num_rows}, stripes={self.num_stripes})"

    @property
    def schema(self) -> pa.Schema:
        return self._file.schema

    @property
    def num_rows(self) -> int:
        return self._file.nrows

    @property
    def num_stripes(self) -> int:
        return self._file.nstripes

    @property
    def supports_concurrent_cursors(self) -> bool:
        return self._path is not None

    def stripe_rows(self, index: int) -> int:
        """Return the number of rows in one stripe.

        The ORC reader only reports stripe sizes by reading a stripe, so the
        narrowest projection is read once and the count is cached.

        Returns
        -------
        int
            Row count of the stripe.
        """
        cached = self._stripe_rows.get(index)
        if cached is not None:
            return cached
        columns = self.schema.names[:1]
        return self.read_stripe(index, columns).num_rows

    def read_stripe(self, index: int, columns: Sequence[str] | None = None) -> pa.RecordBatch:
        """Read one stripe, restricted to the given top-level columns.

        Returns
        -------
        pyarrow.RecordBatch
            Stripe contents.

        Raises
        ------
        UnderlyingIoError
            Raised when the engine fails to read the stripe.
        """
        try:
            batch = self._file.read_stripe(index, columns=list(columns) if columns is not None else None)
        except _ENGINE_ERRORS as exc:
            raise _engine_error(f"read stripe {index}", exc) from exc
        self._stripe_rows[index] = batch.num_rows
        return batch

    def fork(self) -> OrcFileSource:
        """Open an independent handle over the same file.

        Returns
        -------
        OrcFileSource
            New source with its own cursor.

        Raises
        ------
        ResourceNotConcurrentSafeError
            Raised when the source wraps a caller-provided file object.
        """
        if self._path is None:
            msg = "ORC source backed by a file object cannot open independent cursors."
            raise ResourceNotConcurrentSafeError(msg)
        forked = OrcFileSource(self._path)
        forked._stripe_rows.update(self._stripe_rows)
        return forked

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class ArrowTableSource:
    """In-memory Arrow table split into fixed-size stripes."""

    def __init__(self, table: pa.Table, *, stripe_rows: int = DEFAULT_TABLE_STRIPE_ROWS) -> None:
        if stripe_rows <= 0:
            msg = f"stripe_rows must be positive, got {stripe_rows}."
            raise ValueError(msg)
        self._table = table
        self._stripe_size = stripe_rows

    def __repr__(self) -> str:
        return f"ArrowTableSource(rows={self.num_rows}, stripes={self.num_stripes})"

    @property
    def schema(self) -> pa.Schema:
        return self._table.schema

    @property
    def num_rows(self) -> int:
        return self._table.num_rows

    @property
    def num_stripes(self) -> int:
        return -(-self._table.num_rows // self._stripe_size)

    @property
    def supports_concurrent_cursors(self) -> bool:
        return True

    def stripe_rows(self, index: int) -> int:
        start = index * self._stripe_size
        return max(0, min(self._stripe_size, self._table.num_rows - start))

    def read_stripe(self, index: int, columns: Sequence[str] | None = None) -> pa.RecordBatch:
        if index < 0 or index >= self.num_stripes:
            msg = f"Stripe {index} is out of range for {self.num_stripes} stripes."
            raise UnderlyingIoError(msg)
        table = self._table.slice(index * self._stripe_size, self._stripe_size)
        if columns is not None:
            table = table.select(list(columns))
        arrays = [column.combine_chunks() for column in table.columns]
        return pa.RecordBatch.from_arrays(arrays, schema=table.schema)

    def fork(self) -> ArrowTableSource:
        return self

    def close(self) -> None:
        """Release nothing; the table stays owned by the caller."""


__all__ = ["DEFAULT_TABLE_STRIPE_ROWS", "ArrowTableSource", "OrcFileSource", "StripeSource"]

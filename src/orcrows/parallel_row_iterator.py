"""Chunked, multi-threaded row decoding with sequential output order."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

from opentelemetry import context as otel_context

from orcrows.config import ReadProfile, resolve_read_profile
from orcrows.deserialize import Deserializer, bind_decoder
from orcrows.errors import ResourceNotConcurrentSafeError
from orcrows.obs import read_span
from orcrows.reader import Reader, RowReaderOptions
from orcrows.row_iterator import DEFAULT_BATCH_SIZE, decode_row_range
from orcrows.schema import row_columns

_LOGGER = logging.getLogger(__name__)


def chunk_ranges(total: int, batch_size: int, chunk_batches: int = 1) -> Iterator[tuple[int, int]]:
    """Split ``[0, total)`` into contiguous, batch-aligned chunks.

    Yields
    ------
    tuple[int, int]
        ``(start, stop)`` of each chunk, in order.
    """
    if batch_size <= 0 or chunk_batches <= 0:
        msg = "batch_size and chunk_batches must be positive."
        raise ValueError(msg)
    step = batch_size * chunk_batches
    for start in range(0, total, step):
        yield start, min(start + step, total)


class ParallelRowIterator[T]:
    """Decode rows in independent chunks on a thread pool.

    Each chunk is decoded by a forked reader with its own cursor, and chunks
    are yielded in file order, so the output equals ``RowIterator``'s.
    """

    def __init__(
        self,
        reader: Reader,
        row_type: type[T],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        chunk_batches: int = 1,
        max_workers: int | None = None,
        sequential_fallback: bool = False,
        options: RowReaderOptions | None = None,
    ) -> None:
        self._reader = reader
        self._row_type = row_type
        self._batch_size = batch_size
        self._chunk_batches = chunk_batches
        self._max_workers = max_workers
        self._options = options or RowReaderOptions().include_names(row_columns(row_type))
        with reader.row_reader(self._options) as row_reader:
            selected = row_reader.selected_kind()
        self._deserializer: Deserializer[T] = bind_decoder(row_type, selected)
        self._parallel = reader.supports_concurrent_cursors
        if not self._parallel:
            if not sequential_fallback:
                msg = (
                    f"{reader!r} cannot open independent cursors; pass "
                    "sequential_fallback=True to decode chunks sequentially."
                )
                raise ResourceNotConcurrentSafeError(msg)
            _LOGGER.warning("Source has no concurrent cursors; decoding chunks sequentially.")
        self._ranges = list(chunk_ranges(reader.row_count(), batch_size, chunk_batches))

    @classmethod
    def from_profile(
        cls,
        reader: Reader,
        row_type: type[T],
        profile: ReadProfile | None = None,
        *,
        options: RowReaderOptions | None = None,
    ) -> ParallelRowIterator[T]:
        """Build a parallel iterator from a read profile.

        Returns
        -------
        ParallelRowIterator[T]
            Iterator configured by the profile.
        """
        resolved = profile or resolve_read_profile()
        return cls(
            reader,
            row_type,
            batch_size=resolved.batch_size,
            chunk_batches=resolved.chunk_batches,
            max_workers=resolved.resolved_max_workers(),
            sequential_fallback=resolved.sequential_fallback,
            options=options,
        )

    def __repr__(self) -> str:
        return (
            f"ParallelRowIterator({self._row_type.__qualname__}, rows={len(self)}, "
            f"chunks={len(self._ranges)})"
        )

    def __len__(self) -> int:
        return self._reader.row_count()

    @property
    def chunks(self) -> list[tuple[int, int]]:
        return list(self._ranges)

    def _decode_chunk(self, reader: Reader, chunk: tuple[int, int]) -> list[T | None]:
        start, stop = chunk
        with read_span("orcrows.decode_chunk", attributes={"start": start, "stop": stop}):
            return decode_row_range(
                reader,
                self._deserializer,
                self._options,
                start,
                stop,
                batch_size=self._batch_size,
            )

    def _decode_forked(self, chunk: tuple[int, int]) -> list[T | None]:
        forked = self._reader.fork()
        try:
            return self._decode_chunk(forked, chunk)
        finally:
            forked.close()

    def iter_chunks(self) -> Iterator[list[T | None]]:
        """Yield decoded chunks in file order.

        Closing the generator early cancels queued chunks; running chunks
        finish and their rows are discarded.

        Yields
        ------
        list[T | None]
            Rows of one chunk.
        """
        workers = self._max_workers
        if not self._parallel or workers == 1 or len(self._ranges) <= 1:
            for chunk in self._ranges:
                yield self._decode_chunk(self._reader, chunk)
            return
        # Stripe boundaries are resolved once so forks share them.
        self._reader.stripes()
        current = otel_context.get_current()

        def _wrapped(chunk: tuple[int, int]) -> list[T | None]:
            token = otel_context.attach(current)
            try:
                return self._decode_forked(chunk)
            finally:
                otel_context.detach(token)

        _LOGGER.debug(
            "Decoding %d chunks with up to %s workers",
            len(self._ranges),
            workers if workers is not None else "default",
        )
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="orcrows")
        try:
            yield from executor.map(_wrapped, self._ranges)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def __iter__(self) -> Iterator[T | None]:
        for chunk in self.iter_chunks():
            yield from chunk

    def collect(self) -> list[T | None]:
        """Decode every row.

        Returns
        -------
        list[T | None]
            Rows in file order.
        """
        out: list[T | None] = []
        for chunk in self.iter_chunks():
            out.extend(chunk)
        return out


__all__ = ["ParallelRowIterator", "chunk_ranges"]

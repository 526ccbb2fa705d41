"""Typed row access over columnar ORC data."""

from __future__ import annotations

from orcrows.config import DEFAULT_READ_PROFILES, ReadProfile, resolve_read_profile
from orcrows.deserialize import Deserializer, bind_decoder, dynamic_decoder
from orcrows.errors import (
    DecimalScaleOverflowError,
    DeserializationError,
    DuplicateMapKeyError,
    InvalidUtf8Error,
    KindParseError,
    MalformedOffsetsError,
    MismatchedColumnKindError,
    NullEncounteredError,
    OrcRowsError,
    ReaderStateError,
    ResourceNotConcurrentSafeError,
    SchemaMismatch,
    SchemaMismatchError,
    StaleBatchError,
    UnderlyingIoError,
    UnsupportedKindError,
    ValueOutOfRangeError,
)
from orcrows.kind import Kind, kind_from_arrow, parse_kind, render_kind
from orcrows.parallel_row_iterator import ParallelRowIterator
from orcrows.reader import Reader, ReaderState, RowReader, RowReaderOptions, StripeInformation
from orcrows.row_iterator import RowIterator
from orcrows.schema import RowSchema, row_columns
from orcrows.types import (
    Byte,
    DecimalScale,
    Float32,
    Int,
    Long,
    Short,
    Timestamp,
    TimestampNanos,
    UnionValue,
)
from orcrows.vector import ColumnBatch, OwnedColumnBatch

__all__ = [
    "DEFAULT_READ_PROFILES",
    "Byte",
    "ColumnBatch",
    "DecimalScale",
    "DecimalScaleOverflowError",
    "DeserializationError",
    "DuplicateMapKeyError",
    "Deserializer",
    "Float32",
    "Int",
    "InvalidUtf8Error",
    "Kind",
    "KindParseError",
    "Long",
    "MalformedOffsetsError",
    "MismatchedColumnKindError",
    "NullEncounteredError",
    "OrcRowsError",
    "OwnedColumnBatch",
    "ParallelRowIterator",
    "ReadProfile",
    "Reader",
    "ReaderState",
    "ReaderStateError",
    "ResourceNotConcurrentSafeError",
    "RowIterator",
    "RowReader",
    "RowReaderOptions",
    "RowSchema",
    "SchemaMismatch",
    "SchemaMismatchError",
    "Short",
    "StaleBatchError",
    "StripeInformation",
    "Timestamp",
    "TimestampNanos",
    "UnderlyingIoError",
    "UnionValue",
    "UnsupportedKindError",
    "ValueOutOfRangeError",
    "bind_decoder",
    "dynamic_decoder",
    "kind_from_arrow",
    "parse_kind",
    "render_kind",
    "resolve_read_profile",
    "row_columns",
]

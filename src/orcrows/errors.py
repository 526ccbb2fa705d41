"""Error types for typed row deserialization."""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple


class OrcRowsError(Exception):
    """Base class for orcrows errors."""


class KindParseError(OrcRowsError, ValueError):
    """Raised when a kind type string cannot be parsed."""


class SchemaMismatch(NamedTuple):
    """A single structural mismatch between a target field and a column."""

    path: str
    expected: str
    found: str

    def describe(self) -> str:
        """Return a human-readable description of the mismatch.

        Returns
        -------
        str
            Description naming the field path and both kinds.
        """
        if self.found == "missing":
            return f"Field {self.path} is missing (expected {self.expected})"
        return f"Field {self.path} must be decoded from {self.expected}, not {self.found}"


class SchemaMismatchError(OrcRowsError, ValueError):
    """Raised when a target row type does not match the selected kind."""

    def __init__(self, target: str, mismatches: Sequence[SchemaMismatch]) -> None:
        if not mismatches:
            msg = "SchemaMismatchError requires at least one mismatch."
            raise ValueError(msg)
        self.target = target
        self.mismatches = tuple(mismatches)
        lines = "\n\t".join(item.describe() for item in self.mismatches)
        super().__init__(f"{target} cannot be decoded:\n\t{lines}")

    @property
    def path(self) -> str:
        return self.mismatches[0].path

    @property
    def expected(self) -> str:
        return self.mismatches[0].expected

    @property
    def found(self) -> str:
        return self.mismatches[0].found


class UnsupportedKindError(OrcRowsError, TypeError):
    """Raised when a target type cannot be paired with any column kind."""

    def __init__(self, kind: str | None, target: str) -> None:
        self.kind = kind
        self.target = target
        if kind is None:
            super().__init__(f"Unsupported target type {target}")
        else:
            super().__init__(f"Unsupported target type {target} for kind {kind}")


class MismatchedColumnKindError(OrcRowsError, TypeError):
    """Raised when a column batch is viewed as the wrong kind category."""


class DeserializationError(OrcRowsError, ValueError):
    """Base class for errors raised while decoding a batch."""


class NullEncounteredError(DeserializationError):
    """Raised when a non-optional field holds a null value."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Null value encountered for non-optional field {path}")


class MalformedOffsetsError(DeserializationError):
    """Raised when an offsets buffer describes a negative-length range."""

    def __init__(self, path: str, row: int, start: int, end: int) -> None:
        self.path = path
        self.row = row
        self.start = start
        self.end = end
        super().__init__(f"Malformed offsets for {path} at row {row}: start {start} > end {end}")


class ValueOutOfRangeError(DeserializationError):
    """Raised when a stored value has no Python representation, such as a far date."""

    def __init__(self, path: str, value: object, target: str) -> None:
        self.path = path
        self.value = value
        super().__init__(f"Value {value!r} in {path or '<root>'} is out of range for {target}")


class DuplicateMapKeyError(DeserializationError):
    """Raised when one map row holds the same key more than once."""

    def __init__(self, path: str, key: object) -> None:
        self.path = path
        self.key = key
        super().__init__(f"Duplicate key {key!r} in map {path or '<root>'}")


class DecimalScaleOverflowError(DeserializationError):
    """Raised when a decimal cannot be rescaled without losing digits."""


class InvalidUtf8Error(DeserializationError):
    """Raised when a string column holds bytes that are not valid UTF-8."""


class UnderlyingIoError(OrcRowsError, OSError):
    """Wraps an error raised by the storage engine."""


class ResourceNotConcurrentSafeError(OrcRowsError, RuntimeError):
    """Raised when parallel reads need independent cursors the source lacks."""


class ReaderStateError(OrcRowsError, RuntimeError):
    """Raised when a row reader operation is invalid in its current state."""


class StaleBatchError(ReaderStateError):
    """Raised when a borrowed batch view is used after its batch was refilled."""


__all__ = [
    "DecimalScaleOverflowError",
    "DeserializationError",
    "DuplicateMapKeyError",
    "InvalidUtf8Error",
    "KindParseError",
    "MalformedOffsetsError",
    "MismatchedColumnKindError",
    "NullEncounteredError",
    "OrcRowsError",
    "ReaderStateError",
    "ResourceNotConcurrentSafeError",
    "SchemaMismatch",
    "SchemaMismatchError",
    "StaleBatchError",
    "UnderlyingIoError",
    "UnsupportedKindError",
    "ValueOutOfRangeError",
]

"""Value types and annotation hints for target row types."""

from __future__ import annotations

import decimal
from typing import Annotated

import msgspec

from orcrows.kind import (
    ByteKind,
    FloatKind,
    IntKind,
    LongKind,
    ShortKind,
    TimestampKind,
)


class Timestamp(msgspec.Struct, frozen=True, order=True):
    """Lossless timestamp: seconds since the epoch plus a nanosecond offset.

    ``nanoseconds`` is always in ``[0, 1_000_000_000)``; instants before the
    epoch have negative ``seconds``.
    """

    seconds: int
    nanoseconds: int = 0

    def total_nanoseconds(self) -> int:
        """Return the instant as a single integer number of nanoseconds.

        Returns
        -------
        int
            Nanoseconds since the epoch.
        """
        return self.seconds * 1_000_000_000 + self.nanoseconds


class UnionValue(msgspec.Struct, frozen=True):
    """A union row: the variant index selected by the row and its value."""

    tag: int
    value: object = None


class KindHint(msgspec.Struct, frozen=True):
    """Annotation marker pinning a Python type to one column kind."""

    kind: type
    representation: str | None = None


class DecimalScale(msgspec.Struct, frozen=True):
    """Annotation marker requesting decimals rescaled to a fixed scale."""

    scale: int


Byte = Annotated[int, KindHint(ByteKind)]
Short = Annotated[int, KindHint(ShortKind)]
Int = Annotated[int, KindHint(IntKind)]
Long = Annotated[int, KindHint(LongKind)]
Float32 = Annotated[float, KindHint(FloatKind)]
TimestampNanos = Annotated[int, KindHint(TimestampKind, representation="nanos")]
Decimal = decimal.Decimal


__all__ = [
    "Byte",
    "Decimal",
    "DecimalScale",
    "Float32",
    "Int",
    "KindHint",
    "Long",
    "Short",
    "Timestamp",
    "TimestampNanos",
    "UnionValue",
]

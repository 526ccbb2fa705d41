"""Read profiles and environment overrides."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

_LOGGER = logging.getLogger(__name__)

PROFILE_ENV = "ORCROWS_READ_PROFILE"
BATCH_SIZE_ENV = "ORCROWS_BATCH_SIZE"
MAX_WORKERS_ENV = "ORCROWS_MAX_WORKERS"
CHUNK_BATCHES_ENV = "ORCROWS_CHUNK_BATCHES"
SEQUENTIAL_FALLBACK_ENV = "ORCROWS_SEQUENTIAL_FALLBACK"

_TRUE_VALUES = frozenset({"1", "true", "yes", "y"})
_FALSE_VALUES = frozenset({"0", "false", "no", "n"})


@dataclass(frozen=True)
class ReadProfile:
    """Batch sizing and parallelism policy for row iteration.

    ``max_workers`` of ``None`` sizes the worker pool from the CPU count.
    """

    name: str
    batch_size: int = 1024
    max_workers: int | None = None
    chunk_batches: int = 4
    sequential_fallback: bool = False

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            msg = f"batch_size must be positive, got {self.batch_size}."
            raise ValueError(msg)
        if self.chunk_batches <= 0:
            msg = f"chunk_batches must be positive, got {self.chunk_batches}."
            raise ValueError(msg)
        if self.max_workers is not None and self.max_workers <= 0:
            msg = f"max_workers must be positive, got {self.max_workers}."
            raise ValueError(msg)

    def resolved_max_workers(self) -> int:
        """Return the effective worker count.

        Returns
        -------
        int
            Configured worker count, or the CPU count when unset.
        """
        if self.max_workers is not None:
            return self.max_workers
        return max(1, os.cpu_count() or 1)


# --------------------------
# Default policy registry
# --------------------------

DEFAULT_READ_PROFILES: Mapping[str, ReadProfile] = {
    # Balanced defaults for interactive use.
    "DEFAULT": ReadProfile(name="DEFAULT"),
    # Debugging: one worker, small batches.
    "DETERMINISTIC": ReadProfile(
        name="DETERMINISTIC",
        batch_size=256,
        max_workers=1,
        chunk_batches=1,
    ),
    # Bulk scans.
    "THROUGHPUT": ReadProfile(
        name="THROUGHPUT",
        batch_size=16_384,
        chunk_batches=8,
        sequential_fallback=True,
    ),
}


def _env_value(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    stripped = raw.strip()
    return stripped or None


def _env_positive_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        _LOGGER.warning("Invalid integer for %s: %r", name, raw)
        return None
    if value <= 0:
        _LOGGER.warning("Non-positive integer for %s: %r", name, raw)
        return None
    return value


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    _LOGGER.warning("Invalid boolean for %s: %r", name, raw)
    return None


def resolve_read_profile(name: str | None = None) -> ReadProfile:
    """Resolve a read profile by name, then apply environment overrides.

    Parameters
    ----------
    name
        Profile name; defaults to ``ORCROWS_READ_PROFILE`` or ``DEFAULT``.

    Returns
    -------
    ReadProfile
        Resolved profile.

    Raises
    ------
    KeyError
        Raised when the profile name is unknown.
    """
    profile_name = name or _env_value(PROFILE_ENV) or "DEFAULT"
    profile = DEFAULT_READ_PROFILES.get(profile_name.upper())
    if profile is None:
        msg = f"Unknown read profile {profile_name!r}."
        raise KeyError(msg)
    overrides: dict[str, object] = {}
    batch_size = _env_positive_int(BATCH_SIZE_ENV)
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    max_workers = _env_positive_int(MAX_WORKERS_ENV)
    if max_workers is not None:
        overrides["max_workers"] = max_workers
    chunk_batches = _env_positive_int(CHUNK_BATCHES_ENV)
    if chunk_batches is not None:
        overrides["chunk_batches"] = chunk_batches
    fallback = _env_bool(SEQUENTIAL_FALLBACK_ENV)
    if fallback is not None:
        overrides["sequential_fallback"] = fallback
    if overrides:
        _LOGGER.debug("Read profile %s overridden from environment: %s", profile.name, overrides)
        profile = replace(profile, **overrides)
    return profile


__all__ = [
    "BATCH_SIZE_ENV",
    "CHUNK_BATCHES_ENV",
    "DEFAULT_READ_PROFILES",
    "MAX_WORKERS_ENV",
    "PROFILE_ENV",
    "SEQUENTIAL_FALLBACK_ENV",
    "ReadProfile",
    "resolve_read_profile",
]

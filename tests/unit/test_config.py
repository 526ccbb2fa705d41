"""Tests for read profiles and environment overrides."""

from __future__ import annotations

import logging

import pytest

from orcrows.config import (
    BATCH_SIZE_ENV,
    CHUNK_BATCHES_ENV,
    DEFAULT_READ_PROFILES,
    MAX_WORKERS_ENV,
    PROFILE_ENV,
    SEQUENTIAL_FALLBACK_ENV,
    ReadProfile,
    resolve_read_profile,
)


def test_default_profile() -> None:
    """Ensure the default profile is resolved without environment input."""
    profile = resolve_read_profile()
    assert profile == DEFAULT_READ_PROFILES["DEFAULT"]
    assert profile.batch_size == 1024
    assert not profile.sequential_fallback


def test_profile_lookup_is_case_insensitive() -> None:
    """Ensure profile names are matched case-insensitively."""
    assert resolve_read_profile("deterministic").max_workers == 1
    assert resolve_read_profile("THROUGHPUT").sequential_fallback


def test_profile_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the profile name can come from the environment."""
    monkeypatch.setenv(PROFILE_ENV, "throughput")
    assert resolve_read_profile().name == "THROUGHPUT"


def test_unknown_profile_raises() -> None:
    """Ensure unknown profile names raise KeyError."""
    with pytest.raises(KeyError):
        resolve_read_profile("nope")


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure valid environment values override the profile."""
    monkeypatch.setenv(BATCH_SIZE_ENV, "32")
    monkeypatch.setenv(MAX_WORKERS_ENV, "3")
    monkeypatch.setenv(CHUNK_BATCHES_ENV, " 5 ")
    monkeypatch.setenv(SEQUENTIAL_FALLBACK_ENV, "yes")
    profile = resolve_read_profile("DEFAULT")
    assert (profile.batch_size, profile.max_workers, profile.chunk_batches) == (32, 3, 5)
    assert profile.sequential_fallback
    assert profile.name == "DEFAULT"


@pytest.mark.parametrize(
    ("env_name", "raw"),
    [
        (BATCH_SIZE_ENV, "many"),
        (BATCH_SIZE_ENV, "0"),
        (MAX_WORKERS_ENV, "-2"),
        (SEQUENTIAL_FALLBACK_ENV, "maybe"),
    ],
)
def test_invalid_environment_values_are_ignored(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
    env_name: str,
    raw: str,
) -> None:
    """Ensure invalid overrides are logged and ignored."""
    monkeypatch.setenv(env_name, raw)
    with caplog.at_level(logging.WARNING, logger="orcrows.config"):
        profile = resolve_read_profile()
    assert profile == DEFAULT_READ_PROFILES["DEFAULT"]
    assert env_name in caplog.text


def test_profile_validation() -> None:
    """Ensure non-positive sizes are rejected."""
    with pytest.raises(ValueError, match="batch_size"):
        ReadProfile(name="bad", batch_size=0)
    with pytest.raises(ValueError, match="max_workers"):
        ReadProfile(name="bad", max_workers=0)
    assert ReadProfile(name="cpu").resolved_max_workers() >= 1

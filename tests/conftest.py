"""Pytest diagnostics and shared fixtures."""

from __future__ import annotations

import contextlib
import faulthandler
import json
import os
import platform
import sys
from importlib import metadata
from pathlib import Path
from typing import Any

import pyarrow as pa
import pytest

from orcrows.reader import Reader
from tests.test_helpers.orc_seed import NESTED_TABLE_ROWS, nested_table

_DIAG_DIR = Path("build/test-results")
_ENV_PATH = _DIAG_DIR / "diagnostics_env.json"
_VERSIONS_PATH = _DIAG_DIR / "diagnostics_versions.json"
_TRACE_PATH = _DIAG_DIR / "diagnostics_tracebacks.log"

_STATE: dict[str, Any] = {"faulthandler_file": None}


def _collect_env() -> dict[str, Any]:
    return {
        "python": sys.version,
        "platform": platform.platform(),
        "env": {key: value for key, value in os.environ.items() if key.startswith(("ARROW", "ORCROWS"))},
        "pyarrow_version": pa.__version__,
    }


def _collect_versions() -> dict[str, str]:
    versions: dict[str, str] = {}
    for name in ("pyarrow", "msgspec", "numpy", "opentelemetry-api", "pytest"):
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            continue
    return versions


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    try:
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    except OSError:
        return


def pytest_sessionstart(session: object) -> None:
    """Initialize diagnostic capture for the pytest session."""
    with contextlib.suppress(OSError):
        _DIAG_DIR.mkdir(parents=True, exist_ok=True)
    _write_json(_ENV_PATH, _collect_env())
    _write_json(_VERSIONS_PATH, _collect_versions())
    try:
        _STATE["faulthandler_file"] = _TRACE_PATH.open("a", encoding="utf-8")
    except OSError:
        _STATE["faulthandler_file"] = None
    else:
        faulthandler.enable(_STATE["faulthandler_file"], all_threads=True)
    _ = session


def pytest_sessionfinish(session: object, exitstatus: int) -> None:
    """Close diagnostic capture at pytest session completion."""
    stream = _STATE.get("faulthandler_file")
    if stream is not None:
        with contextlib.suppress(RuntimeError):
            faulthandler.disable()
        with contextlib.suppress(OSError):
            stream.close()
        _STATE["faulthandler_file"] = None
    _ = (session, exitstatus)


@pytest.fixture(autouse=True)
def _clear_orcrows_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("ORCROWS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def nested_reader() -> Reader:
    """Return a reader over the nested sample table split into small stripes.

    Returns
    -------
    Reader
        In-memory reader with ``NESTED_TABLE_ROWS`` rows.
    """
    return Reader.from_table(nested_table(), stripe_rows=7)


@pytest.fixture
def nested_row_count() -> int:
    return NESTED_TABLE_ROWS

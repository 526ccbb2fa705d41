"""Tracing helpers for orcrows instrumentation."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError, version

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.util.types import AttributeValue

SCOPE_ORCROWS = "orcrows"


def _instrumentation_version() -> str:
    try:
        return version("orcrows")
    except PackageNotFoundError:
        return "unknown"


_INSTRUMENTATION_VERSION = _instrumentation_version()


def get_tracer(scope_name: str = SCOPE_ORCROWS) -> trace.Tracer:
    """Return a tracer for the given instrumentation scope.

    Parameters
    ----------
    scope_name
        Instrumentation scope name.

    Returns
    -------
    opentelemetry.trace.Tracer
        Tracer bound to the requested scope.
    """
    return trace.get_tracer(scope_name, instrumenting_library_version=_INSTRUMENTATION_VERSION)


def _normalize_attributes(attrs: Mapping[str, object] | None) -> dict[str, AttributeValue]:
    normalized: dict[str, AttributeValue] = {}
    for key, value in (attrs or {}).items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            normalized[f"orcrows.{key}"] = value
        else:
            normalized[f"orcrows.{key}"] = str(value)
    return normalized


def record_exception(span: Span, exc: Exception) -> None:
    """Record an exception on a span and mark it as error."""
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR))


@contextmanager
def read_span(
    name: str,
    *,
    attributes: Mapping[str, object] | None = None,
    scope_name: str = SCOPE_ORCROWS,
) -> Iterator[Span]:
    """Start a span around one read stage.

    Spans are no-ops unless an OpenTelemetry SDK is configured by the caller.

    Yields
    ------
    Span
        The started span.
    """
    tracer = get_tracer(scope_name)
    with tracer.start_as_current_span(
        name,
        attributes=_normalize_attributes(attributes),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            record_exception(span, exc)
            raise


__all__ = ["SCOPE_ORCROWS", "get_tracer", "read_span", "record_exception"]

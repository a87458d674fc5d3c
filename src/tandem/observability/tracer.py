"""
Tracing seam for tandem components.

Every engine, ledger, repository and job takes an optional ``tracer`` and
an ``enable_tracing`` flag and wraps its operations in ``tracer.span``.
Production code gets an :class:`OpenTelemetryTracer`; tests inject a
:class:`MockTracer` and assert on the span names a migration produced.

Example:
    >>> tracer = create_tracer(__name__)
    >>> with tracer.span("tandem.engine.rollback", {ATTR_COMMUNITY_ID: "123"}):
    ...     ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span


@runtime_checkable
class Tracer(Protocol):
    """What a component needs from a tracer: spans, and whether they are real."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span around a block.

        The context manager yields the live span, or None when nothing is
        recorded, so callers guard ``span.set_attribute`` with a None check.
        """
        ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Used when a component is built with ``enable_tracing=False``."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Spans through the OpenTelemetry API.

    Export is left to the host application's TracerProvider; until one is
    installed the spans are non-recording and cost next to nothing.
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records ``(name, attributes)`` for every span opened.

    One instance is shared by the whole test harness, so a test can check
    that a rollback took the community lock before touching state.
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetry spans named after ``name``, or a NullTracer when disabled."""
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]

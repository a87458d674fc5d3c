"""
OpenTelemetry metrics for coexistence operations.

Example:
    >>> from tandem.metrics import CoexistenceMetrics
    >>>
    >>> metrics = CoexistenceMetrics()
    >>> metrics.record_shadow_sync("123", duration_ms=840.0, accuracy=97.5, new_divergences=2)
    >>> metrics.record_grant_mutation("123", "add", success=True)
    >>> metrics.record_transition("123", "shadow", "parallel")

Metrics Exposed:
    - tandem.shadow.sync.duration (Histogram): Duration of complete shadow passes
    - tandem.shadow.divergences (Counter): Divergences appended by shadow passes
    - tandem.shadow.accuracy (Gauge): Accuracy of the last complete pass per community
    - tandem.grants.mutations (Counter): Namespaced grant add/remove calls
    - tandem.mode.transitions (Counter): Mode transitions
    - tandem.rollbacks (Counter): Rollbacks, labelled by trigger

All metrics carry the ``community_id`` attribute. With
``enable_metrics=False`` every instrument is a no-op; the snapshot is
still maintained for tests.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import CallbackOptions, Observation

_meter: Any = None


def _get_meter() -> Any:
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("tandem", version="1.0.0")
    return _meter


def reset_meter() -> None:
    """Reset the module meter so tests pick up a fresh MeterProvider."""
    global _meter
    _meter = None


class NoOpCounter:
    def add(self, amount: int | float, attributes: dict[str, Any] | None = None) -> None:
        pass


class NoOpHistogram:
    def record(self, value: float, attributes: dict[str, Any] | None = None) -> None:
        pass


@dataclass(frozen=True)
class CoexistenceMetricSnapshot:
    """
    Values recorded so far, for tests and debugging.

    Attributes:
        shadow_syncs: Complete shadow passes recorded
        divergences: Divergences appended
        accuracy: Last accuracy per community
        grant_mutations: Successful grant mutations
        grant_failures: Failed grant mutations
        transitions: Mode transitions as "old->new" strings
        rollbacks: Rollbacks per trigger
    """

    shadow_syncs: int = 0
    divergences: int = 0
    accuracy: dict[str, float] = field(default_factory=dict)
    grant_mutations: int = 0
    grant_failures: int = 0
    transitions: list[str] = field(default_factory=list)
    rollbacks: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "shadow_syncs": self.shadow_syncs,
            "divergences": self.divergences,
            "accuracy": dict(self.accuracy),
            "grant_mutations": self.grant_mutations,
            "grant_failures": self.grant_failures,
            "transitions": list(self.transitions),
            "rollbacks": dict(self.rollbacks),
        }


@dataclass
class CoexistenceMetrics:
    """
    Container for coexistence metric instruments.

    One instance is shared by every component of a deployment.

    Attributes:
        enable_metrics: Whether OpenTelemetry instruments are created
    """

    enable_metrics: bool = True

    _sync_duration_histogram: Any = field(default=None, init=False, repr=False)
    _divergence_counter: Any = field(default=None, init=False, repr=False)
    _grant_mutation_counter: Any = field(default=None, init=False, repr=False)
    _transition_counter: Any = field(default=None, init=False, repr=False)
    _rollback_counter: Any = field(default=None, init=False, repr=False)

    _shadow_syncs: int = field(default=0, init=False, repr=False)
    _divergences: int = field(default=0, init=False, repr=False)
    _accuracy: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _grant_mutations: int = field(default=0, init=False, repr=False)
    _grant_failures: int = field(default=0, init=False, repr=False)
    _transitions: list[str] = field(default_factory=list, init=False, repr=False)
    _rollbacks: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.enable_metrics:
            self._setup_metrics()
        else:
            self._setup_noop()

    def _setup_metrics(self) -> None:
        meter = _get_meter()

        self._sync_duration_histogram = meter.create_histogram(
            name="tandem.shadow.sync.duration",
            unit="ms",
            description="Duration of complete shadow ledger passes in milliseconds",
        )
        self._divergence_counter = meter.create_counter(
            name="tandem.shadow.divergences",
            unit="divergences",
            description="Divergences appended by shadow ledger passes",
        )
        meter.create_observable_gauge(
            name="tandem.shadow.accuracy",
            callbacks=[self._observe_accuracy],
            unit="%",
            description="Shadow accuracy of the last complete pass",
        )
        self._grant_mutation_counter = meter.create_counter(
            name="tandem.grants.mutations",
            unit="operations",
            description="Namespaced grant add/remove operations",
        )
        self._transition_counter = meter.create_counter(
            name="tandem.mode.transitions",
            unit="transitions",
            description="Coexistence mode transitions",
        )
        self._rollback_counter = meter.create_counter(
            name="tandem.rollbacks",
            unit="rollbacks",
            description="Rollbacks performed, by trigger",
        )

    def _setup_noop(self) -> None:
        self._sync_duration_histogram = NoOpHistogram()
        self._divergence_counter = NoOpCounter()
        self._grant_mutation_counter = NoOpCounter()
        self._transition_counter = NoOpCounter()
        self._rollback_counter = NoOpCounter()

    def _observe_accuracy(self, options: CallbackOptions) -> Iterable[Observation]:
        for community_id, accuracy in list(self._accuracy.items()):
            yield Observation(value=accuracy, attributes={"community_id": community_id})

    def record_shadow_sync(
        self,
        community_id: str,
        *,
        duration_ms: float,
        accuracy: float,
        new_divergences: int,
    ) -> None:
        """Record a complete shadow pass."""
        attrs = {"community_id": community_id}
        self._sync_duration_histogram.record(duration_ms, attrs)
        if new_divergences:
            self._divergence_counter.add(new_divergences, attrs)
        self._accuracy[community_id] = accuracy
        self._shadow_syncs += 1
        self._divergences += new_divergences

    def record_grant_mutation(self, community_id: str, operation: str, *, success: bool) -> None:
        self._grant_mutation_counter.add(
            1,
            {
                "community_id": community_id,
                "operation": operation,
                "outcome": "success" if success else "failure",
            },
        )
        if success:
            self._grant_mutations += 1
        else:
            self._grant_failures += 1

    def record_transition(self, community_id: str, old_mode: str, new_mode: str) -> None:
        self._transition_counter.add(
            1,
            {"community_id": community_id, "from_mode": old_mode, "to_mode": new_mode},
        )
        self._transitions.append(f"{old_mode}->{new_mode}")

    def record_rollback(self, community_id: str, trigger: str) -> None:
        self._rollback_counter.add(1, {"community_id": community_id, "trigger": trigger})
        self._rollbacks[trigger] = self._rollbacks.get(trigger, 0) + 1

    def get_snapshot(self) -> CoexistenceMetricSnapshot:
        return CoexistenceMetricSnapshot(
            shadow_syncs=self._shadow_syncs,
            divergences=self._divergences,
            accuracy=dict(self._accuracy),
            grant_mutations=self._grant_mutations,
            grant_failures=self._grant_failures,
            transitions=list(self._transitions),
            rollbacks=dict(self._rollbacks),
        )


__all__ = [
    "CoexistenceMetrics",
    "CoexistenceMetricSnapshot",
    "NoOpCounter",
    "NoOpHistogram",
    "reset_meter",
]

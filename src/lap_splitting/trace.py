"""CellTrace — why one cost-matrix cell holds its value.

The builder only keeps the outcome code and the cost of each cell.
When a cell needs explaining, :func:`explain_cell` re-runs the pair and
records every intermediate value: time gap, squared distance, the
feature ratios checked and which of them (if any) blocked the pair.

Usage
-----
>>> matrix = SplittingCostFunction(settings).get_tagged_matrix(segs, mids)
>>> trace = matrix.explain(0, 2)
>>> trace.outcome                 # GateOutcome.BLOCKED_FEATURE
>>> trace.blocking_feature        # "MEAN_INTENSITY"
>>> trace.summary()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .cost import apply_feature_penalties
from .gates import GateOutcome, evaluate_gate
from .settings import SplittingSettings
from .spot import Spot, TrackSegment

__all__ = [
    "CellTrace",
    "explain_cell",
]


@dataclass(frozen=True)
class CellTrace:
    """Audit record for one (middle spot, track segment) pair.

    ``ratios`` lists the features in the order they were checked; a
    blocked pair stops at its blocking feature.
    """

    middle: str
    segment: str
    outcome: GateOutcome
    time_gap: Optional[float] = None
    d2: Optional[float] = None
    ratios: Dict[str, float] = field(default_factory=dict)
    blocking_feature: Optional[str] = None
    cost: Optional[float] = None

    @property
    def blocked(self) -> bool:
        return self.outcome.blocked

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-safe dict."""
        return {
            "middle": self.middle,
            "segment": self.segment,
            "outcome": self.outcome.name,
            "time_gap": self.time_gap,
            "d2": self.d2,
            "ratios": {k: round(v, 6) for k, v in self.ratios.items()},
            "blocking_feature": self.blocking_feature,
            "cost": self.cost,
        }

    def summary(self) -> str:
        """One-line human-readable description."""
        head = f"{self.middle} -> {self.segment}: "
        if self.outcome is GateOutcome.PASS:
            return head + f"cost={self.cost:.4g} (d2={self.d2:.4g})"
        if self.outcome is GateOutcome.BLOCKED_FEATURE:
            r = self.ratios[self.blocking_feature]
            return head + f"blocked by {self.blocking_feature} (ratio={r:.4g})"
        if self.outcome is GateOutcome.BLOCKED_TIME:
            return head + f"blocked by time gap {self.time_gap:.4g}"
        if self.outcome is GateOutcome.BLOCKED_DISTANCE:
            return head + f"blocked by distance (d2={self.d2:.4g})"
        return head + self.outcome.name.lower()


def explain_cell(
    middle: Spot,
    segment: TrackSegment,
    settings: SplittingSettings,
) -> CellTrace:
    """Evaluate one pair step by step and return its trace."""
    names = dict(middle=middle.name, segment=segment.name)
    if not settings.allow_splitting:
        return CellTrace(outcome=GateOutcome.BLOCKED_DISABLED, **names)

    gate = evaluate_gate(middle, segment, settings)
    if gate.outcome.blocked:
        return CellTrace(
            outcome=gate.outcome, time_gap=gate.time_gap, d2=gate.d2, **names)

    ratios: Dict[str, float] = {}
    cell = apply_feature_penalties(
        segment.start, middle, gate.d2, settings, ratios=ratios)
    return CellTrace(
        outcome=cell.outcome,
        time_gap=gate.time_gap,
        d2=gate.d2,
        ratios=ratios,
        blocking_feature=cell.blocking_feature,
        cost=None if cell.blocked else cell.cost,
        **names,
    )

"""Cost formula evaluator.

For a pair that passes the gates the cost is::

    c = d² · Π_f (1 + r_f)

where ``r_f`` is the normalised absolute difference of feature *f*
between the segment start and the middle spot.  Any ``r_f`` above its
cutoff blocks the pair outright; a ratio *equal* to the cutoff passes.

Distance is squared on purpose — no square root, same ranking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional

from .gates import GateOutcome, GateResult, evaluate_gate
from .settings import SplittingSettings
from .spot import Spot, TrackSegment, normalized_abs_difference

__all__ = [
    "CellResult",
    "BLOCKED",
    "apply_feature_penalties",
    "evaluate_cost",
]


@dataclass(frozen=True)
class CellResult:
    """Tagged value of one cost-matrix cell: blocked, or a finite cost."""

    outcome: GateOutcome
    cost: float = math.inf
    blocking_feature: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.outcome.blocked

    def value(self, blocked_value: float) -> float:
        """Numeric cell value, with *blocked_value* as the sentinel."""
        return blocked_value if self.blocked else self.cost


BLOCKED = {
    outcome: CellResult(outcome)
    for outcome in GateOutcome if outcome.blocked
}
"""Shared blocked results, one per outcome."""


def apply_feature_penalties(
    start: Spot,
    middle: Spot,
    d2: float,
    settings: SplittingSettings,
    ratios: Optional[Dict[str, float]] = None,
) -> CellResult:
    """Multiply *d2* by ``1 + ratio`` for every configured feature.

    Stops at the first feature whose ratio exceeds its cutoff.  When
    *ratios* is given, every ratio computed is recorded in it.
    """
    cost = d2
    for feature, max_ratio in settings.feature_cutoffs.items():
        ratio = normalized_abs_difference(start, middle, feature)
        if ratios is not None:
            ratios[feature] = ratio
        if math.isnan(ratio):
            raise ValueError(
                f"NaN {feature} ratio between {middle.name} and {start.name}")
        if ratio > max_ratio:
            return CellResult(
                GateOutcome.BLOCKED_FEATURE, blocking_feature=feature)
        cost *= 1.0 + ratio
    return CellResult(GateOutcome.PASS, cost=cost)


def evaluate_cost(
    middle: Spot,
    segment: TrackSegment,
    settings: SplittingSettings,
    gate: Optional[GateResult] = None,
) -> CellResult:
    """Gate one pair and, if it passes, compute its cost."""
    if gate is None:
        gate = evaluate_gate(middle, segment, settings)
    if gate.outcome.blocked:
        return BLOCKED[gate.outcome]
    return apply_feature_penalties(segment.start, middle, gate.d2, settings)

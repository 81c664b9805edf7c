"""Gate evaluator — the three threshold tests applied to every pair.

A middle spot *m* and a track segment *t* (start spot *s*) go through,
in this order:

1. **same spot** — *m* must not belong to *t*.
2. **time** — ``0 < t_s - t_m <= time_cutoff``.  A zero gap is blocked.
3. **distance** — ``|s - m|² <= max_dist²``.

The first failing test decides the outcome; later tests are not run.
"""

from __future__ import annotations

import enum
import math
from typing import NamedTuple, Optional

from .settings import SplittingSettings
from .spot import POSITION_T, Spot, TrackSegment, feature_value, squared_distance

__all__ = [
    "GateOutcome",
    "GateResult",
    "evaluate_gate",
]


class GateOutcome(enum.IntEnum):
    """Why a cell holds the value it holds.

    ``BLOCKED_FEATURE`` is set by the cost evaluator, never by the gates.
    """

    PASS = 0
    BLOCKED_SAME_SPOT = 1
    BLOCKED_TIME = 2
    BLOCKED_DISTANCE = 3
    BLOCKED_FEATURE = 4
    BLOCKED_DISABLED = 5

    @property
    def blocked(self) -> bool:
        return self is not GateOutcome.PASS


class GateResult(NamedTuple):
    """Outcome of the gates for one pair.

    ``time_gap`` and ``d2`` are None for gates that were not reached.
    """

    outcome: GateOutcome
    time_gap: Optional[float] = None
    d2: Optional[float] = None


def evaluate_gate(
    middle: Spot,
    segment: TrackSegment,
    settings: SplittingSettings,
) -> GateResult:
    """Run the gates for one (middle spot, track segment) pair.

    Returns
    -------
    GateResult
        The outcome, plus the time gap and squared distance when they
        were computed.

    Raises
    ------
    ValueError
        If the segment is empty, a time value is NaN, infinite or
        negative, or the distance is NaN or negative.
    KeyError
        If a spot has no ``POSITION_T``.
    """
    start = segment.start

    if middle in segment:
        return GateResult(GateOutcome.BLOCKED_SAME_SPOT)

    t_start = _checked_time(start)
    t_middle = _checked_time(middle)
    gap = t_start - t_middle
    if gap > settings.time_cutoff or gap <= 0:
        return GateResult(GateOutcome.BLOCKED_TIME, time_gap=gap)

    d2 = squared_distance(start, middle)
    if math.isnan(d2) or d2 < 0:
        raise ValueError(
            f"Invalid squared distance {d2} between {middle.name} "
            f"and segment start {start.name}"
        )
    if d2 > settings.max_dist_sq:
        return GateResult(GateOutcome.BLOCKED_DISTANCE, time_gap=gap, d2=d2)

    return GateResult(GateOutcome.PASS, time_gap=gap, d2=d2)


def _checked_time(spot: Spot) -> float:
    t = feature_value(spot, POSITION_T)
    if not math.isfinite(t) or t < 0:
        raise ValueError(
            f"Invalid {POSITION_T} {t} for spot {spot.name}; "
            f"times must be finite (not NaN or inf) and >= 0"
        )
    return t

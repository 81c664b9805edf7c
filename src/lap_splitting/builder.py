"""Splitting cost matrix builder.

Rows are candidate middle spots, columns are track segments.  Cell
``(i, j)`` holds the cost of splitting segment *j* off middle spot *i*,
or the blocking value when the pair is forbidden::

    cost = d² · Π_f (1 + r_f)        if all gates pass
    cost = blocked                    otherwise

Rows are handed out dynamically: every worker thread claims the next
free row from a shared counter until none are left, fills the whole
row, and claims again.  Workers write disjoint rows of the same numpy
array; no lock protects the matrix.  The call returns only after every
worker has finished.

Two views of the result:

* :meth:`SplittingCostFunction.get_cost_matrix` — plain ``float64``
  matrix with the sentinel already substituted, ready for the LAP
  solver.
* :meth:`SplittingCostFunction.get_tagged_matrix` — a
  :class:`SplitCostMatrix` keeping *blocked* and *cost* apart; the
  sentinel is only applied by :meth:`SplitCostMatrix.to_numeric`.

Usage
-----
>>> from lap_splitting import build, SplittingSettings
>>> settings = SplittingSettings(max_dist=5.0, time_cutoff=2.0)
>>> m = build(track_segments, middle_spots, settings)
>>> m.shape                       # (len(middle_spots), len(track_segments))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .cost import evaluate_cost
from .gates import GateOutcome
from .settings import DEFAULT_SETTINGS, SplittingSettings
from .spot import POSITION_T, Spot, TrackSegment
from .trace import CellTrace, explain_cell
from .workers import AbortFlag, RowCounter, resolve_worker_count, run_and_join

__all__ = [
    "SplitCostMatrix",
    "SplittingCostFunction",
    "build",
]

logger = logging.getLogger(__name__)

UNSET: int = -1
"""Outcome code of a cell no worker has written yet."""

SegmentLike = Union[TrackSegment, Iterable[Spot]]


# ═══════════════════════════════════════════════════════════════════
# SplitCostMatrix — tagged result
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SplitCostMatrix:
    """Cost matrix keeping blocked cells apart from expensive ones.

    Attributes
    ----------
    costs : np.ndarray
        ``(n_middle, n_segments)`` float64; ``inf`` where blocked.
    outcomes : np.ndarray
        Same shape, int8 :class:`GateOutcome` codes.
    track_segments, middle_spots : tuple
        The inputs, for :meth:`explain`.
    settings : SplittingSettings
    """

    costs: np.ndarray
    outcomes: np.ndarray
    track_segments: Tuple[TrackSegment, ...]
    middle_spots: Tuple[Spot, ...]
    settings: SplittingSettings

    @property
    def shape(self) -> Tuple[int, int]:
        return self.costs.shape

    @property
    def blocked_mask(self) -> np.ndarray:
        """Boolean matrix, True where the pair is forbidden."""
        return self.outcomes != GateOutcome.PASS

    def to_numeric(self, blocked_value: Optional[float] = None) -> np.ndarray:
        """Return the solver-facing matrix.

        Blocked cells get *blocked_value* (default: the settings' one).
        """
        if blocked_value is None:
            blocked_value = self.settings.blocked_value
        return np.where(self.blocked_mask, blocked_value, self.costs)

    def outcome_counts(self) -> Dict[str, int]:
        """``{outcome name: number of cells}`` for outcomes that occur."""
        codes, counts = np.unique(self.outcomes, return_counts=True)
        return {GateOutcome(int(c)).name: int(n) for c, n in zip(codes, counts)}

    def explain(self, i: int, j: int) -> CellTrace:
        """Trace of cell ``(i, j)``."""
        return explain_cell(
            self.middle_spots[i], self.track_segments[j], self.settings)


# ═══════════════════════════════════════════════════════════════════
# SplittingCostFunction
# ═══════════════════════════════════════════════════════════════════

class SplittingCostFunction:
    """Splitting cost function used by the LAP tracker.

    Thresholds applied, in order, to every (middle spot, segment) pair:

    * the middle spot must not belong to the segment;
    * the segment must start strictly after the middle spot, and at
      most ``time_cutoff`` later;
    * the squared distance must not exceed ``max_dist²``;
    * every feature ratio must be within its cutoff.

    Parameters
    ----------
    settings : SplittingSettings, optional
        Defaults to :data:`~lap_splitting.settings.DEFAULT_SETTINGS`.
    """

    def __init__(self, settings: SplittingSettings = DEFAULT_SETTINGS):
        self.settings = settings

    def __repr__(self) -> str:
        s = self.settings
        return (
            f"SplittingCostFunction(allow={s.allow_splitting}, "
            f"max_dist={s.max_dist}, time_cutoff={s.time_cutoff}, "
            f"features={list(s.feature_cutoffs)})"
        )

    # ── public API ──────────────────────────────────────────────

    def get_cost_matrix(
        self,
        track_segments: Sequence[SegmentLike],
        middle_spots: Sequence[Spot],
    ) -> np.ndarray:
        """Return the ``(n_middle, n_segments)`` numeric cost matrix."""
        if not self.settings.allow_splitting:
            return np.full(
                (len(middle_spots), len(track_segments)),
                self.settings.blocked_value,
                dtype=np.float64,
            )
        return self.get_tagged_matrix(track_segments, middle_spots).to_numeric()

    def get_tagged_matrix(
        self,
        track_segments: Sequence[SegmentLike],
        middle_spots: Sequence[Spot],
    ) -> SplitCostMatrix:
        """Return the cost matrix with blocked cells tagged.

        Raises
        ------
        ValueError
            If a track segment is empty, or a time / distance / feature
            ratio is NaN.
        KeyError
            If a spot lacks ``POSITION_T`` or a feature with a cutoff.
        RuntimeError
            If a cell was left unwritten.
        """
        settings = self.settings
        segments = _as_segments(track_segments)
        middles = tuple(middle_spots)
        shape = (len(middles), len(segments))

        if not settings.allow_splitting:
            return SplitCostMatrix(
                costs=np.full(shape, np.inf),
                outcomes=np.full(
                    shape, GateOutcome.BLOCKED_DISABLED, dtype=np.int8),
                track_segments=segments,
                middle_spots=middles,
                settings=settings,
            )

        for j, seg in enumerate(segments):
            if not seg:
                raise ValueError(
                    f"Track segment {j} ({seg.name!r}) is empty; "
                    f"a segment needs a start spot to be split"
                )

        costs = np.empty(shape, dtype=np.float64)
        outcomes = np.full(shape, UNSET, dtype=np.int8)

        n_workers = resolve_worker_count(
            settings.use_multithreading, settings.n_workers, n_tasks=shape[0])
        counter = RowCounter(shape[0])
        abort = AbortFlag()

        def worker(k: int, n: int) -> int:
            name = f"LAPTracker splitting cost thread {k + 1}/{n}"
            logger.debug(f"{name} started")
            n_rows = 0
            try:
                for i in counter:
                    if abort:
                        break
                    self._fill_row(i, middles[i], segments, costs, outcomes)
                    n_rows += 1
            except Exception:
                abort.set()
                raise
            logger.debug(f"{name} done ({n_rows} rows)")
            return n_rows

        logger.info(
            f"Building {shape[0]}x{shape[1]} splitting cost matrix "
            f"on {n_workers} thread(s)"
        )
        t0 = time.time()
        run_and_join(worker, n_workers)

        if (outcomes == UNSET).any():
            missing = int((outcomes == UNSET).sum())
            raise RuntimeError(
                f"{missing} splitting cost cell(s) left unset after join")

        result = SplitCostMatrix(
            costs=costs,
            outcomes=outcomes,
            track_segments=segments,
            middle_spots=middles,
            settings=settings,
        )
        logger.debug(
            f"Splitting cost matrix done in {time.time() - t0:.3f}s: "
            f"{result.outcome_counts()}"
        )
        return result

    # ── per-row work ────────────────────────────────────────────

    def _fill_row(
        self,
        i: int,
        middle: Spot,
        segments: Sequence[TrackSegment],
        costs: np.ndarray,
        outcomes: np.ndarray,
    ) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            x, y, _ = middle.position()
            logger.debug(
                f"Current middle spot: x={x:.1f}, y={y:.1f}, "
                f"t={middle.get_feature(POSITION_T)}"
            )
        settings = self.settings
        for j, segment in enumerate(segments):
            cell = evaluate_cost(middle, segment, settings)
            costs[i, j] = cell.cost
            outcomes[i, j] = cell.outcome


def _as_segments(track_segments: Sequence[SegmentLike]) -> Tuple[TrackSegment, ...]:
    out: List[TrackSegment] = []
    for j, seg in enumerate(track_segments):
        if not isinstance(seg, TrackSegment):
            seg = TrackSegment(seg, name=f"segment-{j}")
        out.append(seg)
    return tuple(out)


def build(
    track_segments: Sequence[SegmentLike],
    middle_spots: Sequence[Spot],
    settings: SplittingSettings = DEFAULT_SETTINGS,
) -> np.ndarray:
    """Build the numeric splitting cost matrix.

    Shorthand for ``SplittingCostFunction(settings).get_cost_matrix(...)``.
    """
    return SplittingCostFunction(settings).get_cost_matrix(
        track_segments, middle_spots)

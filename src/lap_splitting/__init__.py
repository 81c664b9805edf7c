"""lap-splitting: splitting cost matrix for LAP particle tracking.

Scores every candidate *middle spot* against the start of every track
segment and produces the dense cost matrix a linear-assignment solver
uses to decide which segments split off which spots.  Pairs are gated
on membership, time gap and distance; surviving pairs cost the squared
distance times one ``(1 + ratio)`` penalty per configured feature.
Rows are computed on a thread pool.
"""
from .spot import (
    Spot, TrackSegment,
    squared_distance, feature_value, normalized_abs_difference,
    POSITION_X, POSITION_Y, POSITION_Z, POSITION_T, FRAME,
    RADIUS, QUALITY, MEAN_INTENSITY, MEDIAN_INTENSITY,
    TOTAL_INTENSITY, CONTRAST,
)
from .settings import FeatureCutoffs, SplittingSettings, DEFAULT_SETTINGS
from .gates import GateOutcome, GateResult, evaluate_gate
from .cost import CellResult, apply_feature_penalties, evaluate_cost
from .trace import CellTrace, explain_cell
from .workers import RowCounter, resolve_worker_count, run_and_join
from .builder import SplitCostMatrix, SplittingCostFunction, build

__version__ = "0.1.0"

__all__ = [
    # Inputs
    "Spot", "TrackSegment",
    "squared_distance", "feature_value", "normalized_abs_difference",
    "POSITION_X", "POSITION_Y", "POSITION_Z", "POSITION_T", "FRAME",
    "RADIUS", "QUALITY", "MEAN_INTENSITY", "MEDIAN_INTENSITY",
    "TOTAL_INTENSITY", "CONTRAST",
    # Settings
    "FeatureCutoffs", "SplittingSettings", "DEFAULT_SETTINGS",
    # Gates and cost
    "GateOutcome", "GateResult", "evaluate_gate",
    "CellResult", "apply_feature_penalties", "evaluate_cost",
    # Diagnostics
    "CellTrace", "explain_cell",
    # Worker pool
    "RowCounter", "resolve_worker_count", "run_and_join",
    # Builder
    "SplitCostMatrix", "SplittingCostFunction", "build",
]

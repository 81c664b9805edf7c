"""Tests for the splitting cost matrix builder (lap_splitting.builder).

Covers:
1. Reference scenarios — single pair, time / feature blocks, disabled
2. Matrix-wide properties — membership, lower bound, no unset cells
3. Threading — determinism across worker counts, failure aborts build
4. Tagged matrix — outcomes, sentinel substitution, explain
"""

import logging

import numpy as np
import pytest

from lap_splitting import build
from lap_splitting.builder import SplitCostMatrix, SplittingCostFunction
from lap_splitting.gates import GateOutcome
from lap_splitting.settings import SplittingSettings
from lap_splitting.spot import (
    MEAN_INTENSITY, POSITION_T, POSITION_X, POSITION_Y,
    Spot, TrackSegment, squared_distance,
)

BLOCKED = 1e30


def _spot(x=0.0, y=0.0, t=0.0, **features):
    return Spot({POSITION_X: x, POSITION_Y: y, POSITION_T: t, **features})


def _settings(**kw):
    base = dict(max_dist=5.0, time_cutoff=2.0, blocked_value=BLOCKED,
                use_multithreading=False)
    base.update(kw)
    return SplittingSettings(**base)


def _random_scene(seed=0, n_segments=12, n_middle=40, n_frames=6):
    """Segments of 2–4 spots; middle spots drawn from segments and fresh."""
    rng = np.random.default_rng(seed)
    segments = []
    all_spots = []
    for j in range(n_segments):
        t0 = int(rng.integers(1, n_frames))
        x, y = rng.uniform(0, 20, size=2)
        spots = []
        for k in range(int(rng.integers(2, 5))):
            x, y = x + rng.normal(0, 1), y + rng.normal(0, 1)
            spots.append(_spot(x, y, float(t0 + k),
                               **{MEAN_INTENSITY: float(rng.uniform(50, 150))}))
        segments.append(TrackSegment(spots, name=f"seg{j}"))
        all_spots.extend(spots)
    picks = rng.choice(len(all_spots), size=n_middle // 2, replace=False)
    middles = [all_spots[i] for i in picks]
    for _ in range(n_middle - len(middles)):
        x, y = rng.uniform(0, 20, size=2)
        middles.append(_spot(x, y, float(rng.integers(0, n_frames)),
                             **{MEAN_INTENSITY: float(rng.uniform(50, 150))}))
    return segments, middles


# ═══════════════════════════════════════════════════════════════════
# 1. Reference scenarios
# ═══════════════════════════════════════════════════════════════════

class TestScenarios:

    def test_single_pair_cost_is_squared_distance(self):
        seg = TrackSegment([_spot(3, 0, 5.0)])
        m = build([seg], [_spot(0, 0, 4.0)], _settings())
        assert m.shape == (1, 1)
        assert m[0, 0] == pytest.approx(9.0)

    def test_time_cutoff_exceeded(self):
        seg = TrackSegment([_spot(3, 0, 5.0)])
        m = build([seg], [_spot(0, 0, 4.0)], _settings(time_cutoff=0.5))
        assert m[0, 0] == BLOCKED

    def test_zero_time_gap(self):
        seg = TrackSegment([_spot(1, 0, 5.0)])
        m = build([seg], [_spot(0, 0, 5.0)],
                  _settings(max_dist=1000.0, time_cutoff=1000.0))
        assert m[0, 0] == BLOCKED

    def test_feature_ratio_blocks(self):
        seg = TrackSegment([_spot(3, 0, 5.0, **{MEAN_INTENSITY: 11.0})])
        middle = _spot(0, 0, 4.0, **{MEAN_INTENSITY: 9.0})
        m = build([seg], [middle],
                  _settings(feature_cutoffs={MEAN_INTENSITY: 0.1}))
        assert m[0, 0] == BLOCKED

    def test_disabled_all_blocked(self):
        segs = [TrackSegment([_spot(0, 0, 1.0)]) for _ in range(2)]
        middles = [_spot(0, 0, 0.0) for _ in range(3)]
        m = build(segs, middles, _settings(allow_splitting=False))
        assert m.shape == (3, 2)
        assert np.all(m == BLOCKED)

    def test_disabled_skips_validation(self):
        """No per-pair work: even an empty segment is not inspected."""
        m = build([TrackSegment([])], [_spot()], _settings(allow_splitting=False))
        assert m.shape == (1, 1)

    def test_empty_inputs(self):
        assert build([], [], _settings()).shape == (0, 0)
        assert build([TrackSegment([_spot(t=1.0)])], [], _settings()).shape == (0, 1)
        assert build([], [_spot()], _settings()).shape == (1, 0)

    def test_plain_spot_lists_accepted(self):
        m = build([[_spot(3, 0, 5.0)]], [_spot(0, 0, 4.0)], _settings())
        assert m[0, 0] == pytest.approx(9.0)

    def test_default_blocked_value(self):
        seg = TrackSegment([_spot(3, 0, 5.0)])
        m = build([seg], [_spot(0, 0, 5.0)])
        assert m[0, 0] == np.finfo(np.float64).max


# ═══════════════════════════════════════════════════════════════════
# 2. Matrix-wide properties
# ═══════════════════════════════════════════════════════════════════

class TestMatrixProperties:

    @pytest.fixture
    def scene(self):
        return _random_scene(seed=1)

    @pytest.fixture
    def settings(self):
        return _settings(max_dist=6.0, time_cutoff=2.0,
                         feature_cutoffs={MEAN_INTENSITY: 0.8})

    def test_shape(self, scene, settings):
        segs, middles = scene
        assert build(segs, middles, settings).shape == (len(middles), len(segs))

    def test_members_always_blocked(self, scene):
        segs, middles = scene
        loose = _settings(max_dist=1e6, time_cutoff=1e6)
        m = build(segs, middles, loose)
        n_members = 0
        for i, mid in enumerate(middles):
            for j, seg in enumerate(segs):
                if mid in seg:
                    n_members += 1
                    assert m[i, j] == BLOCKED
        assert n_members > 0

    def test_cost_lower_bound(self, scene, settings):
        segs, middles = scene
        m = build(segs, middles, settings)
        passed = 0
        for i, mid in enumerate(middles):
            for j, seg in enumerate(segs):
                if m[i, j] != BLOCKED:
                    passed += 1
                    assert m[i, j] >= squared_distance(seg.start, mid)
        assert passed > 0

    def test_every_cell_finite_and_non_negative(self, scene, settings):
        segs, middles = scene
        m = build(segs, middles, settings)
        assert np.all(np.isfinite(m))
        assert np.all(m >= 0)
        assert m.dtype == np.float64

    def test_matches_cell_by_cell_evaluation(self, scene, settings):
        from lap_splitting.cost import evaluate_cost
        segs, middles = scene
        m = build(segs, middles, settings)
        for i, mid in enumerate(middles):
            for j, seg in enumerate(segs):
                assert m[i, j] == evaluate_cost(mid, seg, settings).value(BLOCKED)


# ═══════════════════════════════════════════════════════════════════
# 3. Threading
# ═══════════════════════════════════════════════════════════════════

class TestThreading:

    def test_deterministic_across_worker_counts(self):
        segs, middles = _random_scene(seed=7, n_segments=30, n_middle=120)
        base = _settings(max_dist=8.0, feature_cutoffs={MEAN_INTENSITY: 1.0})
        single = build(segs, middles, base)
        for n in (2, 4, 8):
            multi = build(segs, middles,
                          base.replace(use_multithreading=True, n_workers=n))
            np.testing.assert_array_equal(single, multi)

    def test_repeat_runs_identical(self):
        segs, middles = _random_scene(seed=3)
        s = _settings(use_multithreading=True, n_workers=4)
        np.testing.assert_array_equal(
            build(segs, middles, s), build(segs, middles, s))

    def test_default_pool_size(self):
        segs, middles = _random_scene(seed=5)
        s = _settings(use_multithreading=True)
        assert build(segs, middles, s).shape == (len(middles), len(segs))

    def test_empty_segment_fails_fast(self):
        segs = [TrackSegment([_spot(t=1.0)]), TrackSegment([], name="hollow")]
        with pytest.raises(ValueError, match="hollow"):
            build(segs, [_spot()], _settings(use_multithreading=True, n_workers=2))

    def test_worker_failure_aborts_build(self):
        segs, middles = _random_scene(seed=2)
        middles = list(middles)
        middles[len(middles) // 2] = Spot({POSITION_X: 0.0, POSITION_Y: 0.0})
        s = _settings(use_multithreading=True, n_workers=4)
        with pytest.raises(KeyError, match=POSITION_T):
            build(segs, middles, s)

    def test_infinite_times_abort_build(self):
        seg = TrackSegment([_spot(0, 0, np.inf)])
        s = _settings(blocked_value=-7.0)
        with pytest.raises(ValueError, match="finite"):
            build([seg], [_spot(0, 0, np.inf)], s)

    def test_negative_times_abort_build(self):
        seg = TrackSegment([_spot(3, 0, -4.0)])
        with pytest.raises(ValueError, match=POSITION_T):
            build([seg], [_spot(0, 0, -5.0)],
                  _settings(use_multithreading=True, n_workers=2))

    def test_missing_feature_aborts_build(self):
        seg = TrackSegment([_spot(3, 0, 5.0, **{MEAN_INTENSITY: 10.0})])
        middle = _spot(0, 0, 4.0)
        s = _settings(feature_cutoffs={MEAN_INTENSITY: 1.0})
        with pytest.raises(KeyError, match=MEAN_INTENSITY):
            build([seg], [middle], s)


# ═══════════════════════════════════════════════════════════════════
# 4. Tagged matrix
# ═══════════════════════════════════════════════════════════════════

class TestTaggedMatrix:

    @pytest.fixture
    def tagged(self):
        start = _spot(3, 0, 5.0, **{MEAN_INTENSITY: 11.0})
        seg = TrackSegment([start, _spot(3, 0, 6.0, **{MEAN_INTENSITY: 11.0})],
                           name="A")
        far = TrackSegment([_spot(50, 0, 5.0, **{MEAN_INTENSITY: 10.0})],
                           name="B")
        middles = [
            _spot(0, 0, 4.0, **{MEAN_INTENSITY: 9.0}),    # passes A
            _spot(0, 0, 4.0, **{MEAN_INTENSITY: 1.0}),    # feature block on A
            start,                                        # member of A
            _spot(0, 0, 5.0, **{MEAN_INTENSITY: 11.0}),   # zero gap
        ]
        fn = SplittingCostFunction(
            _settings(feature_cutoffs={MEAN_INTENSITY: 0.5}))
        return fn.get_tagged_matrix([seg, far], middles)

    def test_type_and_shape(self, tagged):
        assert isinstance(tagged, SplitCostMatrix)
        assert tagged.shape == (4, 2)

    def test_outcomes(self, tagged):
        expected = np.array([
            [GateOutcome.PASS, GateOutcome.BLOCKED_DISTANCE],
            [GateOutcome.BLOCKED_FEATURE, GateOutcome.BLOCKED_DISTANCE],
            [GateOutcome.BLOCKED_SAME_SPOT, GateOutcome.BLOCKED_TIME],
            [GateOutcome.BLOCKED_TIME, GateOutcome.BLOCKED_TIME],
        ], dtype=np.int8)
        np.testing.assert_array_equal(tagged.outcomes, expected)

    def test_blocked_cells_infinite_cost(self, tagged):
        assert np.all(np.isinf(tagged.costs[tagged.blocked_mask]))
        assert tagged.costs[0, 0] == pytest.approx(9.0 * 1.2)

    def test_to_numeric_default_sentinel(self, tagged):
        m = tagged.to_numeric()
        assert m[0, 0] == pytest.approx(10.8)
        assert m[1, 0] == BLOCKED

    def test_to_numeric_custom_sentinel(self, tagged):
        m = tagged.to_numeric(-1.0)
        assert np.count_nonzero(m == -1.0) == 7

    def test_outcome_counts(self, tagged):
        assert tagged.outcome_counts() == {
            "PASS": 1,
            "BLOCKED_SAME_SPOT": 1,
            "BLOCKED_TIME": 3,
            "BLOCKED_DISTANCE": 2,
            "BLOCKED_FEATURE": 1,
        }

    def test_explain(self, tagged):
        trace = tagged.explain(1, 0)
        assert trace.outcome is GateOutcome.BLOCKED_FEATURE
        assert trace.blocking_feature == MEAN_INTENSITY
        assert trace.segment == "A"

    def test_disabled_tagged(self):
        fn = SplittingCostFunction(_settings(allow_splitting=False))
        tagged = fn.get_tagged_matrix([[_spot(t=1.0)]], [_spot(), _spot()])
        assert tagged.outcome_counts() == {"BLOCKED_DISABLED": 2}
        assert np.all(tagged.to_numeric() == BLOCKED)

    def test_get_cost_matrix_matches_tagged(self):
        segs, middles = _random_scene(seed=11)
        fn = SplittingCostFunction(_settings(n_workers=3, use_multithreading=True))
        np.testing.assert_array_equal(
            fn.get_cost_matrix(segs, middles),
            fn.get_tagged_matrix(segs, middles).to_numeric())


class TestLogging:

    def test_info_summary(self, caplog):
        seg = TrackSegment([_spot(3, 0, 5.0)])
        with caplog.at_level(logging.INFO, logger="lap_splitting"):
            build([seg], [_spot(0, 0, 4.0)], _settings())
        assert any("1x1 splitting cost matrix" in r.getMessage()
                   for r in caplog.records)

    def test_debug_thread_names(self, caplog):
        segs, middles = _random_scene(seed=4)
        with caplog.at_level(logging.DEBUG, logger="lap_splitting"):
            build(segs, middles, _settings(use_multithreading=True, n_workers=2))
        messages = [r.getMessage() for r in caplog.records]
        assert any("LAPTracker splitting cost thread 1/2" in m for m in messages)
        assert any("Current middle spot" in m for m in messages)

    def test_repr(self):
        fn = SplittingCostFunction(_settings(feature_cutoffs={MEAN_INTENSITY: 1.0}))
        assert "MEAN_INTENSITY" in repr(fn)

"""Spot and TrackSegment — the read-only inputs of the cost function.

A :class:`Spot` is a point-like detection at one time point.  It
carries nothing but a mapping of named numeric features; position and
time are features like any other (``POSITION_X`` … ``POSITION_T``).

A :class:`TrackSegment` is a time-ordered set of spots.  Its *start* is
the earliest spot, which is what every splitting candidate is scored
against.

Equality is **identity**: two spots with identical features are still
two different detections.  The same instance can therefore appear both
inside a segment and in the middle-spot list, and the gate evaluator
relies on that.

Usage
-----
>>> a = Spot({POSITION_X: 0.0, POSITION_Y: 0.0, POSITION_T: 4.0})
>>> b = Spot({POSITION_X: 3.0, POSITION_Y: 0.0, POSITION_T: 5.0})
>>> squared_distance(a, b)          # 9.0
>>> seg = TrackSegment([b])
>>> seg.start is b                  # True
"""

from __future__ import annotations

import itertools
import math
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from scipy.spatial.distance import sqeuclidean

__all__ = [
    "POSITION_X", "POSITION_Y", "POSITION_Z", "POSITION_T", "FRAME",
    "RADIUS", "QUALITY", "MEAN_INTENSITY", "MEDIAN_INTENSITY",
    "TOTAL_INTENSITY", "CONTRAST",
    "POSITION_FEATURES",
    "Spot",
    "TrackSegment",
    "squared_distance",
    "feature_value",
    "normalized_abs_difference",
]


# ── Feature names ───────────────────────────────────────────────

POSITION_X = "POSITION_X"
POSITION_Y = "POSITION_Y"
POSITION_Z = "POSITION_Z"
POSITION_T = "POSITION_T"
FRAME = "FRAME"
RADIUS = "RADIUS"
QUALITY = "QUALITY"
MEAN_INTENSITY = "MEAN_INTENSITY"
MEDIAN_INTENSITY = "MEDIAN_INTENSITY"
TOTAL_INTENSITY = "TOTAL_INTENSITY"
CONTRAST = "CONTRAST"

POSITION_FEATURES: Tuple[str, str, str] = (POSITION_X, POSITION_Y, POSITION_Z)
"""Spatial features, in coordinate order.  A missing Z means a 2D spot."""

_ids = itertools.count()


# ═══════════════════════════════════════════════════════════════════
# Spot
# ═══════════════════════════════════════════════════════════════════

class Spot:
    """One detection: an immutable bag of named numeric features.

    Parameters
    ----------
    features : mapping of str → float
        Feature values.  Copied on construction.
    name : str, optional
        Label for logs and reprs.  Defaults to ``"ID<n>"``.
    """

    __slots__ = ("_features", "_id", "_name")

    def __init__(
        self,
        features: Mapping[str, float],
        *,
        name: Optional[str] = None,
    ):
        self._id = next(_ids)
        self._features = MappingProxyType(
            {k: float(v) for k, v in features.items()})
        self._name = name if name is not None else f"ID{self._id}"

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def features(self) -> Mapping[str, float]:
        """Read-only view of the feature values."""
        return self._features

    def get_feature(self, feature: str) -> Optional[float]:
        """Return the value of *feature*, or ``None`` when not set."""
        return self._features.get(feature)

    def position(self) -> Tuple[float, float, float]:
        """Return ``(x, y, z)``; absent coordinates count as 0."""
        return tuple(self._features.get(f, 0.0) for f in POSITION_FEATURES)

    def __repr__(self) -> str:
        x, y, z = self.position()
        t = self._features.get(POSITION_T)
        return f"Spot({self._name}, x={x:.1f}, y={y:.1f}, z={z:.1f}, t={t})"


# ═══════════════════════════════════════════════════════════════════
# Spot primitives
# ═══════════════════════════════════════════════════════════════════

def feature_value(spot: Spot, feature: str) -> float:
    """Return *feature* of *spot*.

    Raises
    ------
    KeyError
        If the spot does not carry the feature.
    """
    value = spot.get_feature(feature)
    if value is None:
        raise KeyError(
            f"Spot {spot.name} has no feature {feature!r}. "
            f"Available: {sorted(spot.features)}"
        )
    return value


def squared_distance(a: Spot, b: Spot) -> float:
    """Squared Euclidean distance between the positions of two spots."""
    return float(sqeuclidean(a.position(), b.position()))


def normalized_abs_difference(a: Spot, b: Spot, feature: str) -> float:
    """Relative disparity of *feature* between two spots.

    ``|va - vb| / |(va + vb) / 2|`` — zero for identical values.
    When ``va == -vb`` the mean vanishes and 0 is returned.
    """
    va = feature_value(a, feature)
    vb = feature_value(b, feature)
    if va == -vb:
        return 0.0
    return abs(va - vb) / abs((va + vb) / 2.0)


# ═══════════════════════════════════════════════════════════════════
# TrackSegment
# ═══════════════════════════════════════════════════════════════════

class TrackSegment:
    """Time-ordered, duplicate-free, immutable set of spots.

    Spots are sorted by ``POSITION_T`` (stable for ties); a spot given
    twice is kept once.  Membership tests use identity.

    Parameters
    ----------
    spots : iterable of Spot
    name : str, optional
    """

    __slots__ = ("_spots", "_members", "_name")

    def __init__(self, spots: Iterable[Spot], *, name: str = ""):
        unique: Dict[int, Spot] = {}
        for s in spots:
            unique.setdefault(s.id, s)
        ordered = sorted(unique.values(), key=_time_key)
        self._spots: Tuple[Spot, ...] = tuple(ordered)
        self._members = frozenset(unique)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def spots(self) -> Tuple[Spot, ...]:
        return self._spots

    @property
    def start(self) -> Spot:
        """The earliest spot.

        Raises
        ------
        ValueError
            If the segment is empty.
        """
        if not self._spots:
            raise ValueError(
                f"Track segment {self._name!r} is empty and has no start spot")
        return self._spots[0]

    def __contains__(self, spot: object) -> bool:
        return isinstance(spot, Spot) and spot.id in self._members

    def __len__(self) -> int:
        return len(self._spots)

    def __iter__(self) -> Iterator[Spot]:
        return iter(self._spots)

    def __bool__(self) -> bool:
        return bool(self._spots)

    def __repr__(self) -> str:
        return f"TrackSegment({self._name!r}, {len(self._spots)} spots)"


def _time_key(spot: Spot) -> float:
    t = spot.get_feature(POSITION_T)
    if t is None or math.isnan(t):
        raise ValueError(
            f"Spot {spot.name} has no valid {POSITION_T} and cannot be "
            f"ordered inside a track segment"
        )
    return t

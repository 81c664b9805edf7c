"""Splitting settings — every tunable number of the cost function.

Two immutable objects:

* :class:`FeatureCutoffs` — ``{feature: max ratio}``, one multiplicative
  penalty (and one blocking threshold) per feature.
* :class:`SplittingSettings` — the gates, the blocking sentinel, the
  feature cutoffs and the threading switch.

Both can be:

* **inspected** — ``settings.max_dist``, ``cutoffs["MEAN_INTENSITY"]``
* **overridden** — ``settings.replace(max_dist=20.0)``
* **diffed** — ``cutoffs.diff(other)``

Usage
-----
>>> from lap_splitting.settings import SplittingSettings, DEFAULT_SETTINGS
>>> s = DEFAULT_SETTINGS.replace(max_dist=5.0, time_cutoff=2.0)
>>> s = s.replace(feature_cutoffs={"MEAN_INTENSITY": 1.0})
>>> SplittingSettings.from_dict({"splittingDistanceCutoff": 5.0})
"""

from __future__ import annotations

import dataclasses
import math
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

__all__ = [
    "FeatureCutoffs",
    "SplittingSettings",
    "DEFAULT_SETTINGS",
]


# ═══════════════════════════════════════════════════════════════════
# FeatureCutoffs
# ═══════════════════════════════════════════════════════════════════

class FeatureCutoffs:
    """Immutable mapping of feature name → maximal allowed ratio.

    Parameters
    ----------
    data : dict[str, float], optional
        ``{"MEAN_INTENSITY": 1.0, ...}``.

    Notes
    -----
    * Read-only: ``__setitem__`` raises ``TypeError``.
    * ``replace()`` returns a new instance.
    * Iteration yields feature names in sorted order, so the feature
      reported as blocking a pair is stable between runs.
    """

    def __init__(self, data: Optional[Mapping[str, float]] = None):
        checked: Dict[str, float] = {}
        for k, v in (data or {}).items():
            v = float(v)
            if math.isnan(v) or v < 0:
                raise ValueError(
                    f"Feature cutoff for {k!r} must be >= 0, got {v}")
            checked[k] = v
        self._data: Dict[str, float] = dict(sorted(checked.items()))

    # ── read ────────────────────────────────────────────────────

    def __getitem__(self, feature: str) -> float:
        return self._data[feature]

    def __contains__(self, feature: object) -> bool:
        return feature in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __repr__(self) -> str:
        return f"FeatureCutoffs({self._data!r})"

    def get(self, feature: str, default: Optional[float] = None):
        """Return the cutoff for *feature*, or *default* if not configured."""
        return self._data.get(feature, default)

    def keys(self):
        return self._data.keys()

    def values(self):
        return self._data.values()

    def items(self):
        return self._data.items()

    def to_dict(self) -> Dict[str, float]:
        """Return a mutable copy of the data."""
        return dict(self._data)

    # ── immutable mutation ──────────────────────────────────────

    def __setitem__(self, key: str, value: float):
        raise TypeError(
            "FeatureCutoffs is immutable — use .replace() instead")

    def replace(self, overrides: Mapping[str, float]) -> "FeatureCutoffs":
        """Return new cutoffs with *overrides* added or changed."""
        merged = dict(self._data)
        merged.update(overrides)
        return FeatureCutoffs(merged)

    def without(self, *features: str) -> "FeatureCutoffs":
        """Return new cutoffs with *features* removed.

        Raises
        ------
        KeyError
            If a feature is not configured.
        """
        for f in features:
            if f not in self._data:
                raise KeyError(
                    f"Unknown feature cutoff {f!r}. "
                    f"Configured: {list(self._data)}"
                )
        return FeatureCutoffs(
            {k: v for k, v in self._data.items() if k not in features})

    # ── comparison ──────────────────────────────────────────────

    def diff(
        self, other: "FeatureCutoffs",
    ) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
        """Return ``{feature: (self_value, other_value)}`` for differing keys."""
        result = {}
        for k in sorted(set(self._data) | set(other._data)):
            v_self = self._data.get(k)
            v_other = other._data.get(k)
            if v_self != v_other:
                result[k] = (v_self, v_other)
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureCutoffs):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(tuple(self._data.items()))


# ═══════════════════════════════════════════════════════════════════
# SplittingSettings
# ═══════════════════════════════════════════════════════════════════

# Original tracker-settings names → field names.
_ALIASES: Dict[str, str] = {
    "allowSplitting": "allow_splitting",
    "splittingDistanceCutoff": "max_dist",
    "splittingTimeCutoff": "time_cutoff",
    "blockingValue": "blocked_value",
    "splittingFeatureCutoffs": "feature_cutoffs",
    "useMultithreading": "use_multithreading",
    "numThreads": "n_workers",
}


@dataclass(frozen=True)
class SplittingSettings:
    """Configuration of :class:`~lap_splitting.builder.SplittingCostFunction`.

    Attributes
    ----------
    allow_splitting : bool
        When False every cell is blocked and no pair is evaluated.
    max_dist : float
        Largest allowed distance between middle spot and segment start.
    time_cutoff : float
        Largest allowed ``t_start - t_middle``.  The gap must also be > 0.
    blocked_value : float
        Sentinel written into forbidden cells.
    feature_cutoffs : FeatureCutoffs
        Max ratio per feature; a larger ratio blocks the pair.
    use_multithreading : bool
        Spread rows over a thread pool (one thread when False).
    n_workers : int or None
        Pool size when multithreading; ``None`` means one per CPU.
    """

    allow_splitting: bool = True
    max_dist: float = 15.0
    time_cutoff: float = 1.0
    blocked_value: float = sys.float_info.max
    feature_cutoffs: FeatureCutoffs = field(default_factory=FeatureCutoffs)
    use_multithreading: bool = True
    n_workers: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.feature_cutoffs, FeatureCutoffs):
            object.__setattr__(
                self, "feature_cutoffs", FeatureCutoffs(self.feature_cutoffs))
        if not self.max_dist > 0:
            raise ValueError(f"max_dist must be > 0, got {self.max_dist}")
        if not self.time_cutoff > 0:
            raise ValueError(
                f"time_cutoff must be > 0, got {self.time_cutoff}")
        if math.isnan(self.blocked_value):
            raise ValueError("blocked_value must not be NaN")
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")

    @property
    def max_dist_sq(self) -> float:
        return self.max_dist * self.max_dist

    def replace(self, **changes: Any) -> "SplittingSettings":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

    # ── dict round trip ─────────────────────────────────────────

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any],
    ) -> "SplittingSettings":
        """Build settings from a plain mapping.

        Accepts field names and the original tracker-settings names
        (``splittingDistanceCutoff``, ``blockingValue``, ...).  Missing
        keys keep their defaults.

        Raises
        ------
        KeyError
            On an unrecognised key.
        """
        valid = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in valid:
                raise KeyError(
                    f"Unknown splitting setting {key!r}. "
                    f"Valid keys: {sorted(valid | set(_ALIASES))}"
                )
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Union[bool, float, int, None, Dict[str, float]]]:
        """Return a JSON-safe dict keyed by field name."""
        return {
            "allow_splitting": self.allow_splitting,
            "max_dist": self.max_dist,
            "time_cutoff": self.time_cutoff,
            "blocked_value": self.blocked_value,
            "feature_cutoffs": self.feature_cutoffs.to_dict(),
            "use_multithreading": self.use_multithreading,
            "n_workers": self.n_workers,
        }


DEFAULT_SETTINGS: SplittingSettings = SplittingSettings()
"""Production defaults: splitting allowed, 15-unit radius, one time
step, ``sys.float_info.max`` as the blocking value, no feature
penalties, multithreaded."""

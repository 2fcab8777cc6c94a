"""
Reaction-time based trial trimming for one subject and one condition.

Two filters run in sequence: an absolute lower bound on the response time and
a within-condition outlier rejection (``|rt - mean| > k * sd``). Either filter
is disabled by setting its threshold to 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from erppost.exceptions import ConfigurationError


@dataclass(frozen=True)
class TrialStats:
    """Trial counts at each trimming stage."""

    original: int = 0
    after_rt_min: int = 0
    after_outliers: int = 0
    final: int = 0

    @property
    def removed_rt_min(self) -> int:
        return self.original - self.after_rt_min

    @property
    def removed_outliers(self) -> int:
        return self.after_rt_min - self.after_outliers

    def as_dict(self) -> dict:
        return {
            "original": self.original,
            "after_rt_min": self.after_rt_min,
            "after_outliers": self.after_outliers,
            "final": self.final,
        }


EMPTY_STATS = TrialStats()


@dataclass(frozen=True)
class TrimmingCriteria:
    """
    Parameters of the trial trimmer.

    rt_lower_bound_ms : trials faster than this are removed (0 disables)
    rt_outlier_sd     : outlier threshold in standard deviations (0 disables)
    """

    rt_lower_bound_ms: float = 150.0
    rt_outlier_sd: float = 3.0

    def __post_init__(self):
        for name in ("rt_lower_bound_ms", "rt_outlier_sd"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"[TrimmingCriteria] {name} must be a number, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"[TrimmingCriteria] {name} must be >= 0 (0 disables), got {value}")

    @classmethod
    def from_params(cls, params: dict) -> "TrimmingCriteria":
        return cls(
            rt_lower_bound_ms=params.get("rt_lower_bound_ms", 150.0),
            rt_outlier_sd=params.get("rt_outlier_sd", 3.0),
        )


def trim_trials(trial_indices: Sequence[int], rts_s: Sequence[float],
                criteria: TrimmingCriteria) -> Tuple[np.ndarray, TrialStats]:
    """
    Trim one condition's trials by response time.

    Parameters
    ----------
    trial_indices : sequence of int
        Epoch indices belonging to the condition (may be empty).
    rts_s : sequence of float
        Response times in seconds, parallel to ``trial_indices``.
    criteria : TrimmingCriteria

    Returns
    -------
    kept : np.ndarray
        Surviving trial indices, in input order.
    stats : TrialStats
    """
    trial_indices = np.asarray(trial_indices, dtype=int)
    rts_ms = np.asarray(rts_s, dtype=float) * 1000.0
    if trial_indices.shape != rts_ms.shape:
        raise ValueError(
            f"trial_indices and rts differ in length ({trial_indices.size} vs {rts_ms.size})"
        )

    n_original = int(trial_indices.size)
    if n_original == 0:
        return trial_indices, EMPTY_STATS

    keep = np.ones(n_original, dtype=bool)

    if criteria.rt_lower_bound_ms > 0:
        keep &= ~(rts_ms < criteria.rt_lower_bound_ms)
    n_after_rt_min = int(keep.sum())

    # Sample SD needs at least two trials.
    if criteria.rt_outlier_sd > 0 and n_after_rt_min > 1:
        remaining = np.flatnonzero(keep)
        subset = rts_ms[remaining]
        mean = subset.mean()
        sd = subset.std(ddof=1)
        outliers = np.abs(subset - mean) > criteria.rt_outlier_sd * sd
        keep[remaining[outliers]] = False
    n_after_outliers = int(keep.sum())

    stats = TrialStats(
        original=n_original,
        after_rt_min=n_after_rt_min,
        after_outliers=n_after_outliers,
        final=n_after_outliers,
    )
    return trial_indices[keep], stats

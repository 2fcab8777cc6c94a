import os
import sys
import unittest

import numpy as np
import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from erppost.exceptions import ConfigurationError
from erppost.utils.trimming import EMPTY_STATS, TrialStats, TrimmingCriteria, trim_trials


class TestTrimTrials(unittest.TestCase):
    """Unit tests for the RT-based trial trimmer."""

    def setUp(self):
        self.criteria = TrimmingCriteria(rt_lower_bound_ms=150, rt_outlier_sd=3.0)

    def test_too_fast_trial_removed_and_equal_distances_survive(self):
        """RTs 100/400/420 ms: the fast trial goes, both others stay."""
        kept, stats = trim_trials([0, 1, 2], [0.100, 0.400, 0.420], self.criteria)
        np.testing.assert_array_equal(kept, [1, 2])
        self.assertEqual(stats, TrialStats(original=3, after_rt_min=2, after_outliers=2, final=2))
        self.assertEqual(stats.removed_rt_min, 1)
        self.assertEqual(stats.removed_outliers, 0)

    def test_clean_data_unchanged(self):
        rts = [0.40, 0.41, 0.42, 0.43, 0.44]
        kept, stats = trim_trials([3, 5, 7, 9, 11], rts, self.criteria)
        np.testing.assert_array_equal(kept, [3, 5, 7, 9, 11])
        self.assertEqual(stats.original, 5)
        self.assertEqual(stats.after_rt_min, 5)
        self.assertEqual(stats.after_outliers, 5)
        self.assertEqual(stats.final, 5)

    def test_outlier_removed(self):
        rts = [0.40] * 20 + [0.41] * 20 + [2.0]
        kept, stats = trim_trials(list(range(41)), rts, self.criteria)
        self.assertNotIn(40, kept)
        self.assertEqual(stats.after_rt_min, 41)
        self.assertEqual(stats.final, 40)

    def test_lower_bound_is_strict(self):
        """An RT exactly at the bound is kept."""
        kept, stats = trim_trials([0, 1], [0.100, 0.099], TrimmingCriteria(100, 0))
        np.testing.assert_array_equal(kept, [0])
        self.assertEqual(stats.final, 1)

    def test_outlier_threshold_is_strict(self):
        """250, 250, 250, 500 ms: mean 312.5, sample SD 125, so 500 ms lies exactly 1.5 SD out."""
        rts = [0.25, 0.25, 0.25, 0.5]
        kept, stats = trim_trials([0, 1, 2, 3], rts, TrimmingCriteria(0, 1.5))
        np.testing.assert_array_equal(kept, [0, 1, 2, 3])
        self.assertEqual(stats.after_outliers, 4)

        kept, stats = trim_trials([0, 1, 2, 3], rts, TrimmingCriteria(0, 1.49))
        np.testing.assert_array_equal(kept, [0, 1, 2])
        self.assertEqual(stats.removed_outliers, 1)

    def test_zero_disables_filters(self):
        rts = [0.01] + [0.40] * 20 + [5.0]
        kept, stats = trim_trials(list(range(22)), rts, TrimmingCriteria(0, 0))
        self.assertEqual(len(kept), 22)
        self.assertEqual(stats.final, 22)

    def test_single_survivor_skips_outlier_check(self):
        kept, stats = trim_trials([4], [0.5], self.criteria)
        np.testing.assert_array_equal(kept, [4])
        self.assertEqual(stats.final, 1)

    def test_empty_condition(self):
        kept, stats = trim_trials([], [], self.criteria)
        self.assertEqual(kept.size, 0)
        self.assertEqual(stats, EMPTY_STATS)

    def test_length_mismatch(self):
        with self.assertRaises(ValueError):
            trim_trials([0, 1], [0.4], self.criteria)


@pytest.mark.parametrize("seed", range(10))
def test_monotonic_counts(seed):
    rng = np.random.RandomState(seed)
    n = rng.randint(0, 60)
    rts = np.abs(rng.normal(0.4, 0.2, size=n))
    _, stats = trim_trials(np.arange(n), rts, TrimmingCriteria(150, 2.0))
    assert stats.final <= stats.after_rt_min <= stats.original
    assert stats.after_outliers == stats.final


@pytest.mark.parametrize("kwargs", [
    {"rt_lower_bound_ms": -1},
    {"rt_outlier_sd": -0.5},
    {"rt_outlier_sd": "3"},
    {"rt_lower_bound_ms": True},
])
def test_invalid_criteria(kwargs):
    with pytest.raises(ConfigurationError):
        TrimmingCriteria(**kwargs)


def test_criteria_from_params_defaults():
    criteria = TrimmingCriteria.from_params({})
    assert criteria.rt_lower_bound_ms == 150.0
    assert criteria.rt_outlier_sd == 3.0


if __name__ == '__main__':
    unittest.main()

"""
Subject inclusion criteria.

Tier 1 (dataset inclusion) requires a minimum accuracy on visible-target trials
and a minimum number of trimmed trials in every primary condition. Tier 2
(condition inclusion) decides, per condition and independently of every other
condition, whether a dataset-included subject contributes to that condition's
grand average.

``position_of`` recovers where a subject sits inside a condition's grand
average stack. The averager uses it to place slices and the difference wave
computer uses it to find them again, once per operand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from erppost.exceptions import AccuracyUndefinedError, ConfigurationError
from erppost.utils.conditions import (
    PRIMARY_CODES,
    VISIBLE_ERROR_CODES,
    VISIBLE_TARGET_CODES,
    normalize_code_map,
)
from erppost.utils.trimming import EMPTY_STATS, TrialStats

logger = logging.getLogger(__name__)

DEFAULT_MIN_TRIALS = 10


@dataclass(frozen=True)
class InclusionCriteria:
    """Thresholds for tier-1 and tier-2 inclusion."""

    accuracy_threshold: float = 0.60
    primary_conditions: Mapping[int, int] = field(
        default_factory=lambda: {code: DEFAULT_MIN_TRIALS for code in PRIMARY_CODES}
    )
    secondary_min_trials: Mapping[int, int] = field(default_factory=dict)
    default_min_trials: int = DEFAULT_MIN_TRIALS
    visible_target_codes: Tuple[int, ...] = VISIBLE_TARGET_CODES
    visible_error_codes: Tuple[int, ...] = VISIBLE_ERROR_CODES

    def __post_init__(self):
        thr = self.accuracy_threshold
        if isinstance(thr, bool) or not isinstance(thr, (int, float)) or not 0.0 <= thr <= 1.0:
            raise ConfigurationError(f"[InclusionCriteria] accuracy_threshold must be in [0, 1], got {thr!r}")

        minimums = dict(self.primary_conditions)
        minimums.update(self.secondary_min_trials)
        minimums["default"] = self.default_min_trials
        for code, value in minimums.items():
            # A minimum of 0 would include conditions without any trial to average.
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(
                    f"[InclusionCriteria] minimum trial count for {code} must be an integer >= 1, got {value!r}"
                )

        if not set(self.visible_error_codes) <= set(self.visible_target_codes):
            raise ConfigurationError(
                "[InclusionCriteria] visible_error_codes must be a subset of visible_target_codes"
            )

    @classmethod
    def from_params(cls, params: dict) -> "InclusionCriteria":
        kwargs = {}
        if "accuracy_threshold" in params:
            kwargs["accuracy_threshold"] = params["accuracy_threshold"]
        try:
            if "primary_conditions" in params:
                kwargs["primary_conditions"] = normalize_code_map(params["primary_conditions"])
            if "secondary_min_trials" in params:
                kwargs["secondary_min_trials"] = normalize_code_map(params["secondary_min_trials"])
        except ValueError as e:
            raise ConfigurationError(f"[InclusionCriteria] {e}") from e
        if "default_min_trials" in params:
            kwargs["default_min_trials"] = params["default_min_trials"]
        if "visible_target_codes" in params:
            kwargs["visible_target_codes"] = tuple(int(c) for c in params["visible_target_codes"])
        if "visible_error_codes" in params:
            kwargs["visible_error_codes"] = tuple(int(c) for c in params["visible_error_codes"])
        return cls(**kwargs)

    def min_trials_for(self, code: int) -> int:
        """Minimum trimmed-trial count required for ``code``."""
        code = int(code)
        if code in self.primary_conditions:
            return int(self.primary_conditions[code])
        return int(self.secondary_min_trials.get(code, self.default_min_trials))


@dataclass(frozen=True)
class InclusionRecord:
    """Outcome of the inclusion checks for one subject."""

    subject: str
    dataset_included: bool
    accuracy: Optional[float] = None
    exclusion_reason: Optional[str] = None
    failed_primary: Tuple[int, ...] = ()
    condition_inclusion: Mapping[int, bool] = field(default_factory=dict)

    def is_included_for(self, code: int) -> bool:
        return self.dataset_included and bool(self.condition_inclusion.get(int(code), False))

    @classmethod
    def unavailable(cls, subject: str, reason: str) -> "InclusionRecord":
        return cls(subject=subject, dataset_included=False, exclusion_reason=reason)


def compute_accuracy(subject: str, trial_codes: Sequence[int],
                     criteria: InclusionCriteria) -> float:
    """
    Accuracy on visible-target trials: ``1 - n_visible_errors / n_visible_targets``.

    Raises
    ------
    AccuracyUndefinedError
        If the subject has no visible-target trials at all.
    """
    trial_codes = np.asarray(trial_codes)
    n_targets = int(np.isin(trial_codes, criteria.visible_target_codes).sum())
    if n_targets == 0:
        raise AccuracyUndefinedError(subject)
    n_errors = int(np.isin(trial_codes, criteria.visible_error_codes).sum())
    return 1.0 - n_errors / n_targets


def passes_accuracy(accuracy: float, criteria: InclusionCriteria) -> bool:
    return accuracy >= criteria.accuracy_threshold


def evaluate_subject(subject: str, accuracy: float, stats: Mapping[int, TrialStats],
                     codes: Sequence[int], criteria: InclusionCriteria) -> InclusionRecord:
    """
    Apply both inclusion tiers to one subject.

    ``stats`` maps condition code to that condition's trimming statistics;
    missing conditions count as zero trials.
    """
    if not passes_accuracy(accuracy, criteria):
        reason = (f"accuracy {accuracy * 100:.1f}% < threshold "
                  f"{criteria.accuracy_threshold * 100:.1f}%")
        return InclusionRecord(subject=subject, dataset_included=False,
                               accuracy=accuracy, exclusion_reason=reason)

    failed = tuple(
        code for code in criteria.primary_conditions
        if stats.get(code, EMPTY_STATS).final < criteria.min_trials_for(code)
    )
    if failed:
        reason = "insufficient epochs in primary conditions: " + ", ".join(str(c) for c in failed)
        return InclusionRecord(subject=subject, dataset_included=False, accuracy=accuracy,
                               exclusion_reason=reason, failed_primary=failed)

    flags = {
        int(code): stats.get(int(code), EMPTY_STATS).final >= criteria.min_trials_for(code)
        for code in codes
    }
    return InclusionRecord(subject=subject, dataset_included=True, accuracy=accuracy,
                           condition_inclusion=flags)


def position_of(subject: str, condition: int, canonical_order: Sequence[str],
                inclusion_flags: Mapping[str, Mapping[int, bool]]) -> int:
    """
    Index of ``subject`` inside the grand average stack of ``condition``.

    The index is the number of subjects flagged for ``condition`` at or before
    ``subject`` in ``canonical_order``, minus one.

    Raises
    ------
    KeyError
        If the subject is not in ``canonical_order`` or not flagged for the
        condition.
    """
    condition = int(condition)
    count = 0
    for other in canonical_order:
        flagged = bool(inclusion_flags.get(other, {}).get(condition, False))
        if flagged:
            count += 1
        if other == subject:
            if not flagged:
                raise KeyError(f"{subject} is not included for condition {condition}")
            return count - 1
    raise KeyError(f"{subject} is not part of the canonical subject order")


class InclusionTable:
    """
    Inclusion records of a run, keyed by subject, with the canonical order
    fixed at construction.
    """

    def __init__(self, canonical_order: Sequence[str], records: Mapping[str, InclusionRecord]):
        self.canonical_order: List[str] = list(canonical_order)
        missing = [s for s in self.canonical_order if s not in records]
        if missing:
            raise ValueError(f"No inclusion record for subjects: {', '.join(missing)}")
        self.records: Dict[str, InclusionRecord] = {s: records[s] for s in self.canonical_order}

    def __getitem__(self, subject: str) -> InclusionRecord:
        return self.records[subject]

    def __len__(self):
        return len(self.canonical_order)

    @property
    def included_subjects(self) -> List[str]:
        return [s for s in self.canonical_order if self.records[s].dataset_included]

    @property
    def excluded_subjects(self) -> List[str]:
        return [s for s in self.canonical_order if not self.records[s].dataset_included]

    @property
    def inclusion_flags(self) -> Dict[str, Mapping[int, bool]]:
        """``{subject: {code: flag}}`` for dataset-included subjects."""
        return {s: self.records[s].condition_inclusion for s in self.included_subjects}

    def is_included(self, subject: str, code: int) -> bool:
        record = self.records.get(subject)
        return record is not None and record.is_included_for(code)

    def subjects_for(self, code: int) -> List[str]:
        """Condition-included subjects for ``code``, in canonical order."""
        return [s for s in self.included_subjects if self.records[s].is_included_for(code)]

    def position_of(self, subject: str, code: int) -> int:
        return position_of(subject, code, self.included_subjects, self.inclusion_flags)

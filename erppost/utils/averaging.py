"""
Two-stage averaging.

Stage 1 averages each dataset-included subject's trimmed trials per condition.
Stage 2 stacks those per-subject averages into one grand average stack per
condition (channels x times x subjects). Slice positions come from
``position_of`` so the difference wave computer can recover them from the
inclusion records alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from erppost.exceptions import SubjectNotFoundError, TrialMetadataError
from erppost.utils.conditions import RESPONSE_MULTIPLE_KEYS, trials_for_code
from erppost.utils.inclusion import (
    InclusionCriteria,
    InclusionRecord,
    InclusionTable,
    compute_accuracy,
    evaluate_subject,
    passes_accuracy,
)
from erppost.utils.signal_store import BehaviorStore, SubjectRecording
from erppost.utils.trimming import EMPTY_STATS, TrialStats, TrimmingCriteria, trim_trials

logger = logging.getLogger(__name__)

# (subject, code) -> stats
TrialStatsTable = Dict[Tuple[str, int], TrialStats]


@dataclass
class SubjectSummary:
    """Per-subject bookkeeping kept for the audit tables."""

    subject: str
    status: str = "excluded"
    exclusion_reason: Optional[str] = None
    accuracy: Optional[float] = None
    n_epochs: int = 0
    n_visible_targets: int = 0
    multiple_key_trials: int = 0
    too_slow_trials: int = 0
    total_beh_trials: int = 0


@dataclass
class GrandAverageStack:
    code: int
    data: np.ndarray                      # (n_channels, n_times, n_subjects)
    subjects: List[str] = field(default_factory=list)

    @property
    def n_subjects(self) -> int:
        return int(self.data.shape[-1])

    @property
    def is_empty(self) -> bool:
        return self.n_subjects == 0

    def mean(self) -> np.ndarray:
        """Average across subjects (channels x times)."""
        if self.is_empty:
            raise ValueError(f"Grand average for code {self.code} has no subjects")
        return self.data.mean(axis=-1)


@dataclass
class GrandAverages:
    """Result of the two-stage averager."""

    stacks: Dict[int, GrandAverageStack]
    inclusion: InclusionTable
    trial_stats: TrialStatsTable
    summaries: Dict[str, SubjectSummary]
    codes: List[int]
    ch_names: Tuple[str, ...] = ()
    sfreq: float = 0.0
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __getitem__(self, code: int) -> GrandAverageStack:
        return self.stacks[int(code)]

    def __contains__(self, code) -> bool:
        return int(code) in self.stacks

    @property
    def times_ms(self) -> np.ndarray:
        return self.times * 1000.0

    def stats_for(self, subject: str, code: int) -> TrialStats:
        return self.trial_stats.get((subject, int(code)), EMPTY_STATS)


AverageExporter = Callable[[SubjectRecording, int, np.ndarray, int], None]


def average_trials(recording: SubjectRecording, kept: np.ndarray) -> np.ndarray:
    """Mean over the selected epochs (channels x times)."""
    return recording.data[kept].mean(axis=0)


def process_subject(recording: SubjectRecording, codes: Sequence[int], trimming: TrimmingCriteria,
                    criteria: InclusionCriteria) -> Tuple[InclusionRecord, Dict[int, TrialStats], Dict[int, np.ndarray]]:
    """
    Stage 1 for one subject: accuracy check, trimming, inclusion and averaging.

    Returns the inclusion record, the trimming stats per code and the
    per-code averages (only for dataset-included subjects, only where
    ``final > 0``).
    """
    subject = recording.subject
    accuracy = compute_accuracy(subject, recording.codes, criteria)

    if not passes_accuracy(accuracy, criteria):
        stats = {int(code): EMPTY_STATS for code in codes}
        record = evaluate_subject(subject, accuracy, stats, codes, criteria)
        logger.info(f"[averaging] EXCLUDED {subject}: {record.exclusion_reason}")
        return record, stats, {}

    # Primary conditions decide dataset inclusion even when not averaged.
    codes = [int(c) for c in codes]
    trimmed_codes = codes + [int(c) for c in criteria.primary_conditions if int(c) not in codes]

    stats: Dict[int, TrialStats] = {}
    kept_by_code: Dict[int, np.ndarray] = {}
    for code in trimmed_codes:
        idx = trials_for_code(recording.codes, code)
        kept, code_stats = trim_trials(idx, recording.rts[idx], trimming)
        stats[code] = code_stats
        kept_by_code[code] = kept

    logger.info("[averaging] " + "  ".join(
        f"code {c}: {s.original} -> {s.final}" if s.original > s.final else f"code {c}: {s.final}"
        for c, s in stats.items()
    ))

    record = evaluate_subject(subject, accuracy, stats, codes, criteria)
    if not record.dataset_included:
        logger.info(f"[averaging] EXCLUDED {subject}: {record.exclusion_reason}")
        return record, stats, {}

    averages = {
        code: average_trials(recording, kept)
        for code, kept in kept_by_code.items()
        if code in codes and stats[code].final > 0
    }
    logger.info(f"[averaging] INCLUDED {subject} (accuracy: {accuracy * 100:.1f}%)")
    return record, stats, averages


def stack_condition(code: int, inclusion: InclusionTable, averages: Mapping[str, Mapping[int, np.ndarray]],
                    shape: Tuple[int, int]) -> GrandAverageStack:
    """Stage 2 for one condition."""
    subjects = inclusion.subjects_for(code)
    slices: List[Optional[np.ndarray]] = [None] * len(subjects)
    for subject in subjects:
        slices[inclusion.position_of(subject, code)] = averages[subject][code]
    if slices:
        data = np.stack(slices, axis=-1)
    else:
        data = np.zeros(shape + (0,))
    return GrandAverageStack(code=int(code), data=data, subjects=subjects)


def make_grand_averages(subjects: Sequence[str], store, codes: Sequence[int],
                        trimming: TrimmingCriteria, criteria: InclusionCriteria,
                        behavior_store: Optional[BehaviorStore] = None,
                        export_average: Optional[AverageExporter] = None) -> GrandAverages:
    """
    Run both averaging stages over ``subjects`` (the canonical order).

    ``store`` is anything with a ``load(subject) -> SubjectRecording`` method.
    Subjects whose recording cannot be loaded, or whose channel layout differs
    from the first loaded subject, are excluded and the run continues.
    ``export_average(recording, code, average, n_trials)`` is called for every
    stage-1 average when given.
    """
    codes = [int(c) for c in codes]
    records: Dict[str, InclusionRecord] = {}
    trial_stats: TrialStatsTable = {}
    summaries: Dict[str, SubjectSummary] = {}
    averages: Dict[str, Dict[int, np.ndarray]] = {}
    layout: Optional[Tuple[Tuple[str, ...], float, np.ndarray]] = None

    logger.info("[averaging] === STAGE 1: INDIVIDUAL SUBJECT PROCESSING ===")
    for n, subject in enumerate(subjects, start=1):
        logger.info(f"[averaging] --- processing subject {subject} ({n}/{len(subjects)}) ---")
        summary = SubjectSummary(subject=subject)
        summaries[subject] = summary

        try:
            recording = store.load(subject)
        except (SubjectNotFoundError, TrialMetadataError, OSError, ValueError) as e:
            logger.warning(f"[averaging] Skipping {subject}: {e}")
            records[subject] = InclusionRecord.unavailable(subject, f"recording unavailable: {e}")
            summary.exclusion_reason = records[subject].exclusion_reason
            for code in codes:
                trial_stats[(subject, code)] = EMPTY_STATS
            continue

        if layout is None:
            layout = (recording.ch_names, recording.sfreq, recording.times)
        elif (recording.ch_names != layout[0] or recording.sfreq != layout[1]
              or not np.allclose(recording.times, layout[2])):
            logger.warning(f"[averaging] Skipping {subject}: channel/time layout differs from first subject")
            records[subject] = InclusionRecord.unavailable(subject, "channel/time layout mismatch")
            summary.exclusion_reason = records[subject].exclusion_reason
            for code in codes:
                trial_stats[(subject, code)] = EMPTY_STATS
            continue

        summary.n_epochs = recording.n_trials
        summary.n_visible_targets = int(np.isin(recording.codes, criteria.visible_target_codes).sum())
        if recording.response_types is not None:
            summary.multiple_key_trials = int((recording.response_types == RESPONSE_MULTIPLE_KEYS).sum())
        if behavior_store is not None:
            counts = behavior_store.load_counts(subject)
            if counts is not None:
                summary.total_beh_trials = counts.total_trials
                summary.too_slow_trials = counts.too_slow

        record, stats, subject_averages = process_subject(recording, codes, trimming, criteria)
        records[subject] = record
        summary.accuracy = record.accuracy
        summary.exclusion_reason = record.exclusion_reason
        summary.status = "included" if record.dataset_included else "excluded"
        for code, code_stats in stats.items():
            trial_stats[(subject, code)] = code_stats

        if record.dataset_included:
            averages[subject] = subject_averages
            if export_average is not None:
                for code, avg in subject_averages.items():
                    export_average(recording, code, avg, stats[code].final)

    inclusion = InclusionTable(subjects, records)
    logger.info("[averaging] === STAGE 2: GRAND AVERAGE CREATION ===")
    logger.info(f"[averaging] subjects included: {len(inclusion.included_subjects)} / {len(subjects)}")
    if not inclusion.included_subjects:
        logger.warning("[averaging] No subjects met inclusion criteria!")

    if layout is None:
        ch_names, sfreq, times = (), 0.0, np.zeros(0)
    else:
        ch_names, sfreq, times = layout
    shape = (len(ch_names), len(times))

    stacks: Dict[int, GrandAverageStack] = {}
    for code in codes:
        stack = stack_condition(code, inclusion, averages, shape)
        stacks[code] = stack
        if stack.is_empty:
            logger.warning(f"[averaging] code {code}: no subjects with sufficient data")
        else:
            logger.info(f"[averaging] code {code}: stored data from {stack.n_subjects} subjects")

    return GrandAverages(
        stacks=stacks,
        inclusion=inclusion,
        trial_stats=trial_stats,
        summaries=summaries,
        codes=codes,
        ch_names=tuple(ch_names),
        sfreq=float(sfreq),
        times=np.asarray(times),
    )

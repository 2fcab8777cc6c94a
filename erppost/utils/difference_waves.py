"""
Difference waves: per-subject paired subtraction of two grand average stacks.

Only subjects included for both conditions contribute. Each subject's slice
is located separately in the minuend and in the subtrahend stack with
``position_of``; stack position i of one condition is in general not the
same subject as position i of the other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

import numpy as np

from erppost.exceptions import ConfigurationError
from erppost.utils.averaging import GrandAverages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DifferenceWaveSpec:
    minuend: int
    subtrahend: int
    name: str

    @classmethod
    def from_row(cls, row, index: int = 0) -> "DifferenceWaveSpec":
        if isinstance(row, dict):
            try:
                row = (row["minuend"], row["subtrahend"], row["name"])
            except KeyError as e:
                raise ConfigurationError(f"difference_wave_table row {index} lacks key {e}") from e
        if isinstance(row, (str, bytes)) or not isinstance(row, Sequence) or len(row) != 3:
            raise ConfigurationError(
                f"difference_wave_table row {index} must be [minuend_code, subtrahend_code, wave_name], got {row!r}"
            )
        minuend, subtrahend, name = row
        try:
            minuend, subtrahend = int(minuend), int(subtrahend)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"difference_wave_table row {index}: codes must be integers, got {row!r}") from e
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"difference_wave_table row {index}: wave name must be a non-empty string")
        return cls(minuend=minuend, subtrahend=subtrahend, name=name.strip())


def parse_difference_wave_table(table) -> List[DifferenceWaveSpec]:
    """Validate the configured table; a malformed table aborts the run."""
    if not table or isinstance(table, (str, bytes)) or not isinstance(table, Iterable):
        raise ConfigurationError("difference_wave_table must be a non-empty list of rows")
    specs = [DifferenceWaveSpec.from_row(row, i) for i, row in enumerate(table)]
    names = [s.name for s in specs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"difference_wave_table has duplicate wave names: {', '.join(duplicates)}")
    return specs


@dataclass
class DifferenceWave:
    name: str
    minuend: int
    subtrahend: int
    data: np.ndarray              # (n_channels, n_times, n_subjects)
    subjects: List[str]

    @property
    def n_subjects(self) -> int:
        return int(self.data.shape[-1])

    def mean(self) -> np.ndarray:
        return self.data.mean(axis=-1)


@dataclass
class DifferenceWaves:
    waves: Dict[str, DifferenceWave] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    table: List[DifferenceWaveSpec] = field(default_factory=list)
    ch_names: tuple = ()
    sfreq: float = 0.0
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __getitem__(self, name: str) -> DifferenceWave:
        return self.waves[name]

    def __contains__(self, name) -> bool:
        return name in self.waves

    @property
    def times_ms(self) -> np.ndarray:
        return self.times * 1000.0


def compute_difference_wave(spec: DifferenceWaveSpec, grand_averages: GrandAverages) -> DifferenceWave:
    """
    Compute one difference wave.

    Raises
    ------
    LookupError
        If an operand has no grand average or no subject has both conditions.
    """
    for code in (spec.minuend, spec.subtrahend):
        if code not in grand_averages or grand_averages[code].is_empty:
            raise LookupError(f"no grand average data for code {code}")

    inclusion = grand_averages.inclusion
    subjects: List[str] = []
    minuend_idx: List[int] = []
    subtrahend_idx: List[int] = []
    for subject in inclusion.included_subjects:
        if inclusion.is_included(subject, spec.minuend) and inclusion.is_included(subject, spec.subtrahend):
            subjects.append(subject)
            minuend_idx.append(inclusion.position_of(subject, spec.minuend))
            subtrahend_idx.append(inclusion.position_of(subject, spec.subtrahend))

    if not subjects:
        raise LookupError("no subjects have sufficient data for both conditions")

    minuend = grand_averages[spec.minuend].data[..., minuend_idx]
    subtrahend = grand_averages[spec.subtrahend].data[..., subtrahend_idx]
    return DifferenceWave(name=spec.name, minuend=spec.minuend, subtrahend=spec.subtrahend,
                          data=minuend - subtrahend, subjects=subjects)


def compute_difference_waves(table, grand_averages: GrandAverages) -> DifferenceWaves:
    """Compute every row of ``table``; rows that cannot be computed are skipped."""
    specs = parse_difference_wave_table(table)
    result = DifferenceWaves(table=specs, ch_names=grand_averages.ch_names,
                             sfreq=grand_averages.sfreq, times=grand_averages.times)

    logger.info(f"[difference_waves] computing {len(specs)} difference waves for "
                f"{len(grand_averages.inclusion.included_subjects)} included subjects")
    for spec in specs:
        try:
            wave = compute_difference_wave(spec, grand_averages)
        except LookupError as e:
            logger.warning(f"[difference_waves] SKIPPED {spec.name} ({spec.minuend} - {spec.subtrahend}): {e}")
            result.skipped[spec.name] = str(e)
            continue
        result.waves[spec.name] = wave
        logger.info(f"[difference_waves] computed {spec.name}: {spec.minuend} - {spec.subtrahend} "
                    f"({wave.n_subjects} subjects)")

    logger.info(f"[difference_waves] requested: {len(specs)}, computed: {len(result.waves)}, "
                f"skipped: {len(result.skipped)}")
    return result

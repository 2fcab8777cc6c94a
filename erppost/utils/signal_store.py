"""
Signal and behaviour stores.

Per-subject epoched recordings are MNE ``-epo.fif`` files whose ``metadata``
table carries one row per epoch with at least ``beh_code`` (condition code)
and ``rt`` (response time, seconds). ``trial_index`` and ``response_type`` are
optional. Averaged outputs are written back as MNE files: subject stacks as
``EpochsArray`` (one epoch per contributing subject, subject id in metadata)
and single averages as ``EvokedArray``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import mne
import numpy as np
import pandas as pd

from erppost.exceptions import SubjectNotFoundError, TrialMetadataError
from erppost.utils.conditions import RESPONSE_TOO_SLOW

logger = logging.getLogger(__name__)

REQUIRED_METADATA = ("beh_code", "rt")


def subject_label(subject: str) -> str:
    """'390001' -> 'sub-390001' (labels already prefixed are returned as is)."""
    subject = str(subject)
    return subject if subject.startswith("sub-") else f"sub-{subject}"


@dataclass(frozen=True)
class SubjectRecording:
    """One subject's preprocessed epochs plus per-epoch behavioural labels."""

    subject: str
    data: np.ndarray          # (n_trials, n_channels, n_times)
    codes: np.ndarray         # (n_trials,) int condition code
    rts: np.ndarray           # (n_trials,) response time in seconds
    ch_names: tuple
    sfreq: float
    times: np.ndarray         # (n_times,) seconds
    trial_index: Optional[np.ndarray] = None
    response_types: Optional[np.ndarray] = None

    def __post_init__(self):
        n = self.data.shape[0]
        if self.codes.shape[0] != n or self.rts.shape[0] != n:
            raise TrialMetadataError(
                f"{self.subject}: {n} epochs but {self.codes.shape[0]} codes / {self.rts.shape[0]} RTs"
            )
        if self.data.shape[1] != len(self.ch_names) or self.data.shape[2] != self.times.shape[0]:
            raise ValueError(f"{self.subject}: data shape {self.data.shape} does not match channels/times")

    @property
    def n_trials(self) -> int:
        return int(self.data.shape[0])

    @property
    def times_ms(self) -> np.ndarray:
        return self.times * 1000.0

    @classmethod
    def from_epochs(cls, subject: str, epochs: mne.BaseEpochs) -> "SubjectRecording":
        metadata = epochs.metadata
        if metadata is None or len(metadata) == 0:
            raise TrialMetadataError(f"{subject}: epochs carry no trial metadata")
        missing = [c for c in REQUIRED_METADATA if c not in metadata.columns]
        if missing:
            raise TrialMetadataError(f"{subject}: epoch metadata lacks column(s) {', '.join(missing)}")

        picks = mne.pick_types(epochs.info, eeg=True, exclude=[])
        if picks.size == 0:
            raise ValueError(f"{subject}: no EEG channels in recording")

        trial_index = metadata["trial_index"].to_numpy() if "trial_index" in metadata else None
        response_types = metadata["response_type"].to_numpy() if "response_type" in metadata else None
        return cls(
            subject=subject,
            data=epochs.get_data(picks=picks),
            codes=metadata["beh_code"].to_numpy().astype(int),
            rts=metadata["rt"].to_numpy().astype(float),
            ch_names=tuple(epochs.ch_names[i] for i in picks),
            sfreq=float(epochs.info["sfreq"]),
            times=np.asarray(epochs.times, dtype=float),
            trial_index=trial_index,
            response_types=response_types,
        )


class SignalStore:
    """Loads subject recordings and writes averaged arrays as MNE files."""

    def __init__(self, epochs_dir, filename: str = "{label}_preprocessed-epo.fif"):
        self.epochs_dir = Path(epochs_dir)
        self.filename = filename

    def path_for(self, subject: str) -> Path:
        label = subject_label(subject)
        return self.epochs_dir / label / self.filename.format(label=label, subject=subject)

    def load(self, subject: str) -> SubjectRecording:
        """
        Load one subject's recording.

        Raises
        ------
        SubjectNotFoundError
            If no file exists for the subject.
        TrialMetadataError
            If the epochs lack the behavioural metadata.
        """
        path = self.path_for(subject)
        if not path.exists():
            raise SubjectNotFoundError(subject, path)
        epochs = mne.read_epochs(path, preload=True, verbose="error")
        recording = SubjectRecording.from_epochs(subject, epochs)
        logger.info(f"[SignalStore] Loaded {recording.n_trials} epochs x {len(recording.ch_names)} channels for {subject}")
        return recording

    @staticmethod
    def _info(ch_names: Sequence[str], sfreq: float, name: str) -> mne.Info:
        info = mne.create_info(list(ch_names), float(sfreq), ch_types="eeg")
        info["description"] = name
        return info

    @staticmethod
    def save_stack(data: np.ndarray, ch_names: Sequence[str], sfreq: float, times: np.ndarray,
                   name: str, path, subjects: Optional[Sequence[str]] = None) -> Optional[Path]:
        """
        Save a channels x times x N stack; each slice becomes one epoch.

        Returns the written path, or None for an empty stack.
        """
        path = Path(path)
        if data.ndim != 3 or data.shape[-1] == 0:
            logger.warning(f"[SignalStore] Not saving empty stack '{name}'")
            return None
        n = data.shape[-1]
        subjects = list(subjects) if subjects is not None else [f"subject_{i + 1}" for i in range(n)]
        if len(subjects) != n:
            raise ValueError(f"'{name}': {n} slices but {len(subjects)} subject labels")

        metadata = pd.DataFrame({"subject": subjects})
        epochs = mne.EpochsArray(
            np.moveaxis(data, -1, 0),
            SignalStore._info(ch_names, sfreq, name),
            tmin=float(times[0]),
            metadata=metadata,
            verbose="error",
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        epochs.save(path, overwrite=True, verbose="error")
        return path

    @staticmethod
    def save_average(data: np.ndarray, ch_names: Sequence[str], sfreq: float, times: np.ndarray,
                     name: str, path, nave: int = 1) -> Path:
        """Save one channels x times average as an Evoked file."""
        path = Path(path)
        evoked = mne.EvokedArray(
            data,
            SignalStore._info(ch_names, sfreq, name),
            tmin=float(times[0]),
            nave=max(int(nave), 1),
            comment=name,
            verbose="error",
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        evoked.save(path, overwrite=True, verbose="error")
        return path


@dataclass(frozen=True)
class BehaviorCounts:
    total_trials: int
    too_slow: int


class BehaviorStore:
    """
    Reads the cleaned behavioural log of a subject (one row per trial, with a
    ``responseType`` column) to count trials that never made it into the
    epochs.
    """

    def __init__(self, behavior_dir, filename: str = "{label}_behavior.csv",
                 expected_trials: Optional[int] = 864):
        self.behavior_dir = Path(behavior_dir)
        self.filename = filename
        self.expected_trials = expected_trials

    def path_for(self, subject: str) -> Path:
        label = subject_label(subject)
        return self.behavior_dir / label / self.filename.format(label=label, subject=subject)

    def load_counts(self, subject: str) -> Optional[BehaviorCounts]:
        path = self.path_for(subject)
        if not path.exists():
            logger.warning(f"[BehaviorStore] Behavioural file not found: {path}")
            return None
        try:
            df = pd.read_csv(path)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.warning(f"[BehaviorStore] Could not read {path}: {e}")
            return None

        total = len(df)
        if self.expected_trials and total != self.expected_trials:
            logger.warning(f"[BehaviorStore] {subject} has {total} behavioural trials, expected {self.expected_trials}")

        if "responseType" in df.columns:
            too_slow = int((df["responseType"] == RESPONSE_TOO_SLOW).sum())
        else:
            logger.warning(f"[BehaviorStore] responseType column not found in {path}")
            too_slow = 0
        return BehaviorCounts(total_trials=total, too_slow=too_slow)

from __future__ import annotations

import logging

import mne
import numpy as np
import pandas as pd

from .base import BaseStep
from erppost.utils.conditions import RESPONSE_TOO_SLOW, VISIBLE_ERROR_CODES
from erppost.utils.signal_store import BehaviorStore, SignalStore

DEFAULT_TRIAL_COUNTS = {111: 80, 112: 20, 113: 20, 102: 20, 104: 20,
                        211: 80, 212: 20, 213: 20, 202: 20, 204: 20}

ERN_ELECTRODES = ("1", "2", "5", "33", "34")
PE_ELECTRODES = ("17", "18", "19", "33", "49")
ERROR_CODES = set(VISIBLE_ERROR_CODES) | {102, 202}


class SyntheticEpochsStep(BaseStep):
    """
    Write small synthetic epoch files and behaviour logs for smoke testing.

    Error trials carry a negative deflection at 0-100 ms over fronto-central
    electrodes and a positive one at 200-500 ms over centro-parietal ones.

    params:
    - subjects: injected by the pipeline
    - sfreq: float (default 100.0)
    - tmin / tmax: epoch limits in seconds (default -0.2 / 0.6)
    - n_channels: int (default 64, labelled "1".."n")
    - trial_counts: {code: n} (default: 80 correct, 20 per other condition)
    - fast_trials_per_code: trials with an RT below 150 ms (default 2)
    - too_slow_trials: behaviour-only rows with responseType 8 (default 4)
    - low_accuracy_subjects: subjects given mostly error trials
    - missing_subjects: subjects for which nothing is written
    - seed: int (default 42)
    """

    def run(self, data):
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[SyntheticEpochsStep] 'paths' parameter is required.")
        subjects = [str(s) for s in self.params.get("subjects") or []]
        sfreq = float(self.params.get("sfreq", 100.0))
        tmin = float(self.params.get("tmin", -0.2))
        tmax = float(self.params.get("tmax", 0.6))
        n_channels = int(self.params.get("n_channels", 64))
        counts = {int(k): int(v) for k, v in self.params.get("trial_counts", DEFAULT_TRIAL_COUNTS).items()}
        n_fast = int(self.params.get("fast_trials_per_code", 2))
        n_too_slow = int(self.params.get("too_slow_trials", 4))
        low_accuracy = {str(s) for s in self.params.get("low_accuracy_subjects", [])}
        missing = {str(s) for s in self.params.get("missing_subjects", [])}
        rng = np.random.RandomState(int(self.params.get("seed", 42)))

        store = SignalStore(paths.epochs_dir, **({"filename": self.params["epochs_filename"]}
                                                  if self.params.get("epochs_filename") else {}))
        beh_store = BehaviorStore(paths.behavior_dir, **({"filename": self.params["behavior_filename"]}
                                                          if self.params.get("behavior_filename") else {}))

        ch_names = [str(i + 1) for i in range(n_channels)]
        info = mne.create_info(ch_names, sfreq, ch_types="eeg")
        times = np.arange(int(round((tmax - tmin) * sfreq)) + 1) / sfreq + tmin
        ern_mask = ((times >= 0.0) & (times <= 0.1)).astype(float)
        pe_mask = ((times >= 0.2) & (times <= 0.5)).astype(float)
        ern_idx = [ch_names.index(c) for c in ERN_ELECTRODES if c in ch_names]
        pe_idx = [ch_names.index(c) for c in PE_ELECTRODES if c in ch_names]

        for subject in subjects:
            if subject in missing:
                logging.info(f"[SyntheticEpochsStep] Not writing data for {subject}")
                continue
            subject_counts = dict(counts)
            if subject in low_accuracy:
                for code in (111, 211):
                    subject_counts[code] = max(1, subject_counts.get(code, 0) // 8)

            codes = np.concatenate([np.full(n, code) for code, n in subject_counts.items()])
            rng.shuffle(codes)
            rts = rng.normal(0.45, 0.07, size=codes.size).clip(0.2, None)
            for code in subject_counts:
                fast = np.flatnonzero(codes == code)[:n_fast]
                rts[fast] = 0.1

            signal = rng.randn(codes.size, n_channels, times.size) * 2e-6
            is_error = np.isin(codes, list(ERROR_CODES))
            signal[np.ix_(is_error, ern_idx)] -= 5e-6 * ern_mask
            signal[np.ix_(is_error, pe_idx)] += 4e-6 * pe_mask

            metadata = pd.DataFrame({
                "trial_index": np.arange(1, codes.size + 1),
                "beh_code": codes,
                "rt": rts,
                "response_type": np.ones(codes.size, dtype=int),
            })
            epochs = mne.EpochsArray(signal, info, tmin=tmin, metadata=metadata, verbose="error")
            out = store.path_for(subject)
            out.parent.mkdir(parents=True, exist_ok=True)
            epochs.save(out, overwrite=True, verbose="error")

            beh = pd.DataFrame({
                "trial": np.arange(1, codes.size + n_too_slow + 1),
                "code": np.concatenate([codes, np.zeros(n_too_slow, dtype=int)]),
                "responseType": np.concatenate([metadata["response_type"].to_numpy(),
                                                np.full(n_too_slow, RESPONSE_TOO_SLOW)]),
            })
            beh_path = beh_store.path_for(subject)
            beh_path.parent.mkdir(parents=True, exist_ok=True)
            beh.to_csv(beh_path, index=False)
            logging.info(f"[SyntheticEpochsStep] Wrote {codes.size} epochs for {subject} to {out}")

        return data

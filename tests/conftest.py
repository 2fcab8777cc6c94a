import os
import sys

import numpy as np
import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from erppost.exceptions import SubjectNotFoundError
from erppost.utils.signal_store import SubjectRecording

PRIMARY_TRIALS = {102: 12, 104: 12, 202: 12, 204: 12}


class FakeStore:
    """In-memory stand-in for SignalStore."""

    def __init__(self, recordings):
        self.recordings = recordings
        self.loaded = []

    def load(self, subject):
        self.loaded.append(subject)
        if subject not in self.recordings:
            raise SubjectNotFoundError(subject)
        return self.recordings[subject]


def _make_recording(subject, trials, scale=1.0, n_channels=3, n_times=5, rt=0.4, extra_correct=50):
    """
    Recording whose every epoch of condition ``code`` equals ``scale * code``.

    ``trials`` maps code -> number of epochs; the primary conditions and
    ``extra_correct`` trials of 211 are added unless given.
    """
    counts = dict(PRIMARY_TRIALS)
    if extra_correct:
        counts[211] = extra_correct
    counts.update(trials)
    codes = np.concatenate([np.full(n, code, dtype=int) for code, n in counts.items() if n > 0])
    data = np.ones((codes.size, n_channels, n_times)) * (scale * codes)[:, None, None]
    return SubjectRecording(
        subject=subject,
        data=data,
        codes=codes,
        rts=np.full(codes.size, rt),
        ch_names=tuple(str(i + 1) for i in range(n_channels)),
        sfreq=100.0,
        times=np.arange(n_times) / 100.0,
    )


@pytest.fixture
def make_recording():
    return _make_recording


@pytest.fixture
def fake_store():
    return FakeStore

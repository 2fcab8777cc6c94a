import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import mne
import numpy as np
import pandas as pd

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from erppost.exceptions import SubjectNotFoundError, TrialMetadataError
from erppost.utils.signal_store import BehaviorStore, SignalStore, SubjectRecording, subject_label


class TestSignalStore(unittest.TestCase):
    """Reading subject epochs and writing averaged arrays with MNE."""

    @classmethod
    def setUpClass(cls):
        cls.temp_dir = tempfile.mkdtemp()
        cls.ch_names = ["1", "2", "3"]
        cls.info = mne.create_info(cls.ch_names, 100.0, ch_types="eeg")
        rng = np.random.RandomState(0)
        cls.data = rng.randn(4, 3, 11) * 1e-6
        metadata = pd.DataFrame({
            "beh_code": [111, 112, 111, 102],
            "rt": [0.4, 0.5, 0.45, 0.6],
            "trial_index": [1, 2, 3, 4],
            "response_type": [1, 1, 7, 1],
        })
        cls.store = SignalStore(Path(cls.temp_dir) / "epochs")
        epochs = mne.EpochsArray(cls.data, cls.info, tmin=-0.05, metadata=metadata, verbose="error")
        path = cls.store.path_for("390001")
        path.parent.mkdir(parents=True)
        epochs.save(path, verbose="error")

        bad = mne.EpochsArray(cls.data, cls.info, tmin=-0.05, verbose="error")
        bad_path = cls.store.path_for("390002")
        bad_path.parent.mkdir(parents=True)
        bad.save(bad_path, verbose="error")

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.temp_dir, ignore_errors=True)

    def test_subject_label(self):
        self.assertEqual(subject_label("390001"), "sub-390001")
        self.assertEqual(subject_label("sub-390001"), "sub-390001")

    def test_load(self):
        recording = self.store.load("390001")
        self.assertEqual(recording.n_trials, 4)
        self.assertEqual(recording.ch_names, tuple(self.ch_names))
        np.testing.assert_array_equal(recording.codes, [111, 112, 111, 102])
        np.testing.assert_allclose(recording.rts, [0.4, 0.5, 0.45, 0.6])
        np.testing.assert_allclose(recording.data, self.data, atol=1e-12)
        self.assertEqual(int((recording.response_types == 7).sum()), 1)
        self.assertAlmostEqual(recording.times_ms[0], -50.0)

    def test_missing_subject(self):
        with self.assertRaises(SubjectNotFoundError):
            self.store.load("399999")

    def test_missing_metadata(self):
        with self.assertRaises(TrialMetadataError):
            self.store.load("390002")

    def test_recording_shape_mismatch(self):
        with self.assertRaises(TrialMetadataError):
            SubjectRecording("s", np.zeros((2, 3, 4)), np.array([111]), np.array([0.4, 0.4]),
                             ("1", "2", "3"), 100.0, np.zeros(4))

    def test_save_stack_and_average(self):
        stack = np.random.RandomState(1).randn(3, 11, 2) * 1e-6
        times = np.arange(11) / 100.0 - 0.05
        out = SignalStore.save_stack(stack, self.ch_names, 100.0, times, "grandAVG 111",
                                     Path(self.temp_dir) / "ga" / "grandAVG_111-epo.fif", subjects=["A", "B"])
        epochs = mne.read_epochs(out, verbose="error")
        self.assertEqual(len(epochs), 2)
        self.assertEqual(list(epochs.metadata["subject"]), ["A", "B"])
        np.testing.assert_allclose(epochs.get_data()[1], stack[..., 1], atol=1e-12)

        empty = SignalStore.save_stack(np.zeros((3, 11, 0)), self.ch_names, 100.0, times, "empty",
                                       Path(self.temp_dir) / "ga" / "empty-epo.fif")
        self.assertIsNone(empty)

        ave = SignalStore.save_average(stack[..., 0], self.ch_names, 100.0, times, "A 111",
                                       Path(self.temp_dir) / "ind" / "A_111-ave.fif", nave=12)
        evoked = mne.read_evokeds(ave, verbose="error")[0]
        self.assertEqual(evoked.nave, 12)


class TestBehaviorStore(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = BehaviorStore(self.temp_dir, expected_trials=6)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_counts(self):
        path = self.store.path_for("390001")
        path.parent.mkdir(parents=True)
        pd.DataFrame({"responseType": [1, 8, 1, 8, 7, 1]}).to_csv(path, index=False)
        counts = self.store.load_counts("390001")
        self.assertEqual(counts.total_trials, 6)
        self.assertEqual(counts.too_slow, 2)

    def test_missing_file(self):
        self.assertIsNone(self.store.load_counts("390001"))


if __name__ == '__main__':
    unittest.main()

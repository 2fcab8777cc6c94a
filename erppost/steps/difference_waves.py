# File: erppost/steps/difference_waves.py

import logging
import pickle

from .base import BaseStep
from erppost.exceptions import MissingArtifactError
from erppost.run_state import RunState
from erppost.utils.difference_waves import compute_difference_waves
from erppost.utils.reporting import write_difference_wave_log
from erppost.utils.signal_store import SignalStore

# (minuend, subtrahend, name): error minus the matching visible correct condition.
DEFAULT_DIFFERENCE_WAVE_TABLE = [
    [112, 111, "diffWave_soc-vis-FE"],
    [113, 111, "diffWave_soc-vis-NFE"],
    [212, 211, "diffWave_nonsoc-vis-FE"],
    [213, 211, "diffWave_nonsoc-vis-NFE"],
    [102, 111, "diffWave_soc-invis-FE"],
    [104, 111, "diffWave_soc-invis-NFG"],
    [202, 211, "diffWave_nonsoc-invis-FE"],
    [204, 211, "diffWave_nonsoc-invis-NFG"],
]


class DifferenceWaveStep(BaseStep):
    """
    Subtract grand averages subject by subject.

    params:
    - difference_wave_table: list of [minuend_code, subtrahend_code, name]
      rows (or {"minuend", "subtrahend", "name"} objects)
    - paths: ProjectPaths, injected by the pipeline
    """

    def run(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[DifferenceWaveStep] 'paths' parameter is required.")
        ga = state.require("grand_averages", "DifferenceWaveStep", "GrandAverageStep")

        table = self.params.get("difference_wave_table", DEFAULT_DIFFERENCE_WAVE_TABLE)
        dw = compute_difference_waves(table, ga)

        for name, wave in dw.waves.items():
            SignalStore.save_stack(wave.data, dw.ch_names, dw.sfreq, dw.times, name,
                                   paths.get_difference_wave_path(name), subjects=wave.subjects)

        bundle = paths.get_bundle_path("difference_waves")
        with open(bundle, "wb") as f:
            pickle.dump(dw, f)
        write_difference_wave_log(dw, paths.get_log_path("difference_waves", "difference_waves_log.txt"))

        logging.info(f"[DifferenceWaveStep] Saved {len(dw.waves)} difference waves to: {bundle.parent}")
        state.difference_waves = dw
        return state

    def load_existing(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[DifferenceWaveStep] 'paths' parameter is required.")
        bundle = paths.run_dir / "difference_waves" / "difference_waves.pkl"
        if not bundle.exists():
            raise MissingArtifactError(f"[DifferenceWaveStep] No difference waves to reload at {bundle}")
        with open(bundle, "rb") as f:
            state.difference_waves = pickle.load(f)
        logging.info(f"[DifferenceWaveStep] Loaded {len(state.difference_waves.waves)} difference waves from {bundle}")
        return state

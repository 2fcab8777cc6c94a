# File: erppost/steps/grand_averages.py

import logging
import pickle

from .base import BaseStep
from erppost.exceptions import MissingArtifactError
from erppost.run_state import RunState
from erppost.utils.averaging import make_grand_averages
from erppost.utils.conditions import code_name, normalize_codes
from erppost.utils.inclusion import InclusionCriteria
from erppost.utils.reporting import write_grand_average_log, write_subject_summary, write_trial_stats
from erppost.utils.signal_store import BehaviorStore, SignalStore
from erppost.utils.trimming import TrimmingCriteria


class GrandAverageStep(BaseStep):
    """
    Trim, select and average every subject, then stack per-condition grand
    averages.

    Expected params:
    --------------------------------------------------------------------------
    paths (ProjectPaths):          injected by the pipeline
    subjects (list of str):        canonical subject order, injected by the pipeline
    codes (list of int):           conditions to process (default: all base + compound codes)
    accuracy_threshold (float):    tier-1 accuracy minimum (default 0.60)
    primary_conditions (dict):     {code: min_trials}, all must pass for dataset inclusion
    secondary_min_trials (dict):   {code: min_trials} for the other conditions
    default_min_trials (int):      fallback minimum (default 10)
    rt_lower_bound_ms (float):     default 150, 0 disables
    rt_outlier_sd (float):         default 3.0, 0 disables
    save_individual_averages (bool): write each subject's average as -ave.fif (default False)
    epochs_filename (str):         pattern for per-subject epochs files
    behavior_filename (str):       pattern for per-subject behaviour CSVs
    expected_trials (int):         behavioural trial count sanity check (default 864)
    --------------------------------------------------------------------------
    """

    def run(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        subjects = [str(s) for s in self.params.get("subjects") or []]
        if paths is None:
            raise ValueError("[GrandAverageStep] 'paths' parameter is required.")
        if not subjects:
            raise ValueError("[GrandAverageStep] No subjects configured.")

        codes = normalize_codes(self.params.get("codes"))
        trimming = TrimmingCriteria.from_params(self.params)
        criteria = InclusionCriteria.from_params(self.params)

        store_kwargs = {}
        if self.params.get("epochs_filename"):
            store_kwargs["filename"] = self.params["epochs_filename"]
        store = SignalStore(paths.epochs_dir, **store_kwargs)

        beh_kwargs = {"expected_trials": self.params.get("expected_trials", 864)}
        if self.params.get("behavior_filename"):
            beh_kwargs["filename"] = self.params["behavior_filename"]
        behavior_store = BehaviorStore(paths.behavior_dir, **beh_kwargs)

        saved = []
        export = None
        if self.params.get("save_individual_averages", False):
            def export(recording, code, average, n_trials):
                out = paths.get_individual_average_path(recording.subject, code)
                SignalStore.save_average(average, recording.ch_names, recording.sfreq, recording.times,
                                         f"{recording.subject} {code} {code_name(code)}", out, nave=n_trials)
                saved.append(out.name)

        logging.info(f"[GrandAverageStep] Processing {len(subjects)} subjects, codes: {codes}")
        ga = make_grand_averages(subjects, store, codes, trimming, criteria,
                                 behavior_store=behavior_store, export_average=export)

        for code in ga.codes:
            stack = ga[code]
            out = SignalStore.save_stack(stack.data, ga.ch_names, ga.sfreq, ga.times,
                                         f"grandAVG {code} {code_name(code)}",
                                         paths.get_grand_average_path(code), subjects=stack.subjects)
            if out is not None:
                saved.append(out.name)

        bundle = paths.get_bundle_path("grand_averages")
        with open(bundle, "wb") as f:
            pickle.dump(ga, f)
        saved.insert(0, bundle.name)

        write_trial_stats(ga, paths.get_log_path("grand_averages", "trial_stats.csv"))
        write_grand_average_log(ga, trimming, criteria,
                                paths.get_log_path("grand_averages", "grand_averages_log.txt"), saved)
        write_subject_summary(ga, paths.get_summary_table_path())

        logging.info(f"[GrandAverageStep] Saved grand averages to: {bundle.parent}")
        state.grand_averages = ga
        return state

    def load_existing(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[GrandAverageStep] 'paths' parameter is required.")
        bundle = paths.run_dir / "grand_averages" / "grand_averages.pkl"
        if not bundle.exists():
            raise MissingArtifactError(f"[GrandAverageStep] No grand averages to reload at {bundle}")
        with open(bundle, "rb") as f:
            state.grand_averages = pickle.load(f)
        logging.info(f"[GrandAverageStep] Loaded grand averages from {bundle} "
                     f"({len(state.grand_averages.inclusion.included_subjects)} included subjects)")
        return state

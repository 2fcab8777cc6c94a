# File: erppost/steps/project_paths.py

from datetime import date
from pathlib import Path

from erppost.utils.conditions import code_name
from erppost.utils.signal_store import subject_label

STAGE_DIRS = ("individual_averages", "grand_averages", "difference_waves", "electrode_clusters")


def default_output_label(today=None):
    """'<YYYY-MM-DD>_erp-postprocessing'"""
    today = today or date.today()
    return f"{today:%Y-%m-%d}_erp-postprocessing"


class ProjectPaths:
    """
    Central class for all file and directory paths.
    Each method here returns the *final* path for reading/writing; output
    directories are created when a path inside them is requested.

    Run outputs live under ``<derivatives_dir>/<output_label>/``. Set
    ``output_label`` explicitly to reload artifacts of an earlier run.
    """

    def __init__(self, config):
        directory = config["directory"]
        self.base_dir = Path(directory["root"]).resolve()
        self.epochs_dir = self.base_dir / directory["epochs_dir"]
        self.behavior_dir = self.base_dir / directory.get("behavior_dir", directory["epochs_dir"])
        self.derivatives_dir = self.base_dir / directory["derivatives_dir"]
        self.reports_dir = self.base_dir / directory.get("reports_dir", "reports")
        self.output_label = config.get("output_label") or default_output_label()
        self.run_dir = self.derivatives_dir / self.output_label

    def get_stage_dir(self, stage):
        """Output directory of one pipeline stage (e.g. 'grand_averages')."""
        if stage not in STAGE_DIRS:
            raise ValueError(f"Unknown stage '{stage}'. Expected one of: {', '.join(STAGE_DIRS)}")
        path = self.run_dir / stage
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_bundle_path(self, stage):
        """Pickle bundle a stage writes and reloads when disabled."""
        return self.get_stage_dir(stage) / f"{stage}.pkl"

    def get_grand_average_path(self, code):
        return self.get_stage_dir("grand_averages") / f"grandAVG_{code}_{code_name(code)}-epo.fif"

    def get_individual_average_path(self, subject, code):
        label = subject_label(subject)
        return self.get_stage_dir("individual_averages") / f"individualAVG_{label}_{code}_{code_name(code)}-ave.fif"

    def get_difference_wave_path(self, name):
        return self.get_stage_dir("difference_waves") / f"{name}-epo.fif"

    def get_log_path(self, stage, name):
        return self.get_stage_dir(stage) / name

    def get_report_path(self, name):
        """Run-level reports (processing report, console log)."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir / name

    def get_summary_table_path(self):
        """Subject summary table, kept with the other study-level reports."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        return self.reports_dir / f"subject_summary_table_{self.output_label}.tsv"

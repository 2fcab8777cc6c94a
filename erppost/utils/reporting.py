"""
Audit tables, text logs and the end-of-run processing report.

Everything here only reads the results of the core stages; nothing feeds back
into the computation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from erppost.utils.averaging import GrandAverages
from erppost.utils.clusters import ClusterResult
from erppost.utils.conditions import BASE_CODES, code_name
from erppost.utils.difference_waves import DifferenceWaves
from erppost.utils.inclusion import InclusionCriteria
from erppost.utils.trimming import TrimmingCriteria

logger = logging.getLogger(__name__)

# Volts -> microvolts for the human-readable summaries.
UV = 1e6


def short_code_label(code: int) -> str:
    """'111 (soc-vis-corr)' style column label."""
    name = code_name(code).replace("social", "soc").replace("_", "-")
    return f"{code} ({name})"


def _pct(part: float, whole: float) -> float:
    return float(part) / whole * 100.0 if whole else float("nan")


def trial_stats_table(ga: GrandAverages) -> pd.DataFrame:
    """Long table: one row per subject x code with the trimming counts."""
    rows = []
    for subject in ga.inclusion.canonical_order:
        for code in ga.codes:
            stats = ga.stats_for(subject, code)
            rows.append({
                "subject": subject,
                "code": code,
                "condition": code_name(code),
                **stats.as_dict(),
                "included": ga.inclusion.is_included(subject, code),
            })
    return pd.DataFrame(rows, columns=["subject", "code", "condition", "original", "after_rt_min",
                                       "after_outliers", "final", "included"])


def subject_summary_table(ga: GrandAverages) -> pd.DataFrame:
    """One row per requested subject, in canonical order."""
    codes = [c for c in BASE_CODES if c in ga.codes]
    rows = []
    for subject in ga.inclusion.canonical_order:
        summary = ga.summaries[subject]
        finals = {code: ga.stats_for(subject, code).final for code in codes}
        removed_rt = sum(ga.stats_for(subject, c).removed_rt_min for c in codes)
        removed_out = sum(ga.stats_for(subject, c).removed_outliers for c in codes)
        raw_total = summary.total_beh_trials or summary.n_epochs

        row = {
            "ID": subject,
            "Status": summary.status,
            "Exclusion Reason": summary.exclusion_reason or "",
            "Overall Accuracy (%)": round(summary.accuracy * 100, 1) if summary.accuracy is not None else np.nan,
            "Total Epochs Loaded": summary.n_epochs,
            "Multiple Key (nr)": summary.multiple_key_trials,
            "Multiple Key (%)": round(_pct(summary.multiple_key_trials, raw_total), 2),
            "Too Slow (nr)": summary.too_slow_trials,
            "Too Slow (%)": round(_pct(summary.too_slow_trials, raw_total), 2),
            "RT Min Removed (nr)": removed_rt,
            "RT Min Removed (%)": round(_pct(removed_rt, raw_total), 2),
            "RT Outliers Removed (nr)": removed_out,
            "RT Outliers Removed (%)": round(_pct(removed_out, raw_total), 2),
            "Total Usable Epochs": sum(finals.values()),
        }
        for code in codes:
            row[short_code_label(code)] = finals[code]
        row["sum soc-vis-err"] = finals.get(112, 0) + finals.get(113, 0)
        row["sum nonsoc-vis-err"] = finals.get(212, 0) + finals.get(213, 0)
        nonzero = [n for n in finals.values() if n > 0]
        row["Lowest Trial Count"] = min(nonzero) if nonzero else 0
        rows.append(row)
    return pd.DataFrame(rows)


def write_trial_stats(ga: GrandAverages, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    trial_stats_table(ga).to_csv(path, index=False)
    return path


def write_subject_summary(ga: GrandAverages, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    subject_summary_table(ga).to_csv(path, sep="\t", index=False, na_rep="n/a")
    logger.info(f"[reporting] Subject summary table saved to {path}")
    return path


def write_grand_average_log(ga: GrandAverages, trimming: TrimmingCriteria, criteria: InclusionCriteria,
                            path, saved_files: Optional[List[str]] = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    inclusion = ga.inclusion
    included = inclusion.included_subjects

    lines = [
        "=== GRAND AVERAGES PROCESSING LOG ===",
        f"processing date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        "parameters:",
        "  - min trials per code:",
    ]
    lines += [f"    - {code} ({code_name(code)}): {criteria.min_trials_for(code)} trials"
              + (" [primary]" if code in criteria.primary_conditions else "")
              for code in ga.codes]
    lines += [
        f"  - accuracy threshold: {criteria.accuracy_threshold:.2f}",
        f"  - rt lower bound: {trimming.rt_lower_bound_ms:g} ms",
        f"  - rt outlier threshold: {trimming.rt_outlier_sd:.1f} SD",
        "",
        "=== INCLUSION SUMMARY ===",
        f"total subjects processed: {len(inclusion)}",
        f"subjects included: {len(included)}",
        f"subjects excluded: {len(inclusion.excluded_subjects)}",
        f"included subjects: {', '.join(included)}",
    ]
    for subject in inclusion.excluded_subjects:
        lines.append(f"  excluded {subject}: {inclusion[subject].exclusion_reason}")

    lines += ["", "=== DETAILED TRIAL STATISTICS ===",
              "subject\tcode\toriginal\tafter_rt_min\tafter_outliers\tfinal"]
    for subject in inclusion.canonical_order:
        for code in ga.codes:
            s = ga.stats_for(subject, code)
            lines.append(f"{subject}\t{code}\t{s.original}\t{s.after_rt_min}\t{s.after_outliers}\t{s.final}")

    lines += ["", "=== GRAND AVERAGE CREATION ==="]
    for code in ga.codes:
        stack = ga[code]
        lines.append(f"code {code} ({code_name(code)}):")
        lines.append(f"  - subjects contributing: {stack.n_subjects}")
        if stack.is_empty:
            lines.append("  - WARNING: no subjects with sufficient data")
        else:
            lines.append(f"  - subject list: {', '.join(stack.subjects)}")
            n_ch, n_t, n_s = stack.data.shape
            lines.append(f"  - data dimensions: [{n_ch} channels x {n_t} timepoints x {n_s} subjects]")

    # Cumulative figures over included subjects only.
    n_targets = sum(ga.summaries[s].n_visible_targets for s in included)
    n_correct = sum(round(ga.summaries[s].accuracy * ga.summaries[s].n_visible_targets) for s in included)
    base = [c for c in ga.codes if c in BASE_CODES]
    original = sum(ga.stats_for(s, c).original for s in included for c in base)
    removed_rt = sum(ga.stats_for(s, c).removed_rt_min for s in included for c in base)
    removed_out = sum(ga.stats_for(s, c).removed_outliers for s in included for c in base)
    final = sum(ga.stats_for(s, c).final for s in included for c in base)
    lines += [
        "",
        "=== GRAND AVERAGE SUMMARY ===",
        "cumulative accuracy across all included subjects:",
        f"  - correct visible-target trials: {n_correct}",
        f"  - visible-target trials: {n_targets}",
        f"  - cumulative accuracy: {_pct(n_correct, n_targets):.2f}%",
        "",
        "trial processing across all subjects & base conditions:",
        f"  - original trials: {original}",
        f"  - trials removed (< {trimming.rt_lower_bound_ms:g} ms): {removed_rt} ({_pct(removed_rt, original):.1f}%)",
        f"  - trials removed (outliers): {removed_out} ({_pct(removed_out, original):.1f}%)",
        f"  - final trials used: {final} ({_pct(final, original):.1f}%)",
    ]
    if saved_files:
        lines += ["", "=== FILE OUTPUTS ==="] + [f"  - {name}" for name in saved_files]
    lines += ["", "=== PROCESSING COMPLETED ===", f"end time: {datetime.now():%Y-%m-%d %H:%M:%S}", ""]

    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def write_difference_wave_log(dw: DifferenceWaves, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        "=== DIFFERENCE WAVES PROCESSING LOG ===",
        f"processing date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"difference waves requested: {len(dw.table)}",
        "",
    ]
    for n, spec in enumerate(dw.table, start=1):
        lines.append(f"{n}. {spec.name}: {spec.minuend} ({code_name(spec.minuend)}) - "
                     f"{spec.subtrahend} ({code_name(spec.subtrahend)})")
        if spec.name in dw:
            wave = dw[spec.name]
            n_ch, n_t, n_s = wave.data.shape
            lines.append(f"   status: computed ({wave.n_subjects} subjects)")
            lines.append(f"   subjects: {', '.join(wave.subjects)}")
            lines.append(f"   data dimensions: [{n_ch} channels x {n_t} timepoints x {n_s} subjects]")
        else:
            lines.append(f"   status: SKIPPED ({dw.skipped.get(spec.name, 'unknown reason')})")
    lines += [
        "",
        "=== SUMMARY ===",
        f"computed: {len(dw.waves)}",
        f"skipped: {len(dw.skipped)}",
        "",
    ]
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def write_cluster_results(results: Dict[str, ClusterResult], json_path, summary_path) -> Path:
    json_path = Path(json_path)
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump({name: r.as_dict() for name, r in results.items()}, f, indent=2)

    lines = ["=== ELECTRODE CLUSTERS SUMMARY ===",
             f"generated: {datetime.now():%Y-%m-%d %H:%M:%S}", ""]
    for name, r in results.items():
        lines += [
            f"{name} component ({r.time_window_ms[0]:g}-{r.time_window_ms[1]:g} ms, {r.strategy}):",
            f"  electrodes: [{', '.join(r.electrodes)}]",
            f"  mean amplitude: {r.mean_amplitude * UV:.3f} uV",
            f"  peak amplitude: {r.peak_amplitude * UV:.3f} uV at {r.peak_time_ms:g} ms (electrode {r.peak_electrode})",
            f"  candidates evaluated: {r.n_candidates}",
        ]
        if r.gating_electrode is not None:
            lines.append(f"  maximal deflection electrode: {r.gating_electrode}")
        if r.reference_waves:
            lines.append(f"  reference waves: {', '.join(r.reference_waves)}")
        lines.append("")
    Path(summary_path).write_text("\n".join(lines), encoding="utf-8")
    return json_path


def load_cluster_results(json_path) -> Dict[str, ClusterResult]:
    with open(json_path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    results = {}
    for name, d in raw.items():
        d = dict(d)
        d["electrodes"] = tuple(d["electrodes"])
        d["time_window_ms"] = tuple(d["time_window_ms"])
        results[name] = ClusterResult(**d)
    return results


@dataclass
class StepRecord:
    name: str
    status: str                 # "executed" | "reloaded"
    duration_s: float = 0.0


@dataclass
class ProcessingReport:
    """What happened during one run."""

    output_dir: str = ""
    subjects_requested: List[str] = field(default_factory=list)
    started: datetime = field(default_factory=datetime.now)
    finished: Optional[datetime] = None
    steps: List[StepRecord] = field(default_factory=list)

    def add_step(self, name: str, status: str, duration_s: float):
        self.steps.append(StepRecord(name, status, round(duration_s, 3)))

    def as_dict(self, ga: Optional[GrandAverages] = None, dw: Optional[DifferenceWaves] = None,
                clusters: Optional[Dict[str, ClusterResult]] = None) -> dict:
        finished = self.finished or datetime.now()
        report = {
            "started": self.started.isoformat(timespec="seconds"),
            "finished": finished.isoformat(timespec="seconds"),
            "duration_s": round((finished - self.started).total_seconds(), 3),
            "output_dir": self.output_dir,
            "subjects_requested": list(self.subjects_requested),
            "steps": [vars(s) for s in self.steps],
        }
        if ga is not None:
            report["grand_averages"] = {
                "codes": list(ga.codes),
                "included_subjects": ga.inclusion.included_subjects,
                "excluded_subjects": {s: ga.inclusion[s].exclusion_reason
                                      for s in ga.inclusion.excluded_subjects},
                "subjects_per_code": {str(c): ga[c].n_subjects for c in ga.codes},
            }
        if dw is not None:
            report["difference_waves"] = {
                "computed": {name: w.n_subjects for name, w in dw.waves.items()},
                "skipped": dict(dw.skipped),
            }
        if clusters is not None:
            report["electrode_clusters"] = {name: r.as_dict() for name, r in clusters.items()}
        return report


def write_processing_report(report: dict, json_path, text_path) -> Path:
    json_path = Path(json_path)
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)

    lines = [
        "=== ERP POSTPROCESSING SUMMARY REPORT ===",
        f"start time: {report['started']}",
        f"end time: {report['finished']}",
        f"total duration: {report['duration_s']:.1f} s",
        f"output directory: {report['output_dir']}",
        f"subjects requested: {len(report['subjects_requested'])}",
        f"subject list: {', '.join(report['subjects_requested'])}",
        "",
        "=== STEPS ===",
    ]
    for step in report["steps"]:
        lines.append(f"{step['name']}: {step['status']} ({step['duration_s']:.1f} s)")
    ga = report.get("grand_averages")
    if ga:
        n_req = len(report["subjects_requested"])
        n_inc = len(ga["included_subjects"])
        lines += [
            "",
            "=== GRAND AVERAGES ===",
            f"subjects included: {n_inc}/{n_req} ({_pct(n_inc, n_req):.1f}%)",
            f"included subjects: {', '.join(ga['included_subjects'])}",
        ]
        lines += [f"excluded {s}: {reason}" for s, reason in ga["excluded_subjects"].items()]
        lines += [f"code {c}: {n} subjects" for c, n in ga["subjects_per_code"].items()]
    dw = report.get("difference_waves")
    if dw:
        lines += ["", "=== DIFFERENCE WAVES ===", f"computed: {len(dw['computed'])}"]
        lines += [f"  - {name}: {n} subjects" for name, n in dw["computed"].items()]
        lines.append(f"skipped: {len(dw['skipped'])}")
        lines += [f"  - {name}: {reason}" for name, reason in dw["skipped"].items()]
    clusters = report.get("electrode_clusters")
    if clusters:
        lines += ["", "=== ELECTRODE CLUSTERS ==="]
        lines += [f"{name}: [{', '.join(c['electrodes'])}] mean {c['mean_amplitude'] * UV:.3f} uV"
                  for name, c in clusters.items()]
    lines += ["", "=== PROCESSING COMPLETED ===", ""]
    Path(text_path).write_text("\n".join(lines), encoding="utf-8")
    return json_path


def console_summary(report: dict) -> str:
    lines = ["", "=== POSTPROCESSING COMPLETE ==="]
    ga = report.get("grand_averages")
    if ga:
        lines.append(f"included subjects: {len(ga['included_subjects'])}")
    lines.append(f"output saved to: {report['output_dir']}")
    lines.append("steps: " + ", ".join(f"{s['name']} ({s['status']})" for s in report["steps"]))
    lines.append(f"total duration: {report['duration_s']:.1f} s")
    return "\n".join(lines)

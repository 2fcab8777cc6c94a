# File: erppost/steps/electrode_clusters.py

import logging

from .base import BaseStep
from erppost.exceptions import ConfigurationError, MissingArtifactError
from erppost.run_state import RunState
from erppost.utils.clusters import ClusterSearchConfig, find_electrode_clusters, reference_waveform
from erppost.utils.reporting import load_cluster_results, write_cluster_results


class ElectrodeClusterStep(BaseStep):
    """
    Select ERN and Pe electrode clusters on the mean of the reference
    difference waves.

    params:
    - cluster_strategy: "exhaustive" (default) or "deflection_gated"
    - cluster_size: electrodes per cluster for the exhaustive search (1-5, default 4)
    - search_region, adjacency_graph, midline_electrodes: electrode layout
      (defaults: the study cap, see erppost.utils.electrode_layout)
    - candidate_clusters: {component: [[labels], ...]} for deflection_gated
    - component_windows: {component: [start_ms, end_ms]}
    - component_polarity: {component: "negative" | "positive"}
    - reference_waves: difference wave names averaged into the reference
    """

    def run(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[ElectrodeClusterStep] 'paths' parameter is required.")
        dw = state.require("difference_waves", "ElectrodeClusterStep", "DifferenceWaveStep")
        config = ClusterSearchConfig.from_params(self.params)

        used = [name for name in config.reference_waves if name in dw]
        missing = [name for name in config.reference_waves if name not in dw]
        if missing:
            logging.warning(f"[ElectrodeClusterStep] Reference waves not available: {', '.join(missing)}")
        if not used:
            raise ConfigurationError("[ElectrodeClusterStep] None of the reference difference waves were computed")
        logging.info(f"[ElectrodeClusterStep] Reference waveform from: {', '.join(used)}")

        reference = reference_waveform([dw[name].data for name in used])
        results = find_electrode_clusters(reference, dw.ch_names, dw.times_ms, config)
        for result in results.values():
            result.reference_waves = list(used)

        out_dir = paths.get_stage_dir("electrode_clusters")
        write_cluster_results(results, out_dir / "electrode_clusters.json",
                              out_dir / "electrode_clusters_summary.txt")
        logging.info(f"[ElectrodeClusterStep] Saved electrode clusters to: {out_dir}")
        state.clusters = results
        return state

    def load_existing(self, data):
        state = data if data is not None else RunState()
        paths = self.params.get("paths")
        if paths is None:
            raise ValueError("[ElectrodeClusterStep] 'paths' parameter is required.")
        path = paths.run_dir / "electrode_clusters" / "electrode_clusters.json"
        if not path.exists():
            raise MissingArtifactError(f"[ElectrodeClusterStep] No electrode clusters to reload at {path}")
        state.clusters = load_cluster_results(path)
        logging.info(f"[ElectrodeClusterStep] Loaded clusters for {', '.join(state.clusters)} from {path}")
        return state

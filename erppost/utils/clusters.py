"""
Electrode cluster selection for the ERN (negative-going) and Pe
(positive-going) components.

Two strategies share one selection routine:

* ``exhaustive``: every combination of ``cluster_size`` electrodes from the
  component's search region that satisfies the midline, connectivity and
  compactness constraints is a candidate; all candidates are eligible.
* ``deflection_gated``: a fixed list of candidate clusters; only candidates
  containing the electrode with the maximal deflection (over the search
  region and time window) are eligible.

Among eligible candidates the one with the most extreme mean amplitude over
the time window wins; on ties the first candidate evaluated is kept.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from erppost.exceptions import ConfigurationError
from erppost.utils import electrode_layout

logger = logging.getLogger(__name__)

STRATEGIES = ("exhaustive", "deflection_gated")
POLARITIES = ("negative", "positive")


class ElectrodeGraph:
    """
    Immutable electrode adjacency graph.

    Edges follow the neighbour table as written: ``{"34": ["37"]}`` lets a
    search step from 34 to 37 but not back unless 37 also lists 34.
    """

    def __init__(self, adjacency: Mapping[str, Iterable[str]]):
        nodes = {str(node) for node in adjacency}
        adj: Dict[str, Tuple[str, ...]] = {}
        for node, neighbors in adjacency.items():
            node = str(node)
            listed: List[str] = []
            for other in neighbors:
                other = str(other)
                if other not in nodes:
                    raise ConfigurationError(
                        f"[ElectrodeGraph] electrode {node} lists unknown neighbour {other}"
                    )
                if other != node and other not in listed:
                    listed.append(other)
            adj[node] = tuple(listed)
        self._adj: Dict[str, Tuple[str, ...]] = adj
        self._distances: Dict[str, Dict[str, int]] = {}

    def __contains__(self, node) -> bool:
        return str(node) in self._adj

    def neighbors(self, node: str) -> Tuple[str, ...]:
        return self._adj[str(node)]

    def _bfs(self, source: str) -> Dict[str, int]:
        if source not in self._distances:
            dist = {source: 0}
            queue = deque([source])
            while queue:
                current = queue.popleft()
                for nb in self._adj[current]:
                    if nb not in dist:
                        dist[nb] = dist[current] + 1
                        queue.append(nb)
            self._distances[source] = dist
        return self._distances[source]

    def distance(self, a: str, b: str) -> float:
        """Shortest path length from ``a`` to ``b`` (inf if unreachable)."""
        return self._bfs(str(a)).get(str(b), float("inf"))

    def is_connected(self, cluster: Sequence[str]) -> bool:
        """True if every member is reachable from the first one through members only."""
        cluster = [str(e) for e in cluster]
        members = set(cluster)
        if len(members) <= 1:
            return True
        seen = {cluster[0]}
        queue = deque([cluster[0]])
        while queue:
            current = queue.popleft()
            for nb in self._adj[current]:
                if nb in members and nb not in seen:
                    seen.add(nb)
                    queue.append(nb)
        return seen == members

    def max_distance(self, cluster: Sequence[str]) -> float:
        """Largest distance from an earlier member to a later one."""
        return max((self.distance(a, b) for a, b in combinations(cluster, 2)), default=0)


def midline_minimum(cluster_size: int) -> int:
    if cluster_size <= 2:
        return 1
    if cluster_size <= 4:
        return 2
    return 3


def max_allowed_distance(cluster_size: int) -> int:
    return 2 if cluster_size <= 4 else 3


def generate_valid_clusters(search_region: Sequence[str], cluster_size: int,
                            midline: Iterable[str], graph: ElectrodeGraph) -> List[Tuple[str, ...]]:
    """All combinations of the search region meeting the spatial constraints, in combination order."""
    midline = set(midline)
    min_midline = midline_minimum(cluster_size)
    max_dist = max_allowed_distance(cluster_size)
    valid = []
    for cluster in combinations(search_region, cluster_size):
        if sum(e in midline for e in cluster) < min_midline:
            continue
        if not graph.is_connected(cluster):
            continue
        if graph.max_distance(cluster) > max_dist:
            continue
        valid.append(cluster)
    return valid


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    polarity: str
    time_window_ms: Tuple[float, float]
    search_region: Tuple[str, ...]
    candidate_clusters: Tuple[Tuple[str, ...], ...] = ()

    def __post_init__(self):
        if self.polarity not in POLARITIES:
            raise ConfigurationError(f"[{self.name}] polarity must be one of {POLARITIES}, got {self.polarity!r}")
        if len(self.time_window_ms) != 2 or self.time_window_ms[0] > self.time_window_ms[1]:
            raise ConfigurationError(f"[{self.name}] time window must be [start, end] with start <= end")
        if not self.search_region:
            raise ConfigurationError(f"[{self.name}] search region is empty")

    @property
    def is_negative(self) -> bool:
        return self.polarity == "negative"


@dataclass(frozen=True)
class ClusterSearchConfig:
    """Validated parameters of the electrode cluster selector."""

    strategy: str
    components: Tuple[ComponentSpec, ...]
    graph: Optional[ElectrodeGraph] = None
    cluster_size: int = 4
    midline_electrodes: Tuple[str, ...] = ()
    reference_waves: Tuple[str, ...] = tuple(electrode_layout.REFERENCE_WAVES)

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise ConfigurationError(f"cluster_strategy must be one of {STRATEGIES}, got {self.strategy!r}")
        if not self.components:
            raise ConfigurationError("no components configured for cluster selection")
        if not self.reference_waves:
            raise ConfigurationError("reference_waves must name at least one difference wave")
        if self.strategy == "exhaustive":
            if isinstance(self.cluster_size, bool) or not isinstance(self.cluster_size, int) \
                    or not 1 <= self.cluster_size <= 5:
                raise ConfigurationError(f"cluster_size must be an integer in 1..5, got {self.cluster_size!r}")
            if self.graph is None:
                raise ConfigurationError("exhaustive cluster search needs an adjacency graph")
            for comp in self.components:
                unknown = [e for e in comp.search_region if e not in self.graph]
                if unknown:
                    raise ConfigurationError(
                        f"[{comp.name}] search region electrodes missing from adjacency graph: {', '.join(unknown)}"
                    )
        else:
            for comp in self.components:
                if not comp.candidate_clusters:
                    raise ConfigurationError(f"[{comp.name}] deflection_gated strategy needs candidate_clusters")
                if any(len(c) == 0 or len(set(c)) != len(c) for c in comp.candidate_clusters):
                    raise ConfigurationError(f"[{comp.name}] candidate clusters must be non-empty without duplicates")

    @classmethod
    def from_params(cls, params: dict) -> "ClusterSearchConfig":
        strategy = params.get("cluster_strategy", "exhaustive")
        windows = params.get("component_windows", electrode_layout.COMPONENT_WINDOWS)
        polarity = params.get("component_polarity", electrode_layout.COMPONENT_POLARITY)
        regions = params.get("search_region", electrode_layout.SEARCH_REGIONS)
        candidates = params.get("candidate_clusters", {})

        components = []
        for name, window in windows.items():
            if name not in polarity:
                raise ConfigurationError(f"no polarity configured for component {name}")
            if name not in regions:
                raise ConfigurationError(f"no search region configured for component {name}")
            components.append(ComponentSpec(
                name=name,
                polarity=polarity[name],
                time_window_ms=tuple(float(t) for t in window),
                search_region=tuple(str(e) for e in regions[name]),
                candidate_clusters=tuple(tuple(str(e) for e in c) for c in candidates.get(name, [])),
            ))

        adjacency = params.get("adjacency_graph", electrode_layout.ADJACENCY)
        return cls(
            strategy=strategy,
            components=tuple(components),
            graph=ElectrodeGraph(adjacency) if adjacency else None,
            cluster_size=params.get("cluster_size", 4),
            midline_electrodes=tuple(str(e) for e in params.get("midline_electrodes",
                                                                 electrode_layout.MIDLINE_ELECTRODES)),
            reference_waves=tuple(params.get("reference_waves", electrode_layout.REFERENCE_WAVES)),
        )


@dataclass
class ClusterResult:
    component: str
    electrodes: Tuple[str, ...]
    time_window_ms: Tuple[float, float]
    mean_amplitude: float
    peak_amplitude: float
    peak_time_ms: float
    peak_electrode: str
    strategy: str
    n_candidates: int
    gating_electrode: Optional[str] = None
    reference_waves: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "component": self.component,
            "electrodes": list(self.electrodes),
            "time_window_ms": list(self.time_window_ms),
            "mean_amplitude": self.mean_amplitude,
            "peak_amplitude": self.peak_amplitude,
            "peak_time_ms": self.peak_time_ms,
            "peak_electrode": self.peak_electrode,
            "strategy": self.strategy,
            "n_candidates": self.n_candidates,
            "gating_electrode": self.gating_electrode,
            "reference_waves": list(self.reference_waves),
        }


def reference_waveform(waves: Sequence[np.ndarray]) -> np.ndarray:
    """
    Unweighted mean over waves of each wave's subject mean.

    Each wave is channels x times x subjects; subject counts may differ.
    """
    if not waves:
        raise ConfigurationError("no difference waves available for the reference waveform")
    return np.mean([np.asarray(w).mean(axis=-1) for w in waves], axis=0)


def window_slice(times_ms: np.ndarray, window: Sequence[float]) -> slice:
    """Samples with ``start <= t <= end``."""
    idx = np.flatnonzero((times_ms >= window[0]) & (times_ms <= window[1]))
    if idx.size == 0:
        raise ConfigurationError(f"time window {list(window)} ms contains no samples")
    return slice(int(idx[0]), int(idx[-1]) + 1)


def _channel_index(ch_names: Sequence[str], electrodes: Iterable[str]) -> Dict[str, int]:
    lookup = {name: i for i, name in enumerate(ch_names)}
    missing = [e for e in electrodes if e not in lookup]
    if missing:
        raise ConfigurationError(f"electrode(s) not found in channel list: {', '.join(sorted(set(missing)))}")
    return lookup


def find_extreme_point(data: np.ndarray, ch_names: Sequence[str], electrodes: Sequence[str],
                       window: slice, negative: bool) -> Tuple[str, int]:
    """Electrode and sample index of the most negative/positive value."""
    lookup = _channel_index(ch_names, electrodes)
    block = data[[lookup[e] for e in electrodes], window]
    flat = np.argmin(block) if negative else np.argmax(block)
    el, t = np.unravel_index(flat, block.shape)
    return electrodes[int(el)], window.start + int(t)


def select_cluster(data: np.ndarray, ch_names: Sequence[str], times_ms: np.ndarray,
                   component: ComponentSpec, candidates: Sequence[Tuple[str, ...]],
                   strategy: str, gating_electrode: Optional[str] = None) -> ClusterResult:
    """
    Pick the candidate with the most extreme mean amplitude over the window.

    With ``gating_electrode`` set, candidates not containing it are ignored.
    """
    window = window_slice(times_ms, component.time_window_ms)
    lookup = _channel_index(ch_names, {e for c in candidates for e in c})
    negative = component.is_negative

    best = None
    n_eligible = 0
    for cluster in candidates:
        if gating_electrode is not None and gating_electrode not in cluster:
            continue
        n_eligible += 1
        cluster_data = data[[lookup[e] for e in cluster], window]
        amplitude = float(cluster_data.mean())
        if best is None or (amplitude < best[0] if negative else amplitude > best[0]):
            best = (amplitude, cluster, cluster_data)

    if best is None:
        raise ConfigurationError(
            f"[{component.name}] no eligible candidate cluster contains the maximal deflection "
            f"electrode {gating_electrode}"
        )

    amplitude, cluster, cluster_data = best
    flat = np.argmin(cluster_data) if negative else np.argmax(cluster_data)
    el, t = np.unravel_index(flat, cluster_data.shape)
    return ClusterResult(
        component=component.name,
        electrodes=tuple(cluster),
        time_window_ms=tuple(component.time_window_ms),
        mean_amplitude=amplitude,
        peak_amplitude=float(cluster_data[el, t]),
        peak_time_ms=float(times_ms[window.start + int(t)]),
        peak_electrode=cluster[int(el)],
        strategy=strategy,
        n_candidates=n_eligible,
        gating_electrode=gating_electrode,
    )


def select_exhaustive(data, ch_names, times_ms, component: ComponentSpec,
                      config: ClusterSearchConfig) -> ClusterResult:
    candidates = generate_valid_clusters(component.search_region, config.cluster_size,
                                         config.midline_electrodes, config.graph)
    if not candidates:
        raise ConfigurationError(f"no valid clusters found for {component.name} with size {config.cluster_size}")
    logger.info(f"[clusters] evaluating {len(candidates)} valid {component.name} clusters")
    return select_cluster(data, ch_names, times_ms, component, candidates, "exhaustive")


def select_deflection_gated(data, ch_names, times_ms, component: ComponentSpec) -> ClusterResult:
    window = window_slice(times_ms, component.time_window_ms)
    gate, sample = find_extreme_point(data, ch_names, component.search_region, window, component.is_negative)
    logger.info(f"[clusters] {component.name} maximal deflection at electrode {gate}, {times_ms[sample]:.0f} ms")
    return select_cluster(data, ch_names, times_ms, component, component.candidate_clusters,
                          "deflection_gated", gating_electrode=gate)


def find_electrode_clusters(reference: np.ndarray, ch_names: Sequence[str], times_ms: np.ndarray,
                            config: ClusterSearchConfig) -> Dict[str, ClusterResult]:
    """Select one cluster per configured component on the reference waveform."""
    results: Dict[str, ClusterResult] = {}
    times_ms = np.asarray(times_ms, dtype=float)
    for component in config.components:
        logger.info(f"[clusters] finding {component.name} cluster ({config.strategy}), "
                    f"window {component.time_window_ms[0]:.0f}-{component.time_window_ms[1]:.0f} ms")
        if config.strategy == "exhaustive":
            result = select_exhaustive(reference, ch_names, times_ms, component, config)
        else:
            result = select_deflection_gated(reference, ch_names, times_ms, component)
        logger.info(f"[clusters] {component.name} cluster: [{', '.join(result.electrodes)}] "
                    f"mean {result.mean_amplitude:.3e}, peak {result.peak_amplitude:.3e} "
                    f"at electrode {result.peak_electrode}, {result.peak_time_ms:.0f} ms")
        results[component.name] = result
    return results

"""
Object handed from step to step by the pipeline runner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from erppost.exceptions import MissingArtifactError
from erppost.utils.averaging import GrandAverages
from erppost.utils.clusters import ClusterResult
from erppost.utils.difference_waves import DifferenceWaves
from erppost.utils.reporting import ProcessingReport


@dataclass
class RunState:
    grand_averages: Optional[GrandAverages] = None
    difference_waves: Optional[DifferenceWaves] = None
    clusters: Optional[Dict[str, ClusterResult]] = None
    report: ProcessingReport = field(default_factory=ProcessingReport)

    def require(self, attr: str, step: str, producer: str):
        """Return an upstream result, or fail if no earlier step produced it."""
        value = getattr(self, attr)
        if value is None:
            raise MissingArtifactError(
                f"[{step}] {attr.replace('_', ' ')} are required; run or reload {producer} first"
            )
        return value

    def report_dict(self) -> dict:
        return self.report.as_dict(self.grand_averages, self.difference_waves, self.clusters)

# File: erppost/steps/__init__.py
"""
Initialization file for the steps package.

This file imports and registers all step classes in the STEP_REGISTRY so
that the pipeline can reference them by name without extra imports.
"""

import logging

from erppost.registry import STEP_REGISTRY

from .base import BaseStep
from .grand_averages import GrandAverageStep
from .difference_waves import DifferenceWaveStep
from .electrode_clusters import ElectrodeClusterStep
from .synthetic import SyntheticEpochsStep

STEP_REGISTRY.update({
    "GrandAverageStep": GrandAverageStep,
    "DifferenceWaveStep": DifferenceWaveStep,
    "ElectrodeClusterStep": ElectrodeClusterStep,
    "SyntheticEpochsStep": SyntheticEpochsStep,
})

logging.debug("[steps] All step classes have been registered in STEP_REGISTRY.")

__all__ = [
    "STEP_REGISTRY",
    "BaseStep",
    "GrandAverageStep",
    "DifferenceWaveStep",
    "ElectrodeClusterStep",
    "SyntheticEpochsStep",
]

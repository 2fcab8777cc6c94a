# File: erppost/steps/base.py

from abc import ABC, abstractmethod

from erppost.exceptions import MissingArtifactError


class BaseStep(ABC):
    """
    Abstract base class for a pipeline step. Each step must implement run().
    """
    def __init__(self, params=None):
        """
        Initialize the step with parameters.
        """
        self.params = params if params is not None else {}

    @abstractmethod
    def run(self, data):
        """
        Execute this step's logic on the incoming run state.

        Parameters
        ----------
        data : RunState or None
            Results of the steps executed so far.

        Returns
        -------
        RunState
            The updated run state.
        """
        pass

    def load_existing(self, data):
        """
        Reload this step's artifact from the run output directory instead of
        recomputing it (``enabled: false`` in the configuration).
        """
        raise MissingArtifactError(f"[{type(self).__name__}] has no artifact to reload")

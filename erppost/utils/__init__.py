"""
Core computations of the ERP post-processing pipeline.
"""

from . import conditions, trimming, inclusion, averaging, difference_waves, clusters  # noqa: F401

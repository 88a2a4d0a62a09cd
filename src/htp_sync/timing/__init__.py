"""
Offset measurement for htp-sync.

Sub-second bisection per host and multi-host outlier rejection.
"""

from .aggregator import MultiHostAggregator, filter_offsets
from .bisection import BisectionEstimator, BisectionStep

__all__ = ['BisectionEstimator', 'BisectionStep', 'MultiHostAggregator', 'filter_offsets']

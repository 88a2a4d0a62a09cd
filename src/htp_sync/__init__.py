"""
htp-sync: HTTP Time Protocol client

Synchronizes the local system clock with the Date header returned by ordinary
web servers, so no NTP endpoint is required - only HTTP(S) reachability.

Pipeline per poll cycle:
    PollScheduler → MultiHostAggregator → [BisectionEstimator → HTTPProbe] per host
                  → ClockController → (kernel clock, drift file)

The bisection estimator overcomes the one-second resolution of the Date
header by timing successive requests against the remote second rollover.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.sync_result import (
    ClockState,
    CorrectionMode,
    CycleResult,
    HostEstimate,
    HostTarget,
    ProbeSample,
)

__all__ = [
    "ClockState",
    "CorrectionMode",
    "CycleResult",
    "HostEstimate",
    "HostTarget",
    "ProbeSample",
    "__version__",
]

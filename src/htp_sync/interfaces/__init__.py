"""Data models and capabilities shared across htp-sync components."""

from .clock import SystemClock
from .sync_result import (
    NS_PER_SECOND,
    ClockState,
    CorrectionMode,
    CycleResult,
    HostEstimate,
    HostTarget,
    ProbeSample,
)

__all__ = [
    'NS_PER_SECOND',
    'ClockState',
    'CorrectionMode',
    'CycleResult',
    'HostEstimate',
    'HostTarget',
    'ProbeSample',
    'SystemClock',
]

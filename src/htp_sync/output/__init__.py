"""Clock outputs - kernel clock primitives, drift file, correction controller."""

from .clock_controller import ClockController
from .drift_file import read_drift, write_drift
from .kernel_clock import MAX_FREQUENCY, KernelClock, clamp_frequency
from .privileges import NullPrivileges, Privileges, drop_privileges

__all__ = [
    'ClockController',
    'KernelClock',
    'MAX_FREQUENCY',
    'NullPrivileges',
    'Privileges',
    'clamp_frequency',
    'drop_privileges',
    'read_drift',
    'write_drift',
]

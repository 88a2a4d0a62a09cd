"""Read-only clock capability shared by the probe and the scheduler."""

import time


class SystemClock:
    """
    Wall clock and blocking sleep.

    The transport probe aligns its requests to this clock, so tests can
    substitute a scripted clock without touching the network code.
    """

    def time_ns(self) -> int:
        return time.clock_gettime_ns(time.CLOCK_REALTIME)

    def time(self) -> float:
        return time.clock_gettime(time.CLOCK_REALTIME)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

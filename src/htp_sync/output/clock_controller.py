"""
Clock Correction Controller

Turns a cycle's trusted offset into a clock correction:

    report     log the offset only
    slew       adjtime(), gradual catch-up without a discontinuity
    step       clock_settime(now + offset), normally only for the first cycle
    frequency  slew, then tune the kernel oscillator from the observed drift

Drift tracking:
    The first successful correction opens a drift window. Later corrections
    accumulate into it, so drift = accumulated correction / window length.
    In frequency mode the new kernel frequency is a weighted blend of the old
    one and the one implied by the drift:

        weight   = sleep_interval / max_sleep
        new_freq = old_freq + weight * drift * 65536e6      (clamped +/-500 ppm)

    i.e. the longer the baseline, the more the new estimate is trusted. The
    window restarts after each frequency update.

Clock syscall failures are logged and reported as a failed correction; the
drift window is left untouched so the next cycle simply retries.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Union

from ..interfaces.sync_result import ClockState, CorrectionMode
from .drift_file import read_drift, write_drift
from .kernel_clock import FREQUENCY_SCALE, KernelClock, clamp_frequency
from .privileges import NullPrivileges

logger = logging.getLogger(__name__)

DEFAULT_MAX_SLEEP = 115200   # 32 hours


class ClockController:
    """Applies trusted offsets to the system clock according to a mode."""

    def __init__(
        self,
        mode: CorrectionMode,
        clock: Optional[KernelClock] = None,
        privileges=None,
        drift_file: Optional[Union[str, Path]] = None,
        max_sleep: int = DEFAULT_MAX_SLEEP
    ):
        """
        Args:
            mode: Correction mode
            clock: Clock capability (KernelClock in production, a mock in tests)
            privileges: Object whose elevated() context wraps every clock mutation
            drift_file: Where the kernel frequency is persisted (optional)
            max_sleep: Maximum poll interval, the denominator of the blend weight
        """
        self.mode = CorrectionMode(mode)
        self.clock = clock if clock is not None else KernelClock()
        self.privileges = privileges or NullPrivileges()
        self.drift_file = Path(drift_file) if drift_file else None
        self.max_sleep = max_sleep

    def initial_frequency(self) -> int:
        """
        Seed the frequency for a new run.

        A drift file wins over the kernel's current value; in frequency mode a
        value from the drift file is loaded into the kernel right away.
        """
        freq: Optional[int] = None
        if self.drift_file is not None:
            try:
                freq = read_drift(self.drift_file)
            except (OSError, ValueError) as e:
                logger.error(f"Cannot read drift file: {e}")

        if freq is not None:
            freq = clamp_frequency(freq)
            logger.info(f"Frequency {freq} read from {self.drift_file}")
            if self.mode is CorrectionMode.FREQUENCY:
                try:
                    with self.privileges.elevated():
                        self.clock.set_frequency(freq)
                except OSError as e:
                    logger.error(f"Frequency change failed: {e}")
            return freq

        if self.mode is CorrectionMode.FREQUENCY:
            try:
                return int(self.clock.get_frequency())
            except OSError as e:
                logger.error(f"Cannot read kernel frequency: {e}")
        return 0

    def apply(self, offset: float, state: ClockState, now: Optional[float] = None) -> bool:
        """
        Correct the clock by offset seconds.

        Args:
            offset: Trusted offset (correction to add to the local clock)
            state: Clock state, updated in place on success
            now: Time of the correction for drift bookkeeping (default: time.time())

        Returns:
            True if the correction was applied (or reported), False on failure
            or when no correction was needed
        """
        if offset == 0:
            logger.info("No time correction needed")
            return False

        if self.mode is CorrectionMode.REPORT:
            logger.info(f"Offset {offset:.3f} seconds")
            return True

        try:
            if self.mode is CorrectionMode.STEP:
                self._step(offset)
            else:
                self._slew(offset)
        except OSError as e:
            logger.error(f"Time change failed: {e}")
            return False

        now = time.time() if now is None else now
        return self._track_drift(offset, state, now)

    def _slew(self, offset: float) -> None:
        logger.info(f"Adjusting {offset:.3f} seconds")
        with self.privileges.elevated():
            self.clock.adjust(offset)

    def _step(self, offset: float) -> None:
        logger.info(f"Setting {offset:.3f} seconds")
        target = self.clock.time() + offset
        logger.info(f"Set time: {time.strftime('%c', time.localtime(target))}")
        with self.privileges.elevated():
            self.clock.set_time(target)

    def _track_drift(self, offset: float, state: ClockState, now: float) -> bool:
        if not state.has_baseline:
            state.start_time = now
            state.cumulative_correction = 0.0
            return True

        elapsed = now - state.start_time
        if elapsed <= 0:
            return True
        state.cumulative_correction += offset
        drift = state.cumulative_correction / elapsed
        logger.info(f"Drift {drift * 1e6:.2f} PPM, {drift * 86400:.2f} s/day")

        if self.mode is CorrectionMode.FREQUENCY:
            if not self._adjust_frequency(drift, state):
                return False
            state.start_time = now
            state.cumulative_correction = 0.0
        return True

    def blend_frequency(self, old_freq: int, drift: float, sleep_interval: int) -> int:
        """Weighted blend of the current frequency and the drift-derived one."""
        weight = min(1.0, sleep_interval / self.max_sleep)
        new_freq = old_freq + weight * drift * 1e6 * FREQUENCY_SCALE
        return clamp_frequency(int(round(new_freq)))

    def _adjust_frequency(self, drift: float, state: ClockState) -> bool:
        freq = self.blend_frequency(state.frequency, drift, state.sleep_interval)
        logger.info(f"Adjusting frequency {freq}")
        try:
            with self.privileges.elevated():
                self.clock.set_frequency(freq)
        except OSError as e:
            logger.error(f"Frequency change failed: {e}")
            return False

        state.frequency = freq
        if self.drift_file is not None:
            try:
                write_drift(self.drift_file, freq)
            except OSError as e:
                logger.error(f"Cannot write drift file: {e}")
        return True

    def mark_synchronized(self) -> None:
        """Clear the kernel's unsynchronized flag (frequency mode only)."""
        if self.mode is not CorrectionMode.FREQUENCY:
            return
        try:
            with self.privileges.elevated():
                self.clock.clear_unsync()
        except OSError as e:
            logger.error(f"Cannot set clock status: {e}")

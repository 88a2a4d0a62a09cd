"""
Poll Scheduler - repeats measurement cycles with an adaptive interval.

    cycle without quorum       sleep min_sleep, retry
    cycle needing no change    interval doubles (up to max_sleep), sleep it
    cycle with a correction    interval resets to min_sleep, 30 min cooldown

In one-shot mode a single cycle runs and a missing quorum is fatal.
"""

import logging
import signal
import threading
import time
from typing import Callable, Optional

from ..interfaces.sync_result import ClockState, CorrectionMode, CycleResult
from ..output.clock_controller import ClockController
from ..timing.aggregator import MultiHostAggregator

logger = logging.getLogger(__name__)

COOLDOWN_SLEEP = 1800   # after a step/slew, let it settle for 30 minutes


class NoQuorumError(RuntimeError):
    """No server suitable for synchronization was found."""


class PollScheduler:
    """
    Orchestrates aggregator and controller across poll cycles.

    Clock state (drift window, frequency, sleep interval) lives here for the
    lifetime of the process.
    """

    def __init__(
        self,
        config,
        aggregator: MultiHostAggregator,
        controller: ClockController,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.aggregator = aggregator
        self.controller = controller
        # A signal ends the current sleep instead of waiting it out
        self._stop = threading.Event()
        self.sleep = sleep or self._stop.wait
        self.clock = clock

        self.state = ClockState(sleep_interval=config.min_sleep)
        self.running = False

        # Query-only does not exist for a daemon
        if config.continuous and controller.mode is CorrectionMode.REPORT:
            controller.mode = CorrectionMode.SLEW

    def _cycle(self) -> CycleResult:
        result = self.aggregator.run_cycle(self.config.targets())
        self.state.cycles += 1
        return result

    def _after_first_cycle(self) -> None:
        # Step through time only once, then slew
        if self.controller.mode is CorrectionMode.STEP:
            self.controller.mode = CorrectionMode.SLEW

    def run_once(self) -> CycleResult:
        """
        One-shot mode: measure once and correct.

        Raises:
            NoQuorumError: no host produced a usable offset
        """
        result = self._cycle()
        if not result.has_quorum:
            raise NoQuorumError("No server suitable for synchronization found")
        self.controller.apply(result.trusted_offset, self.state, now=self.clock())
        return result

    def step(self) -> float:
        """
        Daemon mode: run one cycle and return how long to sleep before the next.
        """
        result = self._cycle()

        if not result.has_quorum:
            logger.warning("No server suitable for synchronization found")
            return self.config.min_sleep

        if result.offset_sum != 0:
            applied = self.controller.apply(result.trusted_offset, self.state, now=self.clock())
            if not applied:
                logger.warning("Time change failed, retrying next cycle")
            self._after_first_cycle()
            self.state.sleep_interval = self.config.min_sleep
            return COOLDOWN_SLEEP

        logger.info("No time correction needed")
        self.controller.mark_synchronized()
        self._after_first_cycle()
        self.state.sleep_interval = min(self.state.sleep_interval * 2, self.config.max_sleep)
        if self.config.debug:
            logger.info(f"poll {self.state.sleep_interval} s")
        return self.state.sleep_interval

    def run(self, max_cycles: Optional[int] = None) -> None:
        """Poll until stopped by a signal (or after max_cycles, for testing)."""
        logger.info("Starting poll loop")
        self.running = True
        self.state.frequency = self.controller.initial_frequency()

        if max_cycles is None:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)

        while self.running:
            delay = self.step()
            if max_cycles is not None and self.state.cycles >= max_cycles:
                break
            if self.running:
                self.sleep(delay)

        logger.info(f"Stopped after {self.state.cycles} poll cycles")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False
        self._stop.set()

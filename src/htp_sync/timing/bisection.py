"""
Bisection Offset Estimator - sub-second offsets from 1-second Date headers.

A single Date header only bounds the clock offset to within one second. The
remote second counter, however, increments at one fixed instant relative to
local time. A request landing before that instant sees one remote second, a
request landing after it sees the next, so the integer offset observed at a
chosen local point "when" tells on which side of the rollover "when" lies.

Binary search over the one-second phase space:

    nap  = 1e9 ns
    when = nap >> P                     first probe point
    repeat P times:
        offset = probe(when)            local second - remote second
        nap /= 2
        if offset != previous offset:   rollover is behind us, reverse
            nap = -nap
        when += nap

After P probes "when" is within 1/2^P s of the rollover instant, which turns
the first integer offset into a fractional correction:

    first <  0:   -first + (1e9 - when) / 1e9
    first >= 0:   -first + 1 - when / 1e9

The asymmetric branch is the established behaviour of HTTP time clients and
is reproduced as-is.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..interfaces.sync_result import NS_PER_SECOND, ProbeSample

logger = logging.getLogger(__name__)

MIN_PRECISION = 1
MAX_PRECISION = 9


@dataclass
class BisectionStep:
    """Signed bisection step, kept as separate direction and magnitude."""
    magnitude: int = NS_PER_SECOND
    direction: int = 1

    @property
    def delta(self) -> int:
        return self.direction * self.magnitude

    def halve(self) -> None:
        self.magnitude //= 2

    def reverse(self) -> None:
        self.direction = -self.direction


class BisectionEstimator:
    """
    Drive a probe through P aligned HEAD requests and return the offset.

    The probe needs a single method, head(when_ns) -> ProbeSample; any
    exception it raises aborts the estimate, so no partial result escapes.
    """

    def __init__(self, precision: int = 4):
        """
        Args:
            precision: Number of probes, 1..9 (resolution 1/2^precision s)
        """
        if not MIN_PRECISION <= precision <= MAX_PRECISION:
            raise ValueError(f"precision must be {MIN_PRECISION}..{MAX_PRECISION}, got {precision}")
        self.precision = precision
        self.last_samples: List[ProbeSample] = []

    @staticmethod
    def fractional_offset(first_offset: int, when: int) -> float:
        """Convert the first integer offset and the final probe point to seconds."""
        if first_offset == 0 and when == NS_PER_SECOND:
            return 0.0
        if first_offset < 0:
            return -first_offset + (NS_PER_SECOND - when) / NS_PER_SECOND
        return -first_offset + 1 - when / NS_PER_SECOND

    def estimate(self, probe, label: Optional[str] = None) -> float:
        """
        Run the bisection against one open probe.

        Args:
            probe: Object with head(when_ns) -> ProbeSample
            label: Host name used in log messages

        Returns:
            Correction to add to the local clock, in seconds
        """
        label = label or str(getattr(probe, 'target', 'host'))
        step = BisectionStep()
        when = step.magnitude >> self.precision
        first_offset: Optional[int] = None
        previous: Optional[int] = None
        self.last_samples = []

        for n in range(self.precision):
            sample = probe.head(when)
            self.last_samples.append(sample)
            offset = sample.offset

            logger.debug(
                f"{label}: probe {n + 1}/{self.precision} when={when / 1e6:.3f}ms "
                f"rtt={sample.rtt_ns / 1e6:.0f}ms offset={offset:+d}"
            )

            if first_offset is None:
                first_offset = offset

            step.halve()
            if previous is not None and offset != previous:
                step.reverse()
            previous = offset
            when += step.delta

        result = self.fractional_offset(first_offset, when)
        logger.debug(f"{label}: first offset {first_offset:+d}, final when={when / 1e6:.3f}ms => {result:+.3f}s")
        return result

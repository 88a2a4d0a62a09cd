"""
Multi-Host Aggregator - one trusted offset per poll cycle.

Every configured web server is measured once, strictly one after another.
Valid estimates are sorted, the median is taken as the middle element, and
anything further than 0.5 s from the median is dropped as a false ticker:
NTP-synchronized web servers never disagree by more than that. The mean of
the survivors is the trusted offset.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..interfaces.sync_result import CycleResult, HostEstimate, HostTarget
from ..probe.transport import HTTPProbe, ProbeError
from .bisection import BisectionEstimator

logger = logging.getLogger(__name__)

MAX_SPREAD = 0.5    # seconds from the median


def filter_offsets(
    offsets: Sequence[float],
    max_spread: float = MAX_SPREAD
) -> Tuple[Optional[float], List[float]]:
    """
    Reject outliers relative to the median.

    Args:
        offsets: Offset estimates in seconds, any order
        max_spread: Largest accepted distance from the median

    Returns:
        (median, kept) where kept is sorted ascending; (None, []) for no input
    """
    if len(offsets) == 0:
        return None, []

    values = np.sort(np.asarray(offsets, dtype=float), kind='stable')
    median = float(values[len(values) // 2])
    kept = values[np.abs(values - median) <= max_spread]
    return median, [float(v) for v in kept]


class MultiHostAggregator:
    """
    Run the bisection estimator against every host and combine the results.

    probe_factory is called as probe_factory(target) and must return a
    context manager yielding an object with head(when_ns); the default builds
    an HTTPProbe from the configuration.
    """

    def __init__(
        self,
        config,
        probe_factory: Optional[Callable[[HostTarget], HTTPProbe]] = None,
        estimator: Optional[BisectionEstimator] = None
    ):
        self.config = config
        self.time_limit: Optional[float] = config.time_limit
        self.probe_factory = probe_factory or self._default_probe
        self.estimator = estimator or BisectionEstimator(config.precision)

    def _default_probe(self, target: HostTarget) -> HTTPProbe:
        return HTTPProbe(
            target,
            proxy=self.config.resolved_proxy,
            http_version=self.config.http_version,
            ip_version=self.config.ip_version,
            verify_cert=self.config.verify_cert,
            timeout=self.config.timeout,
            debug=self.config.debug,
        )

    def measure_host(self, target: HostTarget) -> HostEstimate:
        """Estimate one host's offset; failures become an unavailable estimate."""
        try:
            with self.probe_factory(target) as probe:
                offset = self.estimator.estimate(probe, label=str(target))
        except ProbeError as e:
            logger.warning(str(e))
            return HostEstimate(target=target, error=str(e))

        logger.info(f"{str(target):<25} {target.port:<5} offset {offset:+.3f}s")
        return HostEstimate(target=target, offset=offset)

    def _within_limit(self, estimate: HostEstimate) -> bool:
        if self.time_limit is None:
            return True
        if abs(estimate.offset) < self.time_limit:
            return True
        logger.warning(
            f"{estimate.target}: offset {estimate.offset:+.3f}s exceeds "
            f"sanity limit of {self.time_limit:.0f}s, ignored"
        )
        return False

    def aggregate(self, estimates: List[HostEstimate]) -> CycleResult:
        """Filter and average a cycle's estimates."""
        valid = [e.offset for e in estimates if e.available and self._within_limit(e)]
        median, kept = filter_offsets(valid)

        result = CycleResult(
            estimates=estimates,
            valid=sorted(valid),
            median=median,
            kept=kept,
        )
        if kept:
            result.trusted_offset = float(np.mean(kept))
            logger.debug(
                f"#: {len(kept)} median: {median:+.3f} average: {result.trusted_offset:+.3f} "
                f"(rejected {result.rejected})"
            )
        return result

    def run_cycle(self, targets: Sequence[HostTarget]) -> CycleResult:
        """Measure all targets sequentially and aggregate."""
        estimates = [self.measure_host(target) for target in targets]
        return self.aggregate(estimates)

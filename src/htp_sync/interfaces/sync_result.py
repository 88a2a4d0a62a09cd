"""
Synchronization Data Models

These dataclasses carry measurements from the transport probe through the
bisection estimator and aggregator to the clock correction controller.

Sign convention:
    ProbeSample.offset is the integer LOCAL second minus the REMOTE second
    observed in the Date header. Every fractional value derived from it
    (HostEstimate.offset, CycleResult.trusted_offset) is the correction to
    ADD to the local clock, i.e. remote minus local.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

NS_PER_SECOND = 1_000_000_000


class CorrectionMode(str, Enum):
    """How a trusted offset is applied to the system clock."""
    REPORT = "report"         # Print the offset, never touch the clock
    SLEW = "slew"             # adjtime(): gradual catch-up
    STEP = "step"             # clock_settime(): immediate jump
    FREQUENCY = "frequency"   # slew plus kernel oscillator frequency tuning

    @property
    def mutates_clock(self) -> bool:
        return self is not CorrectionMode.REPORT


@dataclass(frozen=True)
class HostTarget:
    """
    One web server to poll.

    Parsed once per poll cycle from a "[scheme://]host[:port][/path]" string.
    """
    scheme: str                          # "http" or "https"
    host: str                            # hostname or bare IP literal
    port: int
    path: str = ""                       # without the leading "/"

    @property
    def is_tls(self) -> bool:
        return self.scheme == "https"

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.netloc}/{self.path}"

    def __str__(self) -> str:
        return self.host


@dataclass(frozen=True)
class ProbeSample:
    """
    One timed HEAD request/response exchange.

    send_ns is the INTENDED send instant (the aligned "when" point), so the
    round-trip time also contains any scheduling error of the pre-send sleep.
    """
    send_ns: int
    receive_ns: int
    remote_seconds: int

    @property
    def rtt_ns(self) -> int:
        return self.receive_ns - self.send_ns

    @property
    def offset(self) -> int:
        """Local second minus remote second at the time of receipt."""
        return self.receive_ns // NS_PER_SECOND - self.remote_seconds


@dataclass
class HostEstimate:
    """Fractional offset for one host, or None when the host was unavailable."""
    target: HostTarget
    offset: Optional[float] = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.offset is not None


@dataclass
class CycleResult:
    """
    Result of one poll cycle across all configured hosts.

    valid holds the sorted estimates that passed the sanity limit; kept is
    the subset within +/-0.5 s of the median, whose mean is trusted_offset.
    """
    estimates: List[HostEstimate] = field(default_factory=list)
    valid: List[float] = field(default_factory=list)
    median: Optional[float] = None
    kept: List[float] = field(default_factory=list)
    trusted_offset: Optional[float] = None

    @property
    def has_quorum(self) -> bool:
        return self.trusted_offset is not None

    @property
    def offset_sum(self) -> float:
        return float(sum(self.kept))

    @property
    def rejected(self) -> int:
        return len(self.valid) - len(self.kept)


@dataclass
class ClockState:
    """
    Process-wide correction state, carried across poll cycles in daemon mode.

    start_time is the beginning of the current drift window (0.0 until a
    first correction succeeded); frequency is in kernel units (ppm * 2^16).
    """
    sleep_interval: int
    start_time: float = 0.0
    cumulative_correction: float = 0.0
    frequency: int = 0
    cycles: int = 0

    @property
    def has_baseline(self) -> bool:
        return self.start_time > 0.0

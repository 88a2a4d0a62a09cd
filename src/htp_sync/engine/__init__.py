"""Poll engine - repeats measurement cycles and schedules the next poll.

Contains:
- PollScheduler: one-shot and daemon poll loop with adaptive interval
"""

from .poll_scheduler import COOLDOWN_SLEEP, NoQuorumError, PollScheduler

__all__ = ['COOLDOWN_SLEEP', 'NoQuorumError', 'PollScheduler']

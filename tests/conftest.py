"""
Pytest configuration and fixtures for htp-sync tests.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from htp_sync.interfaces.sync_result import NS_PER_SECOND, ProbeSample  # noqa: E402

# 2024-12-11 00:00:00 UTC
BASE_SECOND = 1733875200


class ScriptedProbe:
    """
    Probe returning a fixed sequence of integer offsets (local - remote).

    Used as its own context manager so it can stand in for HTTPProbe.
    """

    def __init__(self, offsets, target=None):
        self.offsets = list(offsets)
        self.target = target
        self.whens = []
        self.closed = False

    def head(self, when_ns):
        offset = self.offsets[len(self.whens)]
        self.whens.append(when_ns)
        send_ns = BASE_SECOND * NS_PER_SECOND + when_ns
        return ProbeSample(
            send_ns=send_ns,
            receive_ns=send_ns + 1_000,
            remote_seconds=BASE_SECOND - offset,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


@pytest.fixture
def scripted_probe():
    """Factory for ScriptedProbe."""
    return ScriptedProbe


@pytest.fixture
def mock_clock():
    """Kernel clock capability with a fixed wall time."""
    clock = MagicMock()
    clock.time.return_value = 1733875200.0
    clock.get_frequency.return_value = 0
    return clock


@pytest.fixture
def config_factory():
    """Build a validated SyncConfig with test-friendly defaults."""
    from htp_sync.config import SyncConfig

    def make(**overrides):
        settings = {
            'hosts': ['www.example.com'],
            'use_proxy_env': False,
        }
        settings.update(overrides)
        return SyncConfig.from_dict(settings).validate(environ={})

    return make

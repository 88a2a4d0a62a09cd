"""Transport probe - timed HEAD requests and Date header parsing."""

from .targets import parse_proxy, parse_target, proxy_from_environment
from .transport import ConnectError, HTTPProbe, ProbeError, ProtocolError, ResolutionError

__all__ = [
    'ConnectError',
    'HTTPProbe',
    'ProbeError',
    'ProtocolError',
    'ResolutionError',
    'parse_proxy',
    'parse_target',
    'proxy_from_environment',
]

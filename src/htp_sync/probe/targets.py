"""
Host and proxy specification parsing.

Accepted forms (RFC 2732 literals included):

    www.example.com
    www.example.com:8080/index.html
    https://www.example.com
    [2001:db8::1]:80/
    2001:db8::1                  (bare IPv6 literal, default port)
"""

import logging
from typing import Mapping, Optional, Tuple

from ..interfaces.sync_result import HostTarget

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {'http': 80, 'https': 443}
DEFAULT_PROXY_PORT = 8080


def _split_host_port(hostport: str) -> Tuple[str, Optional[str]]:
    """Split "host", "host:port", "[v6]" or "[v6]:port"."""
    if hostport.startswith('['):
        end = hostport.find(']')
        if end < 0:
            raise ValueError(f"Unterminated IPv6 literal: {hostport!r}")
        host = hostport[1:end]
        rest = hostport[end + 1:]
        if not rest:
            return host, None
        if not rest.startswith(':'):
            raise ValueError(f"Unexpected characters after IPv6 literal: {hostport!r}")
        return host, rest[1:]

    # Exactly one colon means host:port, more than one is a bare IPv6 literal
    if hostport.count(':') == 1:
        host, port = hostport.split(':')
        return host, port
    return hostport, None


def _parse_port(port: Optional[str], default: int) -> int:
    if port is None or port == '':
        return default
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid port: {port!r}")
    return int(port)


def parse_target(spec: str) -> HostTarget:
    """
    Parse "[scheme://]host[:port][/path]" into a HostTarget.

    Args:
        spec: Host specification as given on the command line

    Returns:
        Immutable HostTarget

    Raises:
        ValueError: unsupported scheme, empty host or invalid port
    """
    scheme = 'http'
    rest = spec.strip()
    if '://' in rest:
        scheme, rest = rest.split('://', 1)
        scheme = scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported scheme: {scheme!r}")

    hostport, _, path = rest.partition('/')
    host, port = _split_host_port(hostport)
    if not host:
        raise ValueError(f"No host in {spec!r}")

    return HostTarget(
        scheme=scheme,
        host=host,
        port=_parse_port(port, DEFAULT_PORTS[scheme]),
        path=path,
    )


def parse_proxy(spec: str) -> Tuple[str, int]:
    """Parse "[http://]host[:port][/]" into (host, port)."""
    rest = spec.strip()
    if rest.lower().startswith('http://'):
        rest = rest[len('http://'):]
    hostport = rest.split('/', 1)[0]
    host, port = _split_host_port(hostport)
    if not host:
        raise ValueError(f"No proxy host in {spec!r}")
    return host, _parse_port(port, DEFAULT_PROXY_PORT)


def proxy_from_environment(environ: Mapping[str, str]) -> Optional[Tuple[str, int]]:
    """
    Read the proxy from the http_proxy environment variable.

    Returns:
        (host, port) or None when no proxy is set

    Raises:
        ValueError: the variable is set but is not an http:// URL
    """
    value = environ.get('http_proxy') or environ.get('HTTP_PROXY')
    if not value:
        return None
    if not value.lower().startswith('http://'):
        raise ValueError(f"Invalid proxy specified: {value}")
    proxy = parse_proxy(value)
    logger.debug(f"Proxy from environment: {proxy[0]}:{proxy[1]}")
    return proxy

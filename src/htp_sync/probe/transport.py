"""
Transport Probe - timed HEAD requests over one kept-alive connection.

One HTTPProbe is opened per host per poll cycle. The connection goes either
directly to the web server or through an HTTP forward proxy:

    http  target + proxy:  HEAD http://host:port/path   (absolute URI)
    https target + proxy:  CONNECT host:port, then TLS with the origin

Each head() call first sleeps until a chosen nanosecond offset within the
current wall-clock second, so consecutive requests can probe where the
remote server's second boundary lies (see timing.bisection).

Error taxonomy (no retries here; the poll scheduler retries next cycle):
    ResolutionError - DNS/service lookup failed
    ConnectError    - TCP connect, proxy tunnel or TLS handshake failed
    ProtocolError   - send/receive failed, Date header missing or malformed
"""

import http.client
import logging
import socket
import ssl
from typing import Optional, Tuple

from ..interfaces.clock import SystemClock
from ..interfaces.sync_result import NS_PER_SECOND, HostTarget, ProbeSample
from .http_date import build_headers, find_date_header, parse_http_date

logger = logging.getLogger(__name__)

IP_FAMILIES = {
    0: socket.AF_UNSPEC,    # IPv6 and IPv4 name resolution
    4: socket.AF_INET,
    6: socket.AF_INET6,
}


class ProbeError(Exception):
    """A host could not be measured this cycle."""

    def __init__(self, host: str, message: str):
        super().__init__(f"{host} {message}")
        self.host = host


class ResolutionError(ProbeError):
    pass


class ConnectError(ProbeError):
    pass


class ProtocolError(ProbeError):
    pass


def _open_socket(host: str, port: int, family: int, timeout) -> socket.socket:
    """Resolve host:port and connect to the first address that accepts."""
    try:
        addresses = socket.getaddrinfo(host, port, family, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(host, f"host or service unavailable ({e})") from e

    last_error: Optional[OSError] = None
    for af, socktype, proto, _, sockaddr in addresses:
        sock = socket.socket(af, socktype, proto)
        try:
            if isinstance(timeout, (int, float)):
                sock.settimeout(timeout)
            sock.connect(sockaddr)
            return sock
        except OSError as e:
            last_error = e
            sock.close()

    raise ConnectError(host, f"connection failed ({last_error})")


class _FamilyConnectionMixin:
    """Opens sockets through _open_socket with a fixed address family."""

    def __init__(self, *args, family: int = socket.AF_UNSPEC, **kwargs):
        super().__init__(*args, **kwargs)
        self.family = family
        # http.client connects (and reconnects) through this instance hook
        self._create_connection = self._open_socket

    def _open_socket(self, address, timeout=None, source_address=None) -> socket.socket:
        return _open_socket(address[0], address[1], self.family, timeout)


class ProbeHTTPConnection(_FamilyConnectionMixin, http.client.HTTPConnection):
    pass


class ProbeHTTP10Connection(ProbeHTTPConnection):
    _http_vsn = 10
    _http_vsn_str = 'HTTP/1.0'


class ProbeHTTPSConnection(_FamilyConnectionMixin, http.client.HTTPSConnection):
    pass


class ProbeHTTPS10Connection(ProbeHTTPSConnection):
    _http_vsn = 10
    _http_vsn_str = 'HTTP/1.0'


# (is_tls, http_version) -> connection class
CONNECTION_CLASSES = {
    (False, "1"): ProbeHTTPConnection,
    (False, "0"): ProbeHTTP10Connection,
    (True, "1"): ProbeHTTPSConnection,
    (True, "0"): ProbeHTTPS10Connection,
}


class HTTPProbe:
    """
    One connection to one web server, used for repeated timed HEAD requests.

    Usage:
        with HTTPProbe(parse_target("www.example.com")) as probe:
            sample = probe.head(when_ns=500_000_000)
            print(sample.offset, sample.rtt_ns)
    """

    def __init__(
        self,
        target: HostTarget,
        proxy: Optional[Tuple[str, int]] = None,
        http_version: str = "1",
        ip_version: int = 0,
        verify_cert: bool = True,
        timeout: Optional[float] = None,
        clock: Optional[SystemClock] = None,
        debug: int = 0
    ):
        """
        Args:
            target: Web server to poll
            proxy: Optional (host, port) of an HTTP forward proxy
            http_version: "0" for HTTP/1.0, "1" for HTTP/1.1
            ip_version: 0 (any), 4 or 6
            verify_cert: Verify the TLS peer certificate and hostname
            timeout: Socket timeout in seconds (None = OS defaults)
            clock: Clock the requests are aligned to
            debug: Verbosity; at 3 and above raw response headers are logged
        """
        self.target = target
        self.proxy = proxy
        self.http_version = http_version
        self.family = IP_FAMILIES.get(ip_version, socket.AF_UNSPEC)
        self.verify_cert = verify_cert
        self.timeout = timeout
        self.clock = clock or SystemClock()
        self.debug = debug

        self._conn: Optional[http.client.HTTPConnection] = None
        self._headers = build_headers(self._host_header())
        self._request_target = self._build_request_target()

    def _host_header(self) -> str:
        target = self.target
        default_port = 443 if target.is_tls else 80
        if target.port == default_port:
            return target.netloc.rsplit(':', 1)[0]
        return target.netloc

    def _build_request_target(self) -> str:
        # Plain HTTP through a proxy is relayed, so the proxy needs the absolute URI
        if self.proxy and not self.target.is_tls:
            return self.target.url
        return f"/{self.target.path}"

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.verify_cert:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _create_connection(self) -> http.client.HTTPConnection:
        target = self.target
        host, port = self.proxy if self.proxy else (target.host, target.port)
        kwargs = {'family': self.family}
        if self.timeout is not None:
            kwargs['timeout'] = self.timeout
        if target.is_tls:
            kwargs['context'] = self._tls_context()

        conn_class = CONNECTION_CLASSES[(target.is_tls, self.http_version)]
        conn = conn_class(host, port, **kwargs)
        if target.is_tls and self.proxy:
            conn.set_tunnel(target.host, target.port)
        return conn

    def open(self) -> 'HTTPProbe':
        """Resolve, connect, and (for https) tunnel and handshake."""
        conn = self._create_connection()
        try:
            conn.connect()
        except ProbeError:
            conn.close()
            raise
        except (OSError, http.client.HTTPException) as e:
            conn.close()
            raise ConnectError(self.target.host, f"connection failed ({e})") from e

        self._conn = conn
        if self.proxy:
            logger.debug(f"{self.target}: connected via proxy {self.proxy[0]}:{self.proxy[1]}")
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> 'HTTPProbe':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def wait_until(self, when_ns: int) -> int:
        """
        Sleep until the next instant whose offset within the second is when_ns.

        Returns:
            The intended send instant in nanoseconds since the epoch
        """
        now = self.clock.time_ns()
        second, nanos = divmod(now, NS_PER_SECOND)
        if when_ns < nanos:
            second += 1
        send_ns = second * NS_PER_SECOND + when_ns
        self.clock.sleep((send_ns - now) / NS_PER_SECOND)
        return send_ns

    def head(self, when_ns: int) -> ProbeSample:
        """
        Send one HEAD request at local second offset when_ns and read the reply.

        Raises:
            ProtocolError: send/receive failure or unusable Date header
            ResolutionError, ConnectError: reconnecting after a server close failed
        """
        if self._conn is None:
            raise ProtocolError(self.target.host, "probe is not open")

        send_ns = self.wait_until(when_ns)
        try:
            self._conn.request('HEAD', self._request_target, headers=self._headers)
            response = self._conn.getresponse()
            response.read()
        except ProbeError:
            raise
        except (OSError, http.client.HTTPException) as e:
            raise ProtocolError(self.target.host, f"error sending/receiving ({e})") from e
        receive_ns = self.clock.time_ns()

        headers = response.getheaders()
        if self.debug > 2:
            logger.debug(f"{self.target}: {response.status} {response.reason} {headers}")

        date_value = find_date_header(headers)
        if date_value is None:
            raise ProtocolError(self.target.host, "no timestamp")
        remote_seconds = parse_http_date(date_value)
        if remote_seconds is None:
            raise ProtocolError(self.target.host, f"unknown time format: {date_value!r}")

        return ProbeSample(
            send_ns=send_ns,
            receive_ns=receive_ns,
            remote_seconds=remote_seconds,
        )

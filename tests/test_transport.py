"""
Unit tests for the Transport Probe.

Uses a loopback http.server so the real http.client path is exercised
without leaving the host.
"""

import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from htp_sync.interfaces.clock import SystemClock
from htp_sync.interfaces.sync_result import NS_PER_SECOND, HostTarget


class NoSleepClock(SystemClock):
    """Real time, no alignment sleeps."""

    def sleep(self, seconds):
        pass


class FakeClock:
    """Fixed time_ns; sleeps are recorded."""

    def __init__(self, now_ns):
        self.now_ns = now_ns
        self.sleeps = []

    def time_ns(self):
        return self.now_ns

    def sleep(self, seconds):
        self.sleeps.append(seconds)


class DateHandler(BaseHTTPRequestHandler):
    """Answers HEAD with the date configured on the server."""

    protocol_version = 'HTTP/1.1'

    def do_HEAD(self):
        self.server.requests.append({
            'path': self.path,
            'version': self.request_version,
            'headers': dict(self.headers),
        })
        self.send_response_only(200)
        if self.server.date is not None:
            self.send_header('Date', self.server.date)
        self.send_header('Content-Length', '0')
        self.end_headers()

    def do_CONNECT(self):
        """Act as a forward proxy that either refuses or opens a dead tunnel."""
        self.server.requests.append({
            'method': 'CONNECT',
            'path': self.path,
            'version': self.request_version,
            'headers': dict(self.headers),
        })
        self.close_connection = True
        if not self.server.allow_tunnel:
            self.send_error(403)
            return
        # Nothing behind the tunnel speaks TLS, so the handshake fails
        self.send_response(200, 'Connection established')
        self.end_headers()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_server():
    """Loopback server; set server.date to None to omit the Date header."""
    server = ThreadingHTTPServer(('127.0.0.1', 0), DateHandler)
    server.requests = []
    server.date = 'Sun, 06 Nov 1994 08:49:37 GMT'
    server.allow_tunnel = False
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _local_target(server, path=''):
    return HostTarget(scheme='http', host='127.0.0.1', port=server.server_address[1], path=path)


class TestHead:
    """Test timed HEAD requests against a local server."""

    def test_sample_from_current_date(self, http_server):
        from email.utils import formatdate
        from htp_sync.probe.transport import HTTPProbe

        http_server.date = formatdate(usegmt=True)
        with HTTPProbe(_local_target(http_server), clock=NoSleepClock()) as probe:
            sample = probe.head(when_ns=0)

        # Same machine: local and remote agree to within a second boundary
        assert sample.offset in (-1, 0, 1)

    def test_request_headers_sent(self, http_server):
        from htp_sync.probe.transport import HTTPProbe

        with HTTPProbe(_local_target(http_server, 'index.html'), clock=NoSleepClock()) as probe:
            sample = probe.head(when_ns=0)

        assert sample.remote_seconds == 784111777
        request = http_server.requests[0]
        assert request['path'] == '/index.html'
        assert request['version'] == 'HTTP/1.1'
        assert request['headers']['Pragma'] == 'no-cache'
        assert request['headers']['Cache-Control'] == 'no-cache'
        assert request['headers']['User-Agent'].startswith('htp-sync/')

    def test_connection_reused_for_several_requests(self, http_server):
        from htp_sync.probe.transport import HTTPProbe

        with HTTPProbe(_local_target(http_server), clock=NoSleepClock()) as probe:
            for _ in range(3):
                probe.head(when_ns=0)

        assert len(http_server.requests) == 3

    def test_http10_request_line(self, http_server):
        from htp_sync.probe.transport import HTTPProbe

        with HTTPProbe(_local_target(http_server), http_version="0", clock=NoSleepClock()) as probe:
            probe.head(when_ns=0)

        assert http_server.requests[0]['version'] == 'HTTP/1.0'

    def test_missing_date_is_protocol_error(self, http_server):
        from htp_sync.probe.transport import HTTPProbe, ProtocolError

        http_server.date = None
        with HTTPProbe(_local_target(http_server), clock=NoSleepClock()) as probe:
            with pytest.raises(ProtocolError, match="no timestamp"):
                probe.head(when_ns=0)

    def test_malformed_date_is_protocol_error(self, http_server):
        from htp_sync.probe.transport import HTTPProbe, ProtocolError

        http_server.date = 'sometime on Tuesday'
        with HTTPProbe(_local_target(http_server), clock=NoSleepClock()) as probe:
            with pytest.raises(ProtocolError, match="unknown time format"):
                probe.head(when_ns=0)

    def test_head_before_open_fails(self, http_server):
        from htp_sync.probe.transport import HTTPProbe, ProtocolError

        probe = HTTPProbe(_local_target(http_server), clock=NoSleepClock())
        with pytest.raises(ProtocolError):
            probe.head(when_ns=0)


class TestProxy:
    """Test requests relayed through an HTTP forward proxy."""

    def test_plain_http_uses_absolute_uri(self, http_server):
        from htp_sync.probe.transport import HTTPProbe

        target = HostTarget(scheme='http', host='www.example.com', port=8080, path='time')
        proxy = ('127.0.0.1', http_server.server_address[1])
        with HTTPProbe(target, proxy=proxy, clock=NoSleepClock()) as probe:
            probe.head(when_ns=0)

        request = http_server.requests[0]
        assert request['path'] == 'http://www.example.com:8080/time'
        assert request['headers']['Host'] == 'www.example.com:8080'

    def test_default_port_omitted_from_host_header(self):
        from htp_sync.probe.transport import HTTPProbe

        probe = HTTPProbe(HostTarget(scheme='https', host='www.example.com', port=443))
        assert probe._headers['Host'] == 'www.example.com'
        assert probe._request_target == '/'

    def test_ipv6_host_header_bracketed(self):
        from htp_sync.probe.transport import HTTPProbe

        probe = HTTPProbe(HostTarget(scheme='http', host='2001:db8::1', port=8080))
        assert probe._headers['Host'] == '[2001:db8::1]:8080'


class TestHTTPSProxy:
    """Test https targets tunnelled through a proxy with CONNECT."""

    def test_rejected_connect_is_connect_error(self, http_server):
        from htp_sync.probe.transport import ConnectError, HTTPProbe

        target = HostTarget(scheme='https', host='www.example.com', port=443)
        proxy = ('127.0.0.1', http_server.server_address[1])
        with pytest.raises(ConnectError, match="403"):
            HTTPProbe(target, proxy=proxy, timeout=2).open()

        request = http_server.requests[0]
        assert request['method'] == 'CONNECT'
        assert request['path'] == 'www.example.com:443'

    def test_tls_runs_inside_the_tunnel(self, http_server):
        from htp_sync.probe.transport import ConnectError, HTTPProbe

        http_server.allow_tunnel = True
        target = HostTarget(scheme='https', host='www.example.com', port=8443)
        proxy = ('127.0.0.1', http_server.server_address[1])
        with pytest.raises(ConnectError):
            HTTPProbe(target, proxy=proxy, timeout=2).open()

        # The tunnel was opened to the origin, not the proxy
        assert [r['path'] for r in http_server.requests] == ['www.example.com:8443']


@pytest.fixture
def not_tls_server():
    """Accepts one connection, answers in plain text and hangs up."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(('127.0.0.1', 0))
    listener.listen(1)

    def serve():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            conn.sendall(b"HTTP/1.1 400 Bad Request\r\n\r\n")

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield listener.getsockname()[1]
    listener.close()
    thread.join(timeout=2)


class TestTLS:
    """Test TLS settings and handshake failures."""

    def test_handshake_failure_is_connect_error(self, not_tls_server):
        from htp_sync.probe.transport import ConnectError, HTTPProbe

        target = HostTarget(scheme='https', host='127.0.0.1', port=not_tls_server)
        with pytest.raises(ConnectError, match="connection failed"):
            HTTPProbe(target, verify_cert=False, timeout=2).open()

    def test_certificate_verified_by_default(self):
        import ssl
        from htp_sync.probe.transport import HTTPProbe

        context = HTTPProbe(HostTarget(scheme='https', host='www.example.com', port=443))._tls_context()
        assert context.check_hostname is True
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_verification_disabled(self):
        import ssl
        from htp_sync.probe.transport import HTTPProbe

        probe = HTTPProbe(HostTarget(scheme='https', host='www.example.com', port=443), verify_cert=False)
        context = probe._tls_context()
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE


class TestConnectionClasses:
    """Test the connection class chosen for each scheme and HTTP version."""

    @pytest.mark.parametrize("scheme, http_version, class_name", [
        ('http', "1", 'ProbeHTTPConnection'),
        ('http', "0", 'ProbeHTTP10Connection'),
        ('https', "1", 'ProbeHTTPSConnection'),
        ('https', "0", 'ProbeHTTPS10Connection'),
    ])
    def test_class_selection(self, scheme, http_version, class_name):
        from htp_sync.probe import transport

        target = HostTarget(scheme=scheme, host='www.example.com', port=8080)
        conn = transport.HTTPProbe(target, http_version=http_version)._create_connection()

        assert type(conn) is getattr(transport, class_name)
        assert conn.host == 'www.example.com'
        assert conn.port == 8080

    @pytest.mark.parametrize("ip_version, family", [
        (0, socket.AF_UNSPEC),
        (4, socket.AF_INET),
        (6, socket.AF_INET6),
    ])
    def test_address_family(self, ip_version, family):
        from htp_sync.probe.transport import HTTPProbe

        target = HostTarget(scheme='http', host='www.example.com', port=80)
        conn = HTTPProbe(target, ip_version=ip_version)._create_connection()
        assert conn.family == family

    def test_proxy_is_the_connection_peer(self):
        from htp_sync.probe.transport import HTTPProbe

        target = HostTarget(scheme='https', host='www.example.com', port=443)
        conn = HTTPProbe(target, proxy=('proxy.example.com', 3128))._create_connection()
        assert (conn.host, conn.port) == ('proxy.example.com', 3128)

    def test_reopen_after_close(self, http_server):
        from htp_sync.probe.transport import HTTPProbe, ProtocolError

        with HTTPProbe(_local_target(http_server), clock=NoSleepClock()) as probe:
            probe.head(when_ns=0)
            probe.close()
            with pytest.raises(ProtocolError, match="not open"):
                probe.head(when_ns=0)
            probe.open()
            probe.head(when_ns=0)

        assert len(http_server.requests) == 2


class TestConnectionErrors:
    """Test the error taxonomy for unreachable hosts."""

    def test_unresolvable_host(self):
        from htp_sync.probe.transport import HTTPProbe, ResolutionError

        target = HostTarget(scheme='http', host='no-such-host.invalid', port=80)
        with pytest.raises(ResolutionError) as exc_info:
            HTTPProbe(target, timeout=2).open()
        assert exc_info.value.host == 'no-such-host.invalid'

    def test_refused_connection(self):
        from htp_sync.probe.transport import ConnectError, HTTPProbe

        # Grab a free port, then release it so nothing listens there
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('127.0.0.1', 0))
            port = sock.getsockname()[1]

        target = HostTarget(scheme='http', host='127.0.0.1', port=port)
        with pytest.raises(ConnectError):
            HTTPProbe(target, timeout=2).open()

    def test_ip_version_restricts_family(self):
        from htp_sync.probe.transport import ConnectError, HTTPProbe, ResolutionError

        # An IPv4 literal has no IPv6 address
        target = HostTarget(scheme='http', host='127.0.0.1', port=80)
        with pytest.raises((ResolutionError, ConnectError)):
            HTTPProbe(target, ip_version=6, timeout=2).open()


class TestWaitUntil:
    """Test alignment of the send instant within the second."""

    def test_later_in_current_second(self):
        from htp_sync.probe.transport import HTTPProbe

        clock = FakeClock(100 * NS_PER_SECOND + 200_000_000)
        probe = HTTPProbe(HostTarget(scheme='http', host='h', port=80), clock=clock)

        send_ns = probe.wait_until(700_000_000)

        assert send_ns == 100 * NS_PER_SECOND + 700_000_000
        assert clock.sleeps == [pytest.approx(0.5)]

    def test_already_passed_waits_for_next_second(self):
        from htp_sync.probe.transport import HTTPProbe

        clock = FakeClock(100 * NS_PER_SECOND + 800_000_000)
        probe = HTTPProbe(HostTarget(scheme='http', host='h', port=80), clock=clock)

        send_ns = probe.wait_until(300_000_000)

        assert send_ns == 101 * NS_PER_SECOND + 300_000_000
        assert clock.sleeps == [pytest.approx(0.5)]

"""
HTTP HEAD request headers and Date header parsing.

From RFC 2616 paragraph 14.18: the Date header "SHOULD represent the best
available approximation of the date and time of message generation". Its
resolution is one second, formatted as specified by RFC 1123:

    Date: Sun, 06 Nov 1994 08:49:37 GMT
"""

import email.utils
from typing import Dict, Iterable, Optional, Tuple

from .. import __version__

USER_AGENT = f"htp-sync/{__version__}"


def build_headers(host_header: str) -> Dict[str, str]:
    """
    Headers for the HEAD request.

    Pragma/Cache-Control "force" HTTP/1.0 and 1.1 servers and caches to return
    a fresh timestamp; keep-alive lets the bisection reuse the connection.
    """
    return {
        'Host': host_header,
        'User-Agent': USER_AGENT,
        'Pragma': 'no-cache',
        'Cache-Control': 'no-cache',
        'Connection': 'keep-alive',
    }


def parse_http_date(value: Optional[str]) -> Optional[int]:
    """
    Parse an RFC 1123 date into epoch seconds.

    Returns:
        Seconds since the epoch (UTC), or None if the value is absent
        or malformed
    """
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_tz(value.strip())
        if parsed is None:
            return None
        return int(email.utils.mktime_tz(parsed))
    except (TypeError, ValueError, IndexError, OverflowError):
        return None


def find_date_header(headers: Iterable[Tuple[str, str]]) -> Optional[str]:
    """Return the first "date" header value, matched case-insensitively."""
    for name, value in headers:
        if name.lower() == 'date':
            return value
    return None

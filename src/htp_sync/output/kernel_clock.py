"""
Kernel clock primitives via ctypes.

    adjust()         adjtime(3)       slew by an offset
    set_time()       clock_settime(2) step to an absolute time
    get_frequency()  adjtimex(2)      read oscillator frequency
    set_frequency()  adjtimex(2)      write oscillator frequency (ADJ_FREQUENCY)
    clear_unsync()   adjtimex(2)      clear STA_UNSYNC (ADJ_STATUS)

Frequency values are in kernel units: ppm scaled by 2^16.
All failures raise OSError carrying errno.
"""

import ctypes
import ctypes.util
import logging
import time
from typing import Optional

from ..interfaces.clock import SystemClock

logger = logging.getLogger(__name__)

# <sys/timex.h>
ADJ_FREQUENCY = 0x0002
ADJ_STATUS = 0x0010
STA_UNSYNC = 0x0040

FREQUENCY_SCALE = 65536          # kernel units per ppm
MAX_FREQUENCY = 500 * FREQUENCY_SCALE   # 500 ppm = 32768000


class _Timeval(ctypes.Structure):
    _fields_ = [
        ("tv_sec", ctypes.c_long),
        ("tv_usec", ctypes.c_long),
    ]


class _Timex(ctypes.Structure):
    """Linux struct timex for adjtimex(2)."""

    _fields_ = [
        ("modes", ctypes.c_uint),
        ("offset", ctypes.c_long),
        ("freq", ctypes.c_long),
        ("maxerror", ctypes.c_long),
        ("esterror", ctypes.c_long),
        ("status", ctypes.c_int),
        ("constant", ctypes.c_long),
        ("precision", ctypes.c_long),
        ("tolerance", ctypes.c_long),
        ("time_tv_sec", ctypes.c_long),
        ("time_tv_usec", ctypes.c_long),
        ("tick", ctypes.c_long),
        ("ppsfreq", ctypes.c_long),
        ("jitter", ctypes.c_long),
        ("shift", ctypes.c_int),
        ("stabil", ctypes.c_long),
        ("jitcnt", ctypes.c_long),
        ("calcnt", ctypes.c_long),
        ("errcnt", ctypes.c_long),
        ("stbcnt", ctypes.c_long),
        ("tai", ctypes.c_int),
        # Padding to match kernel struct size
        ("_pad", ctypes.c_int * 11),
    ]


def clamp_frequency(freq: int) -> int:
    """Limit a frequency to +/-500 ppm."""
    return max(-MAX_FREQUENCY, min(MAX_FREQUENCY, int(freq)))


class KernelClock(SystemClock):
    """System clock with the mutating primitives used for corrections."""

    def __init__(self, libc: Optional[ctypes.CDLL] = None):
        if libc is None:
            libc_name = ctypes.util.find_library("c")
            if libc_name is None:
                raise OSError("Cannot find libc")
            libc = ctypes.CDLL(libc_name, use_errno=True)
        self._libc = libc

        self._adjtime = libc.adjtime
        self._adjtime.argtypes = [ctypes.POINTER(_Timeval), ctypes.POINTER(_Timeval)]
        self._adjtime.restype = ctypes.c_int

        self._adjtimex = libc.adjtimex
        self._adjtimex.argtypes = [ctypes.POINTER(_Timex)]
        self._adjtimex.restype = ctypes.c_int

    def _call_adjtimex(self, tx: _Timex, what: str) -> _Timex:
        if self._adjtimex(ctypes.byref(tx)) < 0:
            errno = ctypes.get_errno()
            raise OSError(errno, f"adjtimex() {what} failed")
        return tx

    def adjust(self, offset: float) -> None:
        """Slew the clock by offset seconds."""
        tv = _Timeval()
        tv.tv_sec = int(offset)
        tv.tv_usec = int(round((offset - tv.tv_sec) * 1e6))
        if self._adjtime(ctypes.byref(tv), None) != 0:
            errno = ctypes.get_errno()
            raise OSError(errno, "adjtime() failed")

    def set_time(self, timestamp: float) -> None:
        """Step CLOCK_REALTIME to an absolute epoch timestamp."""
        time.clock_settime(time.CLOCK_REALTIME, timestamp)

    def get_frequency(self) -> int:
        tx = _Timex()
        tx.modes = 0  # Read-only query
        return int(self._call_adjtimex(tx, "read").freq)

    def set_frequency(self, freq: int) -> None:
        tx = _Timex()
        tx.modes = ADJ_FREQUENCY
        tx.freq = clamp_frequency(freq)
        self._call_adjtimex(tx, "frequency")

    def clear_unsync(self) -> None:
        """Mark the kernel clock as synchronized."""
        tx = _Timex()
        tx.modes = 0
        status = self._call_adjtimex(tx, "read").status

        tx = _Timex()
        tx.modes = ADJ_STATUS
        tx.status = status & ~STA_UNSYNC
        self._call_adjtimex(tx, "status")

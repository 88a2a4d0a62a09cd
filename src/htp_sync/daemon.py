"""Detach from the terminal and maintain the pid file."""

import atexit
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


class AlreadyRunningError(RuntimeError):
    pass


def write_pid_file(pid_file: str, pid: int) -> None:
    Path(pid_file).write_text(f"{pid}\n")


def remove_pid_file(pid_file: str) -> None:
    try:
        Path(pid_file).unlink()
    except FileNotFoundError:
        pass


def daemonize(pid_file: str) -> None:
    """
    Double fork into the background.

    The intermediate child writes the grandchild's pid to pid_file; the
    grandchild removes it again at exit.

    Raises:
        AlreadyRunningError: pid_file exists
    """
    if Path(pid_file).exists():
        raise AlreadyRunningError(f"htp-sync already running (pid file {pid_file} exists)")

    if os.fork() > 0:
        os._exit(0)

    # New session, no controlling terminal
    os.setsid()
    os.chdir("/")
    os.umask(0)

    pid = os.fork()
    if pid > 0:
        try:
            write_pid_file(pid_file, pid)
        except OSError as e:
            logger.error(f"Error writing pid file: {e}")
            os._exit(1)
        os._exit(0)

    # Close out the standard file descriptors
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (sys.stdin.fileno(), sys.stdout.fileno(), sys.stderr.fileno()):
        os.dup2(devnull, fd)
    os.close(devnull)

    atexit.register(remove_pid_file, pid_file)

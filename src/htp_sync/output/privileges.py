"""
Privilege handling for clock mutation.

When htp-sync is told to run as an unprivileged user, only the EFFECTIVE
uid/gid are switched, so root can be regained for the short moment a clock
syscall needs it:

    privileges = drop_privileges("nobody")
    with privileges.elevated():
        clock.adjust(0.25)
    # effective uid is back to "nobody" here, also after an exception
"""

import grp
import logging
import os
import pwd
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class NullPrivileges:
    """No user switch configured: the process keeps whatever it runs as."""

    @contextmanager
    def elevated(self) -> Iterator[None]:
        yield


class Privileges:
    """Effective uid/gid to return to after each privileged operation."""

    def __init__(self, uid: int, gid: int):
        self.uid = uid
        self.gid = gid

    def drop(self) -> None:
        # Group first, dropping the uid would forbid changing the gid
        if self.gid:
            os.setegid(self.gid)
        if self.uid:
            os.seteuid(self.uid)

    @contextmanager
    def elevated(self) -> Iterator[None]:
        """Become root for the duration of the block, then drop again."""
        os.seteuid(0)
        try:
            yield
        finally:
            if self.uid:
                os.seteuid(self.uid)


def resolve_user(user: str, group: Optional[str] = None) -> Privileges:
    """
    Look up uid/gid for "user" and an optional "group".

    Raises:
        KeyError: unknown user or group
    """
    try:
        pw = pwd.getpwnam(user)
    except KeyError:
        raise KeyError(f"Unknown user {user}") from None
    gid = pw.pw_gid
    if group:
        try:
            gid = grp.getgrnam(group).gr_gid
        except KeyError:
            raise KeyError(f"Unknown group {group}") from None
    return Privileges(uid=pw.pw_uid, gid=gid)


def drop_privileges(user: str, group: Optional[str] = None) -> Privileges:
    """Switch effective uid/gid to user[:group], keeping root as real uid."""
    privileges = resolve_user(user, group)
    privileges.drop()
    logger.info(f"Running as uid {privileges.uid}, gid {privileges.gid}")
    return privileges

"""
Scoped privilege drop for writing files as an account's user.

HTTP DCV files go into the account's document root and must be created
with the account's identity. The effective uid, gid and supplementary
groups are switched for the duration of a ``with`` block and always
restored afterwards.
"""

import grp
import os
import pwd
from contextlib import contextmanager
from typing import Iterator

from autossl_acme.exceptions import ValidationError


def _lookup_user(username: str) -> pwd.struct_passwd:
    try:
        return pwd.getpwnam(username)
    except KeyError:
        raise ValidationError(
            code="unknown_user",
            message=f"Unknown system user: {username}",
            details={"username": username},
        )


@contextmanager
def reduced_privileges(username: str) -> Iterator[None]:
    """
    Run the block with ``username``'s effective identity.

    Does nothing when the process is not running as root, or already
    runs as that user.
    """
    if os.geteuid() != 0:
        yield
        return

    user = _lookup_user(username)
    if user.pw_uid == 0:
        yield
        return

    original_uid = os.geteuid()
    original_gid = os.getegid()
    original_groups = os.getgroups()

    groups = [g.gr_gid for g in grp.getgrall() if username in g.gr_mem]
    if user.pw_gid not in groups:
        groups.insert(0, user.pw_gid)

    try:
        os.setgroups(groups)
        os.setegid(user.pw_gid)
        os.seteuid(user.pw_uid)
        yield
    finally:
        # uid first: regaining root is required before gid and groups can change
        os.seteuid(original_uid)
        os.setegid(original_gid)
        os.setgroups(original_groups)

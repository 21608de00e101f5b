"""
Module that translates protocol status codes into Python exceptions.

Every NFS and MOUNT reply starts with a status code where zero means success. The
handful of codes that have an obvious builtin counterpart are raised as subclasses of
that builtin (FileNotFoundError, FileExistsError, PermissionError) so callers can use
the usual except clauses. Every other code is raised as a generic NFSError that keeps
the numeric code for diagnostics.

Failures that happen before a status code is even available are reported separately:

* RPCError for transport failures (connection errors, timeouts, rejected calls)
* DecodeError for replies that can't be parsed into the expected structure
"""

from enum import IntEnum
import errno
from typing import Optional


class NFSStatus(IntEnum):
    """Status codes of NFS version 3 (nfsstat3). The values are part of the wire."""

    NFS3_OK = 0
    NFS3ERR_PERM = 1
    NFS3ERR_NOENT = 2
    NFS3ERR_IO = 5
    NFS3ERR_NXIO = 6
    NFS3ERR_ACCES = 13
    NFS3ERR_EXIST = 17
    NFS3ERR_XDEV = 18
    NFS3ERR_NODEV = 19
    NFS3ERR_NOTDIR = 20
    NFS3ERR_ISDIR = 21
    NFS3ERR_INVAL = 22
    NFS3ERR_FBIG = 27
    NFS3ERR_NOSPC = 28
    NFS3ERR_ROFS = 30
    NFS3ERR_MLINK = 31
    NFS3ERR_NAMETOOLONG = 63
    NFS3ERR_NOTEMPTY = 66
    NFS3ERR_DQUOT = 69
    NFS3ERR_STALE = 70
    NFS3ERR_REMOTE = 71
    NFS3ERR_BADHANDLE = 10001
    NFS3ERR_NOT_SYNC = 10002
    NFS3ERR_BAD_COOKIE = 10003
    NFS3ERR_NOTSUPP = 10004
    NFS3ERR_TOOSMALL = 10005
    NFS3ERR_SERVERFAULT = 10006
    NFS3ERR_BADTYPE = 10007
    NFS3ERR_JUKEBOX = 10008


class NFSError(OSError):
    """Exception raised when a server reports a non-zero status for a call."""

    def __init__(self, status: int) -> None:
        """Instantiate the exception for the specified numeric status code."""
        try:
            name = NFSStatus(status).name
        except ValueError:
            name = "unknown"

        # The low status codes deliberately mirror the POSIX errno values.
        code = status if status in errno.errorcode else errno.EIO

        super().__init__(code, f"protocol error {status} ({name})")

        self.status = status


class NFSPermissionError(NFSError, PermissionError):
    """Permission denied by the server (NFS3ERR_PERM or NFS3ERR_ACCES)."""


class NFSNotFoundError(NFSError, FileNotFoundError):
    """File system entry does not exist (NFS3ERR_NOENT)."""


class NFSExistsError(NFSError, FileExistsError):
    """File system entry already exists (NFS3ERR_EXIST)."""


class RPCError(IOError):
    """Exception raised when a remote call could not be completed."""


class DecodeError(ValueError):
    """Exception raised when a reply can't be decoded into the expected structure."""


_WELL_KNOWN_ERRORS = {
    NFSStatus.NFS3ERR_PERM: NFSPermissionError,
    NFSStatus.NFS3ERR_ACCES: NFSPermissionError,
    NFSStatus.NFS3ERR_NOENT: NFSNotFoundError,
    NFSStatus.NFS3ERR_EXIST: NFSExistsError,
}


def nfs3_error(status: int) -> Optional[NFSError]:
    """Translate a status code into an exception, or None if it signals success."""
    if status == NFSStatus.NFS3_OK:
        return None

    return _WELL_KNOWN_ERRORS.get(status, NFSError)(status)


def check_status(status: int) -> None:
    """Raise the translated exception for a non-zero status code."""
    exc = nfs3_error(status)

    if exc is not None:
        raise exc


def is_not_dir_error(exc: BaseException) -> bool:
    """Check if the exception reports that an entry is not a directory."""
    return isinstance(exc, NFSError) and exc.status == NFSStatus.NFS3ERR_NOTDIR

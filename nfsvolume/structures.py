"""Data structures of the NFS version 3 protocol that are used by the volume client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import stat
from typing import Optional, Tuple

from nfsvolume.xdr import Packer, Unpacker


class FileHandle(bytes):
    """
    Opaque server-assigned identifier of a file system object.

    It has value semantics: two handles with the same bytes refer to the same object,
    which makes them directly usable as dictionary keys.
    """

    def __repr__(self) -> str:
        return f"FileHandle(0x{self.hex()})"

    def __str__(self) -> str:
        return f"0x{self.hex()}"

    @staticmethod
    def read(unpacker: Unpacker) -> FileHandle:
        return FileHandle(unpacker.unpack_opaque())

    def write(self, packer: Packer) -> None:
        packer.pack_opaque(self)


class FileType(IntEnum):
    """Type of file system object (ftype3)."""

    REG = 1
    DIR = 2
    BLK = 3
    CHR = 4
    LNK = 5
    SOCK = 6
    FIFO = 7


_TYPE_MODE_BITS = {
    FileType.REG: stat.S_IFREG,
    FileType.DIR: stat.S_IFDIR,
    FileType.BLK: stat.S_IFBLK,
    FileType.CHR: stat.S_IFCHR,
    FileType.LNK: stat.S_IFLNK,
    FileType.SOCK: stat.S_IFSOCK,
    FileType.FIFO: stat.S_IFIFO,
}


def _read_time_ns(unpacker: Unpacker) -> int:
    seconds = unpacker.unpack_uint()
    nseconds = unpacker.unpack_uint()
    return seconds * 1_000_000_000 + nseconds


def _write_time_ns(packer: Packer, time_ns: int) -> None:
    seconds, nseconds = divmod(time_ns, 1_000_000_000)
    packer.pack_uint(seconds)
    packer.pack_uint(nseconds)


@dataclass
class Attributes:
    """
    File system object attributes (fattr3).

    The type is kept as a raw integer because servers may report types that this
    client doesn't know about. Timestamps are in nanoseconds, like st_mtime_ns.
    """

    type: int
    mode: int
    nlink: int
    uid: int
    gid: int
    size: int
    used: int
    rdev: Tuple[int, int]
    fsid: int
    fileid: int
    atime_ns: int
    mtime_ns: int
    ctime_ns: int

    @property
    def is_dir(self) -> bool:
        return self.type == FileType.DIR

    @property
    def st_mode(self) -> int:
        """Return the permission bits combined with the stat file type bits."""
        return _TYPE_MODE_BITS.get(self.type, 0) | (self.mode & 0o7777)

    @staticmethod
    def read(unpacker: Unpacker) -> Attributes:
        return Attributes(
            type=unpacker.unpack_uint(),
            mode=unpacker.unpack_uint(),
            nlink=unpacker.unpack_uint(),
            uid=unpacker.unpack_uint(),
            gid=unpacker.unpack_uint(),
            size=unpacker.unpack_hyper(),
            used=unpacker.unpack_hyper(),
            rdev=(unpacker.unpack_uint(), unpacker.unpack_uint()),
            fsid=unpacker.unpack_hyper(),
            fileid=unpacker.unpack_hyper(),
            atime_ns=_read_time_ns(unpacker),
            mtime_ns=_read_time_ns(unpacker),
            ctime_ns=_read_time_ns(unpacker),
        )

    def write(self, packer: Packer) -> None:
        packer.pack_uint(self.type)
        packer.pack_uint(self.mode)
        packer.pack_uint(self.nlink)
        packer.pack_uint(self.uid)
        packer.pack_uint(self.gid)
        packer.pack_hyper(self.size)
        packer.pack_hyper(self.used)
        packer.pack_uint(self.rdev[0])
        packer.pack_uint(self.rdev[1])
        packer.pack_hyper(self.fsid)
        packer.pack_hyper(self.fileid)
        _write_time_ns(packer, self.atime_ns)
        _write_time_ns(packer, self.mtime_ns)
        _write_time_ns(packer, self.ctime_ns)


def read_post_op_attr(unpacker: Unpacker) -> Optional[Attributes]:
    """Read attributes that the server may or may not have returned."""
    return unpacker.unpack_optional(lambda: Attributes.read(unpacker))


def read_post_op_fh(unpacker: Unpacker) -> Optional[FileHandle]:
    """Read a file handle that the server may or may not have returned."""
    return unpacker.unpack_optional(lambda: FileHandle.read(unpacker))


def skip_wcc_data(unpacker: Unpacker) -> None:
    """
    Read past weak cache consistency data.

    The attributes of a directory before and after an operation are only useful for
    clients that cache directory attributes, which this one does not.
    """
    # pre_op_attr: size, mtime, ctime
    if unpacker.unpack_bool():
        unpacker.unpack_hyper()
        _read_time_ns(unpacker)
        _read_time_ns(unpacker)

    read_post_op_attr(unpacker)


def write_diropargs(packer: Packer, directory: FileHandle, name: str) -> None:
    """Write the (directory handle, name) pair that addresses a directory entry."""
    directory.write(packer)
    packer.pack_string(name)


@dataclass
class SetAttributes:
    """
    Attributes to set upon creating a file system object (sattr3).

    Only the permission mode is supported, every other attribute is left to the
    server's defaults.
    """

    mode: Optional[int] = None

    def write(self, packer: Packer) -> None:
        packer.pack_optional(self.mode, packer.pack_uint)

        # uid, gid, size
        packer.pack_bool(False)
        packer.pack_bool(False)
        packer.pack_bool(False)

        # atime, mtime (DONT_CHANGE)
        packer.pack_uint(0)
        packer.pack_uint(0)


@dataclass
class DirEntry:
    """Directory entry returned by READDIRPLUS (entryplus3)."""

    fileid: int
    name: str
    cookie: int
    attr: Optional[Attributes]
    handle: Optional[FileHandle]

    @staticmethod
    def read(unpacker: Unpacker) -> DirEntry:
        return DirEntry(
            fileid=unpacker.unpack_hyper(),
            name=unpacker.unpack_string(),
            cookie=unpacker.unpack_hyper(),
            attr=read_post_op_attr(unpacker),
            handle=read_post_op_fh(unpacker),
        )

    def write(self, packer: Packer) -> None:
        packer.pack_hyper(self.fileid)
        packer.pack_string(self.name)
        packer.pack_hyper(self.cookie)
        packer.pack_optional(self.attr, lambda attr: attr.write(packer))
        packer.pack_optional(self.handle, lambda handle: handle.write(packer))


@dataclass
class FSInfo:
    """Static file system information (FSINFO3resok)."""

    attr: Optional[Attributes]
    rtmax: int
    rtpref: int
    rtmult: int
    wtmax: int
    wtpref: int
    wtmult: int
    dtpref: int
    maxfilesize: int
    time_delta_ns: int
    properties: int

    @staticmethod
    def read(unpacker: Unpacker) -> FSInfo:
        return FSInfo(
            attr=read_post_op_attr(unpacker),
            rtmax=unpacker.unpack_uint(),
            rtpref=unpacker.unpack_uint(),
            rtmult=unpacker.unpack_uint(),
            wtmax=unpacker.unpack_uint(),
            wtpref=unpacker.unpack_uint(),
            wtmult=unpacker.unpack_uint(),
            dtpref=unpacker.unpack_uint(),
            maxfilesize=unpacker.unpack_hyper(),
            time_delta_ns=_read_time_ns(unpacker),
            properties=unpacker.unpack_uint(),
        )

    def write(self, packer: Packer) -> None:
        packer.pack_optional(self.attr, lambda attr: attr.write(packer))
        for value in (
            self.rtmax,
            self.rtpref,
            self.rtmult,
            self.wtmax,
            self.wtpref,
            self.wtmult,
            self.dtpref,
        ):
            packer.pack_uint(value)
        packer.pack_hyper(self.maxfilesize)
        _write_time_ns(packer, self.time_delta_ns)
        packer.pack_uint(self.properties)

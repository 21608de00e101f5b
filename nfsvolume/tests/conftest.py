"""Module with fixtures that provide an in-memory NFS server to run targets against."""

from __future__ import annotations

import posixpath
from typing import Callable, Dict, List, Optional, Tuple

import pytest

import nfsvolume.constants as constants
from nfsvolume.errors import NFSStatus
from nfsvolume.structures import (
    Attributes,
    DirEntry,
    FileHandle,
    FileType,
    FSInfo,
)
from nfsvolume.target import Target
from nfsvolume.xdr import Packer, Unpacker


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNode:
    def __init__(self, fileid: int, ftype: FileType, mode: int, parent=None) -> None:
        self.fileid = fileid
        self.type = ftype
        self.mode = mode
        self.parent = parent if parent is not None else self
        self.children: Dict[str, FakeNode] = {}

    @property
    def handle(self) -> FileHandle:
        return FileHandle(b"fh-%08d" % self.fileid)

    def attributes(self) -> Attributes:
        return Attributes(
            type=self.type,
            mode=self.mode,
            nlink=2 if self.type == FileType.DIR else 1,
            uid=1000,
            gid=1000,
            size=4096 if self.type == FileType.DIR else 0,
            used=0,
            rdev=(0, 0),
            fsid=1,
            fileid=self.fileid,
            atime_ns=0,
            mtime_ns=0,
            ctime_ns=0,
        )


class _Status(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(status)
        self.status = status


class FakeNFSServer:
    """
    In-memory NFS server with the calling convention of rpc.Client.

    Requests are decoded from and replies encoded to real XDR, so a Target talking to
    it exercises the full codec. Every call is recorded, failures can be injected per
    procedure (and optionally per name), and READDIRPLUS replies can be split into pages
    of a fixed number of entries.
    """

    COOKIE_VERF = 0xC00C1E

    def __init__(self, page_size: Optional[int] = None) -> None:
        self._next_fileid = 1
        self._nodes: Dict[FileHandle, FakeNode] = {}

        self.root = self._new_node(FileType.DIR, 0o755)

        self.page_size = page_size
        self.lookup_attributes = True
        self.readdir_attributes = True
        self.created_handles = True

        self.calls: List[Tuple[int, Optional[str]]] = []
        self.readdir_args: List[Tuple[int, int]] = []
        self.failures: Dict[Tuple[int, Optional[str]], int] = {}

        self.closed = False

    def _new_node(self, ftype: FileType, mode: int, parent=None) -> FakeNode:
        node = FakeNode(self._next_fileid, ftype, mode, parent)
        self._next_fileid += 1
        self._nodes[node.handle] = node
        return node

    #
    # Helpers for setting up and inspecting the tree
    #

    def resolve(self, path: str) -> Optional[FakeNode]:
        node = self.root

        for name in [c for c in path.split("/") if c]:
            node = node.children.get(name)

            if node is None:
                return None

        return node

    def exists(self, path: str) -> bool:
        return self.resolve(path) is not None

    def make_dirs(self, path: str) -> FakeNode:
        node = self.root

        for name in [c for c in path.split("/") if c]:
            if name not in node.children:
                node.children[name] = self._new_node(FileType.DIR, 0o755, node)

            node = node.children[name]

        return node

    def make_file(self, path: str) -> FakeNode:
        directory, name = posixpath.split(path)
        parent = self.make_dirs(directory)

        node = self._new_node(FileType.REG, 0o644, parent)
        parent.children[name] = node

        return node

    def fail(self, procedure: int, status: int, name: Optional[str] = None) -> None:
        """Make calls of the procedure (on the specified name) fail with the status."""
        self.failures[(procedure, name)] = status

    def count(self, procedure: int, name: Optional[str] = None) -> int:
        """Return the number of calls to the procedure (on the specified name)."""
        return len(
            [c for c in self.calls if c[0] == procedure and (name is None or c[1] == name)]
        )

    #
    # rpc.Client interface
    #

    def call(self, procedure: int, args: bytes = b"") -> Unpacker:
        handlers: Dict[int, Callable[[Unpacker, Packer], None]] = {
            constants.NFSPROC3_LOOKUP: self._lookup,
            constants.NFSPROC3_READDIRPLUS: self._readdirplus,
            constants.NFSPROC3_MKDIR: self._mkdir,
            constants.NFSPROC3_CREATE: self._create,
            constants.NFSPROC3_REMOVE: self._remove,
            constants.NFSPROC3_RMDIR: self._rmdir,
            constants.NFSPROC3_FSINFO: self._fsinfo,
        }

        req = Unpacker(args)
        res = Packer()

        try:
            handlers[procedure](req, res)
        except _Status as e:
            res = Packer()
            res.pack_uint(e.status)
            res.pack_bool(False)
        else:
            req.done()

        return Unpacker(res.get_buffer())

    def close(self) -> None:
        self.closed = True

    #
    # Procedures
    #

    def _record(self, procedure: int, name: Optional[str] = None) -> None:
        self.calls.append((procedure, name))

        for key in ((procedure, name), (procedure, None)):
            if key in self.failures:
                raise _Status(self.failures[key])

    def _node(self, req: Unpacker) -> FakeNode:
        node = self._nodes.get(FileHandle.read(req))

        if node is None:
            raise _Status(NFSStatus.NFS3ERR_STALE)

        return node

    def _directory(self, req: Unpacker) -> FakeNode:
        node = self._node(req)

        if node.type != FileType.DIR:
            raise _Status(NFSStatus.NFS3ERR_NOTDIR)

        return node

    @staticmethod
    def _read_sattr(req: Unpacker) -> Optional[int]:
        mode = req.unpack_optional(req.unpack_uint)
        req.unpack_optional(req.unpack_uint)
        req.unpack_optional(req.unpack_uint)
        req.unpack_optional(req.unpack_hyper)
        for _ in range(2):
            if req.unpack_uint() == 2:
                req.unpack_uint()
                req.unpack_uint()
        return mode

    @staticmethod
    def _write_wcc(res: Packer) -> None:
        res.pack_bool(False)
        res.pack_bool(False)

    def _lookup(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        name = req.unpack_string()
        self._record(constants.NFSPROC3_LOOKUP, name)

        if name == ".":
            node = directory
        elif name == "..":
            node = directory.parent
        elif name in directory.children:
            node = directory.children[name]
        else:
            raise _Status(NFSStatus.NFS3ERR_NOENT)

        res.pack_uint(NFSStatus.NFS3_OK)
        node.handle.write(res)
        attr = node.attributes() if self.lookup_attributes else None
        res.pack_optional(attr, lambda a: a.write(res))
        res.pack_optional(directory.attributes(), lambda a: a.write(res))

    def _readdirplus(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        cookie = req.unpack_hyper()
        cookie_verf = req.unpack_hyper()
        req.unpack_uint()
        req.unpack_uint()
        self._record(constants.NFSPROC3_READDIRPLUS)
        self.readdir_args.append((cookie, cookie_verf))

        if cookie != 0 and cookie_verf != self.COOKIE_VERF:
            raise _Status(NFSStatus.NFS3ERR_BAD_COOKIE)

        listing = [(".", directory), ("..", directory.parent)]
        listing += list(directory.children.items())

        entries = [
            DirEntry(
                fileid=node.fileid,
                name=name,
                cookie=index + 1,
                attr=node.attributes() if self.readdir_attributes else None,
                handle=node.handle,
            )
            for index, (name, node) in enumerate(listing)
        ]
        entries = [e for e in entries if e.cookie > cookie]

        page = entries if self.page_size is None else entries[: self.page_size]
        eof = len(page) == len(entries)

        res.pack_uint(NFSStatus.NFS3_OK)
        res.pack_optional(directory.attributes(), lambda a: a.write(res))
        res.pack_hyper(self.COOKIE_VERF)
        res.pack_list(page, lambda e: e.write(res))
        res.pack_bool(eof)

    def _mkdir(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        name = req.unpack_string()
        mode = self._read_sattr(req)
        self._record(constants.NFSPROC3_MKDIR, name)

        if name in directory.children:
            raise _Status(NFSStatus.NFS3ERR_EXIST)

        node = self._new_node(FileType.DIR, mode or 0o755, directory)
        directory.children[name] = node

        res.pack_uint(NFSStatus.NFS3_OK)
        handle = node.handle if self.created_handles else None
        res.pack_optional(handle, lambda h: h.write(res))
        res.pack_optional(node.attributes(), lambda a: a.write(res))
        self._write_wcc(res)

    def _create(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        name = req.unpack_string()
        how = req.unpack_uint()
        mode = self._read_sattr(req) if how != 2 else None
        if how == 2:
            req.unpack_fopaque(8)
        self._record(constants.NFSPROC3_CREATE, name)

        node = directory.children.get(name)

        if node is not None and (how != 0 or node.type != FileType.REG):
            raise _Status(NFSStatus.NFS3ERR_EXIST)

        if node is None:
            node = self._new_node(FileType.REG, mode or 0o644, directory)
            directory.children[name] = node

        res.pack_uint(NFSStatus.NFS3_OK)
        handle = node.handle if self.created_handles else None
        res.pack_optional(handle, lambda h: h.write(res))
        res.pack_optional(node.attributes(), lambda a: a.write(res))
        self._write_wcc(res)

    def _remove(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        name = req.unpack_string()
        self._record(constants.NFSPROC3_REMOVE, name)

        node = directory.children.get(name)

        if node is None:
            raise _Status(NFSStatus.NFS3ERR_NOENT)
        elif node.type == FileType.DIR:
            raise _Status(NFSStatus.NFS3ERR_ISDIR)

        del directory.children[name]
        del self._nodes[node.handle]

        res.pack_uint(NFSStatus.NFS3_OK)
        self._write_wcc(res)

    def _rmdir(self, req: Unpacker, res: Packer) -> None:
        directory = self._directory(req)
        name = req.unpack_string()
        self._record(constants.NFSPROC3_RMDIR, name)

        node = directory.children.get(name)

        if node is None:
            raise _Status(NFSStatus.NFS3ERR_NOENT)
        elif node.type != FileType.DIR:
            raise _Status(NFSStatus.NFS3ERR_NOTDIR)
        elif node.children:
            raise _Status(NFSStatus.NFS3ERR_NOTEMPTY)

        del directory.children[name]
        del self._nodes[node.handle]

        res.pack_uint(NFSStatus.NFS3_OK)
        self._write_wcc(res)

    def _fsinfo(self, req: Unpacker, res: Packer) -> None:
        node = self._node(req)
        self._record(constants.NFSPROC3_FSINFO)

        res.pack_uint(NFSStatus.NFS3_OK)
        FSInfo(
            attr=node.attributes(),
            rtmax=1048576,
            rtpref=1048576,
            rtmult=4096,
            wtmax=1048576,
            wtpref=1048576,
            wtmult=512,
            dtpref=1048576,
            maxfilesize=2 ** 63 - 1,
            time_delta_ns=1,
            properties=0x1B,
        ).write(res)


@pytest.fixture
def server() -> FakeNFSServer:
    return FakeNFSServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def target(server, clock):
    t = Target(server, server.root.handle, entry_timeout=10.0, clock=clock)

    yield t

    t.close()

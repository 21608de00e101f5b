"""
Module that implements path based file system operations on a mounted NFS export.

NFS version 3 doesn't know about paths. Every procedure addresses objects by file
handle, or by the handle of a directory and the name of an entry in it. The Target
class bridges that gap: a path is resolved into a handle by looking up its components
one at a time, starting at the root handle of the export, after which the actual
operation is a single call on that handle.

Looking up every component of every path is expensive, so the handles of directories
are cached for a while (see nfsvolume.cache). Operations that create or delete entries
invalidate the cached lookup of that entry, because it may now point to a new object or
to nothing at all.

Symbolic links are not followed while resolving paths. A symlink is treated like any
other leaf object.
"""

from __future__ import annotations

import posixpath
import stat
import time
from typing import Callable, List, Optional, Tuple

from nfsvolume.cache import EntryCache, Janitor
from nfsvolume.config import CacheConfig
import nfsvolume.constants as constants
from nfsvolume.errors import check_status, DecodeError, is_not_dir_error, NFSError
from nfsvolume.logger import log, summarize
from nfsvolume.mount import MountClient
import nfsvolume.rpc as rpc
from nfsvolume.structures import (
    Attributes,
    DirEntry,
    FileHandle,
    FSInfo,
    read_post_op_attr,
    read_post_op_fh,
    SetAttributes,
    skip_wcc_data,
    write_diropargs,
)
from nfsvolume.xdr import Packer, Unpacker

# createmode3, files are created without checking if they already exist
CREATE_UNCHECKED = 0


class Target:
    """
    Client for a single mounted NFS export.

    All operations are synchronous and may be called from multiple threads at once, as
    long as the RPC client supports that (rpc.Client does). A background thread sweeps
    expired entries from the lookup cache until the target is closed.

    Example:
    ```
    with Target.dial("nfs.local", "/export", auth) as target:
        target.mkdir("/a/b", 0o755)
        entries = target.readdirplus("/a")
    ```
    """

    def __init__(
        self,
        client: rpc.Client,
        root: FileHandle,
        entry_timeout: float = constants.DEFAULT_ENTRY_TIMEOUT,
        sweep_interval: float = constants.DEFAULT_SWEEP_INTERVAL,
        sweep_limit: int = constants.DEFAULT_SWEEP_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Instantiate a target for the export with the specified root handle.

        The client must be connected to the NFS program and carry the credentials of
        the caller. Directory lookups are cached for entry_timeout seconds.
        """
        self._client = client
        self._root = FileHandle(root)
        self._entry_timeout = entry_timeout

        self._cache = EntryCache(clock)
        self._janitor = Janitor(self._cache, sweep_interval, sweep_limit)
        self._janitor.start()

        # Set by dial() if the target is responsible for unmounting
        self._mount: Optional[MountClient] = None
        self._dirpath: Optional[str] = None

        self.info: Optional[FSInfo] = None

    @classmethod
    def dial(
        cls,
        host: str,
        dirpath: str,
        auth: rpc.Auth = rpc.AUTH_NULL,
        port: Optional[int] = None,
        mount_port: Optional[int] = None,
        timeout: Optional[float] = None,
        cache: Optional[CacheConfig] = None,
    ) -> Target:
        """
        Mount an export of a server and return a target for it.

        Ports that aren't specified are looked up through the portmapper of the host.
        The file system information is retrieved right away, which also verifies that
        the NFS program is reachable.
        """
        if cache is None:
            cache = CacheConfig()

        if mount_port is None:
            mount_port = rpc.getport(
                host, constants.MOUNT3_PROG, constants.MOUNT3_VERS, timeout
            )

        if port is None:
            port = rpc.getport(host, constants.NFS3_PROG, constants.NFS3_VERS, timeout)

        mount = MountClient(
            rpc.Client(
                host,
                mount_port,
                constants.MOUNT3_PROG,
                constants.MOUNT3_VERS,
                auth,
                timeout,
            )
        )

        try:
            root = mount.mnt(dirpath)
        except Exception:
            mount.close()
            raise

        client = rpc.Client(
            host, port, constants.NFS3_PROG, constants.NFS3_VERS, auth, timeout
        )

        target = cls(
            client,
            root,
            entry_timeout=cache.entry_timeout,
            sweep_interval=cache.sweep_interval,
            sweep_limit=cache.sweep_limit,
        )
        target._mount = mount
        target._dirpath = dirpath

        try:
            target.info = target.fsinfo()
        except Exception:
            target.close()
            raise

        log.debug(f"{host}:{dirpath} fsinfo={summarize(target.info)}")

        return target

    def close(self) -> None:
        """Stop the cache janitor, unmount the export if mounted by dial() and disconnect."""
        self._janitor.stop()

        try:
            if self._mount is not None and self._dirpath is not None:
                try:
                    self._mount.umnt(self._dirpath)
                finally:
                    self._mount.close()
                    self._mount = None
        finally:
            self._client.close()

    def __enter__(self) -> Target:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def root(self) -> FileHandle:
        return self._root

    @property
    def cache(self) -> EntryCache:
        return self._cache

    def _call(self, procedure: int, args: Packer) -> Unpacker:
        """Call an NFS procedure and raise the translated error for a non-zero status."""
        res = self._client.call(procedure, args.get_buffer())
        check_status(res.unpack_uint())
        return res

    #
    # File system information
    #

    def fsinfo(self) -> FSInfo:
        """Retrieve the static file system information of the export."""
        args = Packer()
        self._root.write(args)

        try:
            res = self._call(constants.NFSPROC3_FSINFO, args)
        except OSError as e:
            log.debug(f"fsinfo({self._root}): {e}")
            raise

        try:
            return FSInfo.read(res)
        except DecodeError as e:
            log.error(f"fsinfo({self._root}) failed to parse result: {e}")
            raise

    #
    # Path resolution
    #

    @staticmethod
    def _split_path(path: str) -> List[str]:
        """
        Split a path into the names to look up one after another from the root.

        The root itself is looked up as "." so that resolving "/" or "" yields the
        attributes of the root directory.
        """
        normalized = posixpath.normpath(path)
        components = [c for c in normalized.split("/") if c]

        if normalized.startswith("/") or not components:
            components.insert(0, ".")

        return components

    @staticmethod
    def _split_parent(path: str) -> Tuple[str, str]:
        """Split a path into its parent directory and the name of the entry in it."""
        directory, name = posixpath.split(path.rstrip("/"))

        if name in ("", ".", ".."):
            raise ValueError(f"path {path!r} does not name a directory entry")

        return directory, name

    def lookup(self, path: str) -> Tuple[Optional[Attributes], FileHandle]:
        """
        Resolve a path into the attributes and handle of the object it refers to.

        Attributes may be None if the server didn't return them for the last component.
        Fails with the error of the first component that can't be looked up.
        """
        attr: Optional[Attributes] = None
        fh = self._root

        for name in self._split_path(path):
            attr, fh = self._cached_lookup(fh, name)

        return attr, fh

    def _cached_lookup(
        self, fh: FileHandle, name: str
    ) -> Tuple[Optional[Attributes], FileHandle]:
        entry = self._cache.lookup(fh, name)

        if entry is not None:
            return entry.attr, entry.handle

        generation = self._cache.generation
        attr, handle = self._lookup(fh, name)

        if attr is not None:
            self._cache.insert(
                fh, name, handle, attr, self._entry_timeout, generation=generation
            )

        return attr, handle

    def _lookup(
        self, fh: FileHandle, name: str
    ) -> Tuple[Optional[Attributes], FileHandle]:
        """Look up a name in a directory without consulting the cache."""
        args = Packer()
        write_diropargs(args, fh, name)

        try:
            res = self._call(constants.NFSPROC3_LOOKUP, args)
        except OSError as e:
            log.debug(f"lookup({name}): {e}")
            raise

        try:
            handle = FileHandle.read(res)
            attr = read_post_op_attr(res)
            read_post_op_attr(res)
        except DecodeError as e:
            log.error(f"lookup({name}) failed to parse result: {e}")
            raise

        log.debug(f"lookup({name}): {handle}, attr: {attr}")

        return attr, handle

    #
    # Directory listing
    #

    def readdirplus(self, path: str) -> List[DirEntry]:
        """List all entries of a directory, including their attributes and handles."""
        _, fh = self.lookup(path)

        return self._readdirplus(fh)

    def _readdirplus(self, fh: FileHandle) -> List[DirEntry]:
        """
        List a directory by handle, calling READDIRPLUS until the server signals EOF.

        Every page continues after the cookie of the last entry of the previous page and
        echoes the cookie verifier the server returned with it. Nothing is returned if
        any page fails.
        """
        cookie = 0
        cookie_verf = 0
        eof = False

        entries: List[DirEntry] = []

        while not eof:
            args = Packer()
            fh.write(args)
            args.pack_hyper(cookie)
            args.pack_hyper(cookie_verf)
            args.pack_uint(constants.READDIRPLUS_DIRCOUNT)
            args.pack_uint(constants.READDIRPLUS_MAXCOUNT)

            try:
                res = self._call(constants.NFSPROC3_READDIRPLUS, args)
            except OSError as e:
                log.debug(f"readdirplus({fh}): {e}")
                raise

            try:
                read_post_op_attr(res)
                cookie_verf = res.unpack_hyper()

                page = list(res.unpack_list(lambda: DirEntry.read(res)))

                eof = res.unpack_bool()
            except DecodeError as e:
                log.error(f"readdirplus({fh}) failed to parse result: {e}")
                raise

            if page:
                cookie = page[-1].cookie
            elif not eof:
                # Asking again with the same cookie would return the same page
                raise DecodeError(f"readdirplus({fh}): empty page before end of listing")

            entries += page

            if not eof:
                log.debug(f"readdirplus({fh}): no EOF after {len(entries)} entries")

        return entries

    #
    # Creation
    #

    def mkdir(self, path: str, mode: int = 0o755) -> FileHandle:
        """Create a directory with the specified permissions and return its handle."""
        directory, name = self._split_parent(path)
        _, fh = self.lookup(directory)

        args = Packer()
        write_diropargs(args, fh, name)
        SetAttributes(mode=stat.S_IMODE(mode)).write(args)

        try:
            res = self._call(constants.NFSPROC3_MKDIR, args)
        except OSError as e:
            log.debug(f"mkdir({path}): {e}")
            raise

        self._cache.invalidate(fh, name)

        handle = self._read_created(res, fh, name)

        log.debug(f"mkdir({path}): created successfully ({handle})")

        return handle

    def create(self, path: str, mode: int = 0o644) -> FileHandle:
        """Create a regular file with the specified permissions and return its handle."""
        directory, name = self._split_parent(path)
        _, fh = self.lookup(directory)

        args = Packer()
        write_diropargs(args, fh, name)
        args.pack_uint(CREATE_UNCHECKED)
        SetAttributes(mode=stat.S_IMODE(mode)).write(args)

        try:
            res = self._call(constants.NFSPROC3_CREATE, args)
        except OSError as e:
            log.debug(f"create({path}): {e}")
            raise

        self._cache.invalidate(fh, name)

        handle = self._read_created(res, fh, name)

        log.debug(f"create({path}): created successfully ({handle})")

        return handle

    def _read_created(self, res: Unpacker, fh: FileHandle, name: str) -> FileHandle:
        """
        Read the result of MKDIR or CREATE and return the handle of the new object.

        The server is allowed to leave out the handle, in which case it's looked up.
        """
        try:
            handle = read_post_op_fh(res)
            read_post_op_attr(res)
            skip_wcc_data(res)
        except DecodeError as e:
            log.error(f"failed to parse result of creating {name}: {e}")
            raise

        if handle is None:
            _, handle = self._lookup(fh, name)

        return handle

    #
    # Deletion
    #

    def remove(self, path: str) -> None:
        """Remove a file."""
        directory, name = self._split_parent(path)
        _, fh = self.lookup(directory)

        self._remove(fh, name)

    def _remove(self, fh: FileHandle, name: str) -> None:
        args = Packer()
        write_diropargs(args, fh, name)

        try:
            self._call(constants.NFSPROC3_REMOVE, args)
        except OSError as e:
            log.debug(f"remove({name}): {e}")
            raise

        self._cache.invalidate(fh, name)

        log.debug(f"remove({name}): deleted successfully")

    def rmdir(self, path: str) -> None:
        """Remove an empty directory."""
        directory, name = self._split_parent(path)
        _, fh = self.lookup(directory)

        self._rmdir(fh, name)

    def _rmdir(self, fh: FileHandle, name: str) -> None:
        args = Packer()
        write_diropargs(args, fh, name)

        try:
            self._call(constants.NFSPROC3_RMDIR, args)
        except OSError as e:
            log.debug(f"rmdir({name}): {e}")
            raise

        self._cache.invalidate(fh, name)

        log.debug(f"rmdir({name}): deleted successfully")

    def remove_all(self, path: str) -> None:
        """
        Remove a directory and everything in it.

        A directory that doesn't exist is not an error, but a path that refers to
        anything other than a directory is. The tree is deleted depth-first and the
        first failure aborts the whole operation, which may leave the tree partially
        deleted.
        """
        directory, name = self._split_parent(path)
        _, parent_fh = self.lookup(directory)

        # Easy path: the directory is empty or doesn't exist
        try:
            self._rmdir(parent_fh, name)
            return
        except FileNotFoundError:
            return
        except NFSError as e:
            if is_not_dir_error(e):
                raise

        _, fh = self._lookup(parent_fh, name)

        self._remove_all(fh)

        # Delete the now empty directory we started at
        self._rmdir(parent_fh, name)

    def _remove_all(self, fh: FileHandle) -> None:
        """Empty the directory with the specified handle, depth-first."""
        for entry in self._readdirplus(fh):
            if entry.name in (".", ".."):
                continue

            attr, handle = entry.attr, entry.handle

            if attr is None or handle is None:
                attr, handle = self._lookup(fh, entry.name)

            # Directories are emptied first and should be empty when we get back
            if attr is not None and attr.is_dir:
                self._remove_all(handle)
                remove = self._rmdir
            else:
                remove = self._remove

            try:
                remove(fh, entry.name)
            except OSError as e:
                log.error(f"error deleting {entry.name}: {e}")
                raise

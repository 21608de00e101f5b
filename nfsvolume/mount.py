"""Module that implements the MOUNT protocol calls needed to obtain a root handle."""

from typing import List

import nfsvolume.constants as constants
from nfsvolume.errors import check_status
from nfsvolume.logger import log
import nfsvolume.rpc as rpc
from nfsvolume.structures import FileHandle
from nfsvolume.xdr import Packer


class MountClient:
    """
    Client of the MOUNT version 3 program.

    The status codes of MOUNT (mountstat3) use the same numbering as NFS, so they are
    translated into the same exceptions.
    """

    def __init__(self, client: rpc.Client) -> None:
        """Instantiate with an RPC client for the MOUNT program."""
        self._client = client

        # Authentication flavors supported by the server for the last mounted export
        self.auth_flavors: List[int] = []

    def mnt(self, dirpath: str) -> FileHandle:
        """Mount the exported directory and return the handle of its root."""
        args = Packer()
        args.pack_string(dirpath)

        res = self._client.call(constants.MOUNTPROC3_MNT, args.get_buffer())

        try:
            check_status(res.unpack_uint())
        except OSError as e:
            log.debug(f"mnt({dirpath}): {e}")
            raise

        fh = FileHandle.read(res)
        self.auth_flavors = res.unpack_array(res.unpack_uint)

        log.debug(f"mnt({dirpath}): root {fh}, auth flavors {self.auth_flavors}")

        return fh

    def umnt(self, dirpath: str) -> None:
        """Remove the mount list entry for the exported directory."""
        args = Packer()
        args.pack_string(dirpath)

        self._client.call(constants.MOUNTPROC3_UMNT, args.get_buffer())

        log.debug(f"umnt({dirpath}): done")

    def close(self) -> None:
        self._client.close()

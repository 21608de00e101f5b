"""
ONC RPC version 2 (RFC 5531) client over TCP.

NFS, MOUNT and the portmapper are all ONC RPC programs. A call consists of a header
that identifies the program, version and procedure, followed by the XDR encoded
arguments of that procedure. The reply echoes the transaction id of the call and
either carries the XDR encoded results or a reason why the call was rejected.

On TCP every message is sent as a record that is split into one or more fragments,
each prefixed by a 4-byte header with its length. The most significant bit of that
header marks the last fragment of a record.

The client supports multithreading by keeping a socket per thread, since request and
reply need to happen in lockstep per connection. Replies are decoded lazily by the
caller through the returned Unpacker.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
import logging
import random
import socket
import struct
import threading
import time
from typing import Dict, List, Optional

import nfsvolume.constants as constants
from nfsvolume.errors import DecodeError, RPCError
from nfsvolume.logger import log, summarize_bytes
from nfsvolume.xdr import Packer, Unpacker

# Bit in the record marking header that marks the last fragment of a record
LAST_FRAGMENT = 0x80000000
FRAGMENT_LENGTH = 0x7FFFFFFF


class MessageType(IntEnum):
    CALL = 0
    REPLY = 1


class ReplyStat(IntEnum):
    MSG_ACCEPTED = 0
    MSG_DENIED = 1


class AcceptStat(IntEnum):
    SUCCESS = 0
    PROG_UNAVAIL = 1
    PROG_MISMATCH = 2
    PROC_UNAVAIL = 3
    GARBAGE_ARGS = 4
    SYSTEM_ERR = 5


class RejectStat(IntEnum):
    RPC_MISMATCH = 0
    AUTH_ERROR = 1


class AuthFlavor(IntEnum):
    AUTH_NULL = 0
    AUTH_UNIX = 1


class Auth(ABC):
    """Credential or verifier that is sent along with every call."""

    flavor: AuthFlavor

    @abstractmethod
    def body(self) -> bytes:
        """Return the XDR encoded body of the credential."""
        raise NotImplementedError()

    def write(self, packer: Packer) -> None:
        packer.pack_uint(self.flavor)
        packer.pack_opaque(self.body())


class AuthNull(Auth):
    """Empty credential."""

    flavor = AuthFlavor.AUTH_NULL

    def body(self) -> bytes:
        return b""


@dataclass
class AuthUnix(Auth):
    """UNIX style credential with the user and group ids of the caller."""

    machine_name: str
    uid: int
    gid: int
    gids: List[int] = field(default_factory=list)
    stamp: int = 0

    flavor = AuthFlavor.AUTH_UNIX

    def body(self) -> bytes:
        packer = Packer()

        packer.pack_uint(self.stamp)
        packer.pack_string(self.machine_name)
        packer.pack_uint(self.uid)
        packer.pack_uint(self.gid)
        packer.pack_array(self.gids, packer.pack_uint)

        return packer.get_buffer()


AUTH_NULL = AuthNull()


class Client:
    """
    RPC client to invoke procedures of a single program version on a server.

    A single client can be used by multiple threads and will internally create multiple
    socket connections as needed.

    Example:
    ```
    client = rpc.Client("nfs.local", 2049, NFS3_PROG, NFS3_VERS, auth)
    reply = client.call(NFSPROC3_FSINFO, args)
    ```
    """

    def __init__(
        self,
        host: str,
        port: int,
        program: int,
        version: int,
        auth: Auth = AUTH_NULL,
        timeout: Optional[float] = None,
        max_record_size: int = constants.RPC_MAX_RECORD_SIZE,
    ) -> None:
        """
        Instantiate an RPC client for the program version at the given address.

        The timeout in seconds applies to connecting, sending and receiving. Without a
        timeout calls may block indefinitely. Replies larger than max_record_size bytes
        fail the call.
        """
        self._socket_pool: Dict[threading.Thread, socket.socket] = {}
        self._socket_pool_lock = threading.Lock()

        self.host = host
        self.port = port
        self.program = program
        self.version = version
        self.auth = auth
        self.timeout = timeout
        self.max_record_size = max_record_size

        self._xid = random.getrandbits(32)
        self._xid_lock = threading.Lock()

    def _socket(self) -> socket.socket:
        """
        Return a socket to be used for the current thread.

        Each thread needs its own socket because call and reply need to happen in
        lockstep per connection.
        """
        t = threading.current_thread()

        with self._socket_pool_lock:
            if t not in self._socket_pool:
                try:
                    sock = socket.create_connection(
                        (self.host, self.port), timeout=self.timeout
                    )
                except OSError as e:
                    raise RPCError(f"failed to connect to {self.host}:{self.port}: {e}")

                self._socket_pool[t] = sock

            return self._socket_pool[t]

    def _discard_socket(self) -> None:
        """Close the socket of the current thread, e.g. because its stream is broken."""
        t = threading.current_thread()

        with self._socket_pool_lock:
            sock = self._socket_pool.pop(t, None)

        if sock is not None:
            sock.close()

    def close(self) -> None:
        """Close all sockets of this client."""
        with self._socket_pool_lock:
            for sock in self._socket_pool.values():
                sock.close()

            self._socket_pool.clear()

    def __del__(self) -> None:
        """Close the client sockets."""
        self.close()

    @property
    def socket_count(self) -> int:
        """Return the number of sockets for this client."""
        with self._socket_pool_lock:
            return len(self._socket_pool)

    def _next_xid(self) -> int:
        with self._xid_lock:
            self._xid = (self._xid + 1) & 0xFFFFFFFF
            return self._xid

    def ping(self) -> None:
        """Check if the program is available by calling its NULL procedure."""
        self.call(constants.NULLPROC)

    def call(self, procedure: int, args: bytes = b"") -> Unpacker:
        """
        Call a remote procedure with XDR encoded arguments.

        Returns an unpacker positioned at the start of the procedure results. Raises
        RPCError if the call could not be completed or was rejected by the server.
        """
        xid = self._next_xid()

        header = Packer()
        header.pack_uint(xid)
        header.pack_uint(MessageType.CALL)
        header.pack_uint(constants.RPC_VERSION)
        header.pack_uint(self.program)
        header.pack_uint(self.version)
        header.pack_uint(procedure)
        self.auth.write(header)
        AUTH_NULL.write(header)

        sock = self._socket()

        t_call = time.time()

        try:
            self._send_record(sock, header.get_buffer() + args)
            reply = self._recv_record(sock)
        except OSError as e:
            # The stream can't be trusted to be at a record boundary anymore
            self._discard_socket()
            raise RPCError(f"rpc call {self.program}:{procedure} failed: {e}")

        t_return = time.time()

        # Explicit check before logging because summarize is relatively slow
        if log.isEnabledFor(logging.DEBUG):
            t_millis = round((t_return - t_call) * 1000)
            log.debug(
                f"rpc::{self.program}:{procedure}({summarize_bytes(args)})"
                f" - {t_millis} ms"
            )

        unpacker = Unpacker(reply)

        try:
            self._check_reply(unpacker, xid)
        except DecodeError as e:
            self._discard_socket()
            raise RPCError(f"malformed rpc reply: {e}")

        return unpacker

    @staticmethod
    def _check_reply(unpacker: Unpacker, xid: int) -> None:
        """Read the reply header and raise if the call was not successful."""
        reply_xid = unpacker.unpack_uint()

        if reply_xid != xid:
            raise RPCError(f"reply xid {reply_xid} does not match call xid {xid}")

        message_type = unpacker.unpack_uint()

        if message_type != MessageType.REPLY:
            raise RPCError(f"unexpected message type {message_type}")

        reply_stat = unpacker.unpack_uint()

        if reply_stat == ReplyStat.MSG_DENIED:
            reject_stat = unpacker.unpack_uint()

            if reject_stat == RejectStat.RPC_MISMATCH:
                low = unpacker.unpack_uint()
                high = unpacker.unpack_uint()
                raise RPCError(f"rpc version mismatch (server supports {low}-{high})")
            elif reject_stat == RejectStat.AUTH_ERROR:
                raise RPCError(f"authentication error {unpacker.unpack_uint()}")
            else:
                raise RPCError(f"call denied ({reject_stat})")
        elif reply_stat != ReplyStat.MSG_ACCEPTED:
            raise RPCError(f"unexpected reply status {reply_stat}")

        # Verifier, unused because only AUTH_NULL verifiers are sent
        unpacker.unpack_uint()
        unpacker.unpack_opaque()

        accept_stat = unpacker.unpack_uint()

        if accept_stat == AcceptStat.PROG_MISMATCH:
            low = unpacker.unpack_uint()
            high = unpacker.unpack_uint()
            raise RPCError(f"program version mismatch (server supports {low}-{high})")
        elif accept_stat != AcceptStat.SUCCESS:
            try:
                reason = AcceptStat(accept_stat).name
            except ValueError:
                reason = str(accept_stat)

            raise RPCError(f"call rejected ({reason})")

    @staticmethod
    def _send_record(sock: socket.socket, data: bytes) -> None:
        """Send data as a record consisting of a single fragment."""
        sock.sendall(struct.pack("!I", LAST_FRAGMENT | len(data)) + data)

    def _recv_record(self, sock: socket.socket) -> bytes:
        """Receive a record by reading fragments until the last one."""
        fragments = []
        size = 0

        while True:
            (header,) = struct.unpack("!I", self._recv_exact(sock, 4))

            size += header & FRAGMENT_LENGTH

            # Checked before reading so a bogus header can't make us allocate it
            if size > self.max_record_size:
                raise RPCError(
                    f"record of at least {size} bytes exceeds the limit of "
                    f"{self.max_record_size} bytes"
                )

            fragments.append(self._recv_exact(sock, header & FRAGMENT_LENGTH))

            if header & LAST_FRAGMENT:
                return b"".join(fragments)

    @staticmethod
    def _recv_exact(sock: socket.socket, size: int) -> bytes:
        buf = bytearray()

        while len(buf) < size:
            chunk = sock.recv(size - len(buf))

            if not chunk:
                raise ConnectionError("connection closed by server")

            buf += chunk

        return bytes(buf)


def getport(
    host: str, program: int, version: int, timeout: Optional[float] = None
) -> int:
    """Look up the TCP port of a program version through the portmapper of a host."""
    client = Client(
        host,
        constants.PMAP_PORT,
        constants.PMAP_PROG,
        constants.PMAP_VERS,
        timeout=timeout,
    )

    args = Packer()
    args.pack_uint(program)
    args.pack_uint(version)
    args.pack_uint(constants.IPPROTO_TCP)
    args.pack_uint(0)

    try:
        port = client.call(constants.PMAPPROC_GETPORT, args.get_buffer()).unpack_uint()
    finally:
        client.close()

    if port == 0:
        raise RPCError(f"program {program} v{version} is not registered on {host}")

    log.debug(f"portmap {host}: program {program} v{version} -> port {port}")

    return port

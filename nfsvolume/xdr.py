"""
Serialization and deserialization of XDR (RFC 4506) data.

All ONC RPC and NFS structures are built from a handful of XDR primitives: big-endian
32-bit and 64-bit integers, booleans encoded as integers, and opaque data or strings
that are prefixed with their length and padded to a multiple of four bytes.

XDR has one more convention that is used all over NFS: optional data. An optional
value is encoded as a boolean that says whether the value follows, and then the value
itself if it does. A linked list is simply a chain of optional values, so it is
flattened into the stream as "flag, item, flag, item, ..., false". Unpacker models this
with unpack_optional() and the generator unpack_list().
"""

import struct
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

from nfsvolume.errors import DecodeError

T = TypeVar("T")


def _padding(length: int) -> int:
    return (4 - length % 4) % 4


class Packer:
    """Buffer that XDR values can be appended to."""

    def __init__(self) -> None:
        """Instantiate an empty buffer."""
        self._chunks: List[bytes] = []

    def get_buffer(self) -> bytes:
        """Return all data packed so far."""
        return b"".join(self._chunks)

    def pack_uint(self, value: int) -> None:
        self._chunks.append(struct.pack("!I", value))

    def pack_hyper(self, value: int) -> None:
        self._chunks.append(struct.pack("!Q", value))

    def pack_bool(self, value: bool) -> None:
        self.pack_uint(1 if value else 0)

    def pack_fopaque(self, size: int, data: bytes) -> None:
        """Pack opaque data of a fixed size that is known to both sides."""
        if len(data) != size:
            raise ValueError(f"expected {size} bytes of opaque data, got {len(data)}")

        self._chunks.append(data + b"\0" * _padding(size))

    def pack_opaque(self, data: bytes) -> None:
        """Pack variable length opaque data."""
        self.pack_uint(len(data))
        self._chunks.append(data + b"\0" * _padding(len(data)))

    def pack_string(self, value: str) -> None:
        """Pack a string as UTF-8, restoring bytes that unpack_string() escaped."""
        self.pack_opaque(value.encode(errors="surrogateescape"))

    def pack_array(self, items: Iterable[T], pack_item: Callable[[T], None]) -> None:
        """Pack a variable length array, prefixed with its number of items."""
        items = list(items)

        self.pack_uint(len(items))

        for item in items:
            pack_item(item)

    def pack_optional(self, value: Optional[T], pack_item: Callable[[T], None]) -> None:
        """Pack a presence flag followed by the value if it is present."""
        self.pack_bool(value is not None)

        if value is not None:
            pack_item(value)

    def pack_list(self, items: Iterable[T], pack_item: Callable[[T], None]) -> None:
        """Pack items as a flattened linked list terminated by a false flag."""
        for item in items:
            self.pack_bool(True)
            pack_item(item)

        self.pack_bool(False)


class Unpacker:
    """Reader of XDR values from a buffer."""

    def __init__(self, data: bytes) -> None:
        """Instantiate a reader positioned at the start of the data."""
        self._data = data
        self._position = 0

    @property
    def position(self) -> int:
        return self._position

    def remaining(self) -> int:
        """Return the number of bytes that haven't been read yet."""
        return len(self._data) - self._position

    def done(self) -> None:
        """Check that all data has been consumed."""
        if self.remaining() > 0:
            raise DecodeError(f"{self.remaining()} unexpected trailing bytes")

    def _read_exact(self, size: int) -> bytes:
        if size > self.remaining():
            raise DecodeError(
                f"unexpected end of data at offset {self._position} "
                f"(wanted {size} bytes, have {self.remaining()})"
            )

        chunk = self._data[self._position : self._position + size]
        self._position += size

        return chunk

    def unpack_uint(self) -> int:
        return struct.unpack("!I", self._read_exact(4))[0]

    def unpack_hyper(self) -> int:
        return struct.unpack("!Q", self._read_exact(8))[0]

    def unpack_bool(self) -> bool:
        value = self.unpack_uint()

        if value not in (0, 1):
            raise DecodeError(f"invalid boolean value {value}")

        return value == 1

    def unpack_fopaque(self, size: int) -> bytes:
        data = self._read_exact(size)
        self._read_exact(_padding(size))
        return data

    def unpack_opaque(self) -> bytes:
        return self.unpack_fopaque(self.unpack_uint())

    def unpack_string(self) -> str:
        """
        Unpack a string that is expected but not guaranteed to be UTF-8.

        Bytes that aren't valid UTF-8 are mapped to lone surrogates, like os.fsdecode()
        does, so pack_string() reproduces the exact bytes the server sent.
        """
        return self.unpack_opaque().decode(errors="surrogateescape")

    def unpack_array(self, unpack_item: Callable[[], T]) -> List[T]:
        """Unpack a variable length array prefixed with its number of items."""
        count = self.unpack_uint()

        # Every item takes at least four bytes
        if count * 4 > self.remaining():
            raise DecodeError(f"array of {count} items exceeds the remaining data")

        return [unpack_item() for _ in range(count)]

    def unpack_optional(self, unpack_item: Callable[[], T]) -> Optional[T]:
        """Unpack a presence flag and the value that follows it, if any."""
        if self.unpack_bool():
            return unpack_item()
        else:
            return None

    def unpack_list(self, unpack_item: Callable[[], T]) -> Iterator[T]:
        """
        Lazily unpack the items of a flattened linked list.

        Every item is preceded by a flag that is set if an item follows. A false flag
        ends the list. The sequence is bounded by the data and can only be consumed
        once, since it reads from the current position of the unpacker.
        """
        while self.unpack_bool():
            yield unpack_item()

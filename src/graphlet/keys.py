"""Fixed-width binary keys used for hash-map lookups.

One generic key type covers every tuple width in use (2 to 39 bytes); the
factories below build the concrete layouts.
"""
from __future__ import annotations

import struct
import typing as t

from .lookup3 import hashlittle

# protocol/flowtype, address, 3-tuple, 4-tuple, node/host pair, 5-tuple with
# flowtype, 5-tuple, 7-tuple
KEY_WIDTHS = (2, 16, 19, 20, 32, 36, 37, 39)


class FixedKey:
    """Immutable byte-string key hashed with lookup3 (seed 0)."""

    __slots__ = ("_data", "_hash")

    def __init__(self, data: t.Union[bytes, bytearray, memoryview], length: t.Optional[int] = None):
        data = bytes(data)
        if length is not None and len(data) != length:
            raise ValueError(f"key must be {length} bytes, got {len(data)}")
        self._data = data
        self._hash = hashlittle(data, 0)

    @property
    def data(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def __bytes__(self) -> bytes:
        return self._data

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other) -> bool:
        if not isinstance(other, FixedKey):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"FixedKey({len(self._data)}:{self._data.hex()})"


def flow_key(local_ip: bytes, remote_ip: bytes, local_port: int, remote_port: int, proto: int) -> FixedKey:
    return FixedKey(local_ip + remote_ip + struct.pack("<HHB", local_port, remote_port, proto), 37)


def host_pair_key(local_ip: bytes, remote_ip: bytes) -> FixedKey:
    return FixedKey(local_ip + remote_ip, 32)


def node_key(rank: int, value: bytes) -> FixedKey:
    # rank widened to 8 bytes, 8 bytes padding, then the raw field
    return FixedKey(struct.pack("<Q", rank) + b"\x00" * 8 + value, 32)

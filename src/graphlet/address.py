"""128-bit address helpers.

Every address in flow records and edge streams is kept as 16 raw bytes in
network order; IPv4 addresses are stored IPv4-mapped (::ffff:a.b.c.d).
"""
from __future__ import annotations

import ipaddress
import typing as t

_V4_PREFIX = b"\x00" * 10 + b"\xff\xff"

AddressLike = t.Union[str, bytes, bytearray, ipaddress.IPv4Address, ipaddress.IPv6Address]


def to_bytes16(addr: AddressLike) -> bytes:
    """Normalize text, packed 4/16-byte or ipaddress objects to 16 bytes."""
    if isinstance(addr, (bytes, bytearray)):
        if len(addr) == 4:
            return _V4_PREFIX + bytes(addr)
        if len(addr) == 16:
            return bytes(addr)
        raise ValueError(f"packed address must be 4 or 16 bytes, got {len(addr)}")
    if isinstance(addr, str):
        addr = ipaddress.ip_address(addr)
    if isinstance(addr, ipaddress.IPv4Address):
        return _V4_PREFIX + addr.packed
    return addr.packed


def is_v4_mapped(b16: bytes) -> bool:
    return b16[:12] == _V4_PREFIX


def to_text(b16: bytes) -> str:
    if is_v4_mapped(b16):
        return str(ipaddress.IPv4Address(b16[12:]))
    return str(ipaddress.IPv6Address(b16))


def netmask(prefix_len: int, ipv4: bool = True) -> bytes:
    """16-byte mask for a prefix; IPv4 prefixes cover the mapped low 32 bits."""
    if ipv4:
        if not 0 <= prefix_len <= 32:
            raise ValueError(f"invalid IPv4 prefix length {prefix_len}")
        bits = 96 + prefix_len
    else:
        if not 0 <= prefix_len <= 128:
            raise ValueError(f"invalid IPv6 prefix length {prefix_len}")
        bits = prefix_len
    value = ((1 << bits) - 1) << (128 - bits) if bits else 0
    return value.to_bytes(16, "big")


def apply_mask(b16: bytes, mask: bytes) -> bytes:
    return bytes(x & y for x, y in zip(b16, mask))


def numeric_id(b16: bytes) -> str:
    """Decimal node id: both 8-byte halves read little-endian, concatenated."""
    lo = int.from_bytes(b16[:8], "little")
    hi = int.from_bytes(b16[8:16], "little")
    return f"{lo}{hi}"

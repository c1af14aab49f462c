"""HPG v3 edge stream: record layout, rank codes and field accessors.

An edge stream is a flat file of 48-byte records. Each record holds three
16-byte fields:

    tag    low 4 bits: rank, next 16 bits: graphlet number
    left   left-hand node value
    right  right-hand node value

A field is either an address (all 16 bytes, network order, IPv4 mapped) or
a packed integer in its first 8 bytes (little-endian). Packed integers of
port and summary nodes carry several bit fields, see `Field`.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import os
import typing as t

from . import address
from .errors import FormatError, SourceError

log = logging.getLogger("graphlet.edges")

FIELD_SIZE = 16
EDGE_SIZE = 3 * FIELD_SIZE
SUPPORTED_VERSION = 3
MAX_LEADING_VERSIONS = 2

# bit layout of packed values
COLORTYPE_SHIFT = 60
PROTCODE_SHIFT = 56
FLOWTYPE_SHIFT = 48
ROLE_SHIFT = 24
HOSTNUM_SHIFT = 24
GRAPHLETNUM_SHIFT = 4

RANK_MASK = 0xF
GRAPHLETNUM_MASK = 0xFFFF
COUNT_MASK = 0xFFFFFF
FLOWTYPE_MASK = 0xFF
COLORCODE_MASK = 0xF
PORT_MASK = 0xFFFF
# keeps port, host number and the low protocol code bits
LOCAL_EPORT0_MASK = 0x0300000000FFFFFF

DETAIL_RATIO_FLAG = 0x80000000


class Rank(enum.IntEnum):
    PROT_LOCALPORTSUM = 0
    LOCALPORTSUM_REMOTEPORT = 1
    LOCALPORT_REMOTEPORTSUM = 2
    LOCALPORTSUM_REMOTEPORTSUM = 3
    REMOTEPORTSUM_REMOTEIP = 4
    LOCALIP_PROT = 5
    PROT_LOCALPORT = 6
    LOCALPORT_REMOTEPORT = 7
    REMOTEPORT_REMOTEIP = 8
    TOTALBYTES = 9
    REMOTEPORT_REMOTEIPSUM = 10
    REMOTEPORTSUM_REMOTEIPSUM = 11
    EDGE_LABEL = 14
    VERSION = 15


PSEUDO_RANKS = frozenset({Rank.EDGE_LABEL, Rank.TOTALBYTES})

# partition of the right-hand node of each real rank
PARTITION: dict[Rank, int] = {
    Rank.LOCALIP_PROT: 1,
    Rank.PROT_LOCALPORT: 2,
    Rank.PROT_LOCALPORTSUM: 2,
    Rank.LOCALPORT_REMOTEPORT: 3,
    Rank.LOCALPORTSUM_REMOTEPORT: 3,
    Rank.LOCALPORT_REMOTEPORTSUM: 3,
    Rank.LOCALPORTSUM_REMOTEPORTSUM: 3,
    Rank.REMOTEPORT_REMOTEIP: 4,
    Rank.REMOTEPORTSUM_REMOTEIP: 4,
    Rank.REMOTEPORT_REMOTEIPSUM: 4,
    Rank.REMOTEPORTSUM_REMOTEIPSUM: 4,
}

# edge labels annotate port/port and port/host edges, so they sit in either
_PARTITION_SETS: dict[Rank, frozenset] = {r: frozenset({p}) for r, p in PARTITION.items()}
_PARTITION_SETS[Rank.EDGE_LABEL] = frozenset({3, 4})

LOCAL_PORT_SUM_RANKS = frozenset({Rank.LOCALPORTSUM_REMOTEPORT, Rank.LOCALPORTSUM_REMOTEPORTSUM})
REMOTE_PORT_SUM_RANKS = frozenset({Rank.LOCALPORT_REMOTEPORTSUM, Rank.LOCALPORTSUM_REMOTEPORTSUM})
REMOTE_IP_RANKS = frozenset({Rank.REMOTEPORT_REMOTEIP, Rank.REMOTEPORTSUM_REMOTEIP})
REMOTE_IP_SUM_RANKS = frozenset({Rank.REMOTEPORT_REMOTEIPSUM, Rank.REMOTEPORTSUM_REMOTEIPSUM})


def partition_changed(rank: Rank, last_rank: Rank) -> bool:
    """False iff both ranks belong to the same partition."""
    a = _PARTITION_SETS.get(rank, frozenset())
    b = _PARTITION_SETS.get(last_rank, frozenset())
    return not (a & b)


@dataclasses.dataclass(frozen=True)
class Field:
    """One 16-byte field with accessors for each interpretation."""
    raw: bytes

    def __post_init__(self):
        if len(self.raw) != FIELD_SIZE:
            raise ValueError(f"field must be {FIELD_SIZE} bytes, got {len(self.raw)}")

    @property
    def value(self) -> int:
        return int.from_bytes(self.raw[:8], "little")

    @property
    def address(self) -> str:
        return address.to_text(self.raw)

    @property
    def numeric_id(self) -> str:
        return address.numeric_id(self.raw)

    @property
    def port(self) -> int:
        return self.value & PORT_MASK

    @property
    def connection_count(self) -> int:
        return self.value & COUNT_MASK

    @property
    def role_number(self) -> int:
        return (self.value >> ROLE_SHIFT) & COUNT_MASK

    @property
    def flow_type(self) -> int:
        return (self.value >> FLOWTYPE_SHIFT) & FLOWTYPE_MASK

    @property
    def color_code(self) -> int:
        return (self.value >> COLORTYPE_SHIFT) & COLORCODE_MASK


@dataclasses.dataclass(frozen=True)
class Edge:
    tag: Field
    left: Field
    right: Field

    @classmethod
    def from_bytes(cls, buf: bytes) -> "Edge":
        return cls(Field(buf[0:16]), Field(buf[16:32]), Field(buf[32:48]))

    @property
    def rank_code(self) -> int:
        return self.tag.value & RANK_MASK

    @property
    def rank(self) -> Rank:
        """Rank of the edge; ValueError for the undefined codes."""
        return Rank(self.rank_code)

    @property
    def graphlet_number(self) -> int:
        return (self.tag.value >> GRAPHLETNUM_SHIFT) & GRAPHLETNUM_MASK

    def pack(self) -> bytes:
        return self.tag.raw + self.left.raw + self.right.raw

    def describe(self) -> str:
        """One line, human readable, for diagnostics."""
        code = self.rank_code
        try:
            rank = Rank(code)
        except ValueError:
            return f"rank=?{code} graphlet={self.graphlet_number} left=0x{self.left.value:016x} right=0x{self.right.value:016x}"

        name = rank.name.lower()
        head = f"rank={name} graphlet={self.graphlet_number}"
        if rank == Rank.LOCALIP_PROT:
            return f"{head} localIP={self.left.address} prot={self.right.value}"
        if rank == Rank.TOTALBYTES:
            return f"{head} total={total_bytes(self)}"
        if rank == Rank.EDGE_LABEL:
            return f"{head} value={self.left.value} detail={format_edge_detail(self.right.value)}"
        if rank == Rank.VERSION:
            return f"{head} version={self.left.value}"
        left = f"left=0x{self.left.value:016x}"
        if rank in REMOTE_IP_RANKS:
            right = f"remoteIP={self.right.address}"
        elif rank in (Rank.PROT_LOCALPORTSUM, Rank.REMOTEPORT_REMOTEIPSUM, Rank.REMOTEPORTSUM_REMOTEIPSUM) or rank in REMOTE_PORT_SUM_RANKS:
            right = f"count={self.right.connection_count} role={self.right.role_number}"
        else:
            right = f"right=0x{self.right.value:016x}"
        return f"{head} {left} {right}"


def total_bytes(edge: Edge) -> int:
    """64-bit total of a totalBytes edge: high half in left, low half in right."""
    return ((edge.left.value & 0xFFFFFFFF) << 32) | (edge.right.value & 0xFFFFFFFF)


def decode_edge_detail(detail: int) -> t.Union[int, float]:
    """Packet count, or packets per flow in tenths when the top bit is set."""
    detail &= 0xFFFFFFFF
    if detail & DETAIL_RATIO_FLAG:
        return (detail & 0x7FFFFFFF) / 10.0
    return detail


def format_edge_detail(detail: int) -> str:
    value = decode_edge_detail(detail)
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


class EdgeStream:
    """Read-only sequence of edges backed by one bytes buffer.

    Safe to share between renderers; nothing here mutates after __init__.
    """

    def __init__(self, buf: bytes, source: t.Optional[str] = None):
        if len(buf) % EDGE_SIZE:
            raise FormatError(
                f"stream size {len(buf)} is not a multiple of the {EDGE_SIZE}-byte record size",
                edge_index=len(buf) // EDGE_SIZE,
                offset=(len(buf) // EDGE_SIZE) * EDGE_SIZE,
            )
        self._buf = bytes(buf)
        self.source = source

    @classmethod
    def from_bytes(cls, buf: bytes) -> "EdgeStream":
        return cls(buf)

    @classmethod
    def load(cls, path: str) -> "EdgeStream":
        if not os.path.exists(path):
            raise SourceError("graphlet file not found", path)
        try:
            with open(path, "rb") as fh:
                buf = fh.read()
        except OSError as e:
            raise SourceError(f"cannot read graphlet file ({e.strerror})", path) from e
        if not buf:
            raise SourceError("graphlet file is empty", path)
        stream = cls(buf, source=str(path))
        log.debug("loaded %d edges from %s", len(stream), path)
        return stream

    def __len__(self) -> int:
        return len(self._buf) // EDGE_SIZE

    def __getitem__(self, index: int) -> Edge:
        if not 0 <= index < len(self):
            raise IndexError(f"edge index {index} out of range")
        off = index * EDGE_SIZE
        return Edge.from_bytes(self._buf[off:off + EDGE_SIZE])

    def __iter__(self) -> t.Iterator[Edge]:
        for i in range(len(self)):
            yield self[i]

    @staticmethod
    def offset_of(index: int) -> int:
        return index * EDGE_SIZE

    def data_start(self) -> int:
        """Index of the first edge after the version marker(s).

        Raises FormatError when the marker is missing (v1/v2 streams carry
        none) or names a version other than 3.
        """
        if len(self) == 0:
            raise FormatError("empty edge stream: graphlet version marker missing", edge_index=0, offset=0)
        index = 0
        while index < len(self) and index < MAX_LEADING_VERSIONS:
            edge = self[index]
            if edge.rank_code != Rank.VERSION:
                break
            if edge.left.value != SUPPORTED_VERSION:
                raise FormatError(
                    f"unsupported graphlet format version {edge.left.value} (expected {SUPPORTED_VERSION})",
                    edge_index=index,
                    offset=self.offset_of(index),
                )
            index += 1
        if index == 0:
            raise FormatError(
                "graphlet version marker missing (pre-v3 stream?)",
                edge_index=0,
                offset=0,
            )
        return index

    @property
    def version(self) -> int:
        """Format version named by the leading marker(s); validated like data_start()."""
        return self[self.data_start() - 1].left.value

    def check_rank(self, index: int, graphlet: t.Optional[int] = None) -> Rank:
        """Rank of edge `index`; FormatError for undefined codes and stray version markers."""
        edge = self[index]
        try:
            rank = edge.rank
        except ValueError:
            raise FormatError(f"unrecognized rank code {edge.rank_code}", edge_index=index, offset=self.offset_of(index), graphlet=graphlet) from None
        if rank == Rank.VERSION:
            raise FormatError("version marker inside graphlet data", edge_index=index, offset=self.offset_of(index), graphlet=graphlet)
        return rank


# -- packing, used to produce streams (test fixtures, tooling) --------------

def pack_field(value: t.Union[int, bytes, str]) -> bytes:
    """16-byte field from an integer (low 8 bytes), packed address or address text."""
    if isinstance(value, int):
        if not 0 <= value < (1 << 64):
            raise ValueError(f"integer field out of range: {value}")
        return value.to_bytes(8, "little") + b"\x00" * 8
    return address.to_bytes16(value)


def pack_edge(rank: int, graphlet_number: int, left: t.Union[int, bytes, str], right: t.Union[int, bytes, str]) -> bytes:
    tag = ((graphlet_number & GRAPHLETNUM_MASK) << GRAPHLETNUM_SHIFT) | (rank & RANK_MASK)
    return pack_field(tag) + pack_field(left) + pack_field(right)


def port_value(port: int, protcode: int = 0, flow_type: int = 0, color: int = 0, host: int = 0) -> int:
    """Packed port node value (local ports carry a flow type, remote ports a color/host)."""
    return (
        (color << COLORTYPE_SHIFT)
        | (protcode << PROTCODE_SHIFT)
        | (flow_type << FLOWTYPE_SHIFT)
        | ((host & COUNT_MASK) << HOSTNUM_SHIFT)
        | (port & PORT_MASK)
    )


def summary_value(count: int, role: int = 0, protcode: int = 0, flow_type: int = 0, color: int = 0) -> int:
    """Packed summary node value: connection/host count plus role number."""
    return (
        (color << COLORTYPE_SHIFT)
        | (protcode << PROTCODE_SHIFT)
        | (flow_type << FLOWTYPE_SHIFT)
        | ((role & COUNT_MASK) << ROLE_SHIFT)
        | (count & COUNT_MASK)
    )


def encode_edge_detail(packets: int, flows: t.Optional[int] = None) -> int:
    """Detail field of an edge label: packets, or packets per flow in tenths."""
    if flows is None:
        return packets & 0xFFFFFFFF
    if flows == 0:
        return 0
    return ((10 * packets // flows) & 0x7FFFFFFF) | DETAIL_RATIO_FLAG

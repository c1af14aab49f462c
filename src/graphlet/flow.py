"""Flow aggregation: canonical direction and biflow merging of 5-tuple records.

Importers hand over one RawFlow per observed record (a packet, or an
exported flow); FlowAggregator decides which endpoint is local, merges
duplicates of the same 5-tuple and promotes records seen in both
directions to biflows.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import typing as t

from . import address
from .errors import CapacityError
from .keys import FixedKey, flow_key, host_pair_key

log = logging.getLogger("graphlet.flow")

CFLOW_MAGIC = 2


class FlowType(enum.IntFlag):
    OUTFLOW = 1
    INFLOW = 2
    UNIFLOW = 3
    BIFLOW = 4
    ALLFLOW = 7
    UNIBIFLOW = 8
    OKFLOW = 12
    SIMPLEFLOW = 15

    LOW_CONFIDENCE = 8


@dataclasses.dataclass
class RawFlow:
    """One imported record, still in the importer's src/dst orientation."""
    src_ip: bytes
    dst_ip: bytes
    src_port: int
    dst_port: int
    proto: int
    start_ms: int
    duration_ms: int
    packets: int
    bytes: int
    tos: int = 0
    reverse_bytes: int = 0
    reverse_packets: int = 0


@dataclasses.dataclass
class FlowRecord:
    local_ip: bytes
    remote_ip: bytes
    local_port: int
    remote_port: int
    proto: int
    start_ms: int
    duration_ms: int
    packets: int
    bytes: int
    direction: FlowType
    tos: int = 0
    magic: int = CFLOW_MAGIC

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.duration_ms

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "local_ip": address.to_text(self.local_ip),
            "remote_ip": address.to_text(self.remote_ip),
            "local_port": self.local_port,
            "remote_port": self.remote_port,
            "proto": self.proto,
            "start_ms": self.start_ms,
            "duration_ms": self.duration_ms,
            "packets": self.packets,
            "bytes": self.bytes,
            "direction": int(self.direction),
            "tos": self.tos,
            "magic": self.magic,
        }

    @classmethod
    def from_dict(cls, d: dict[str, t.Any]) -> "FlowRecord":
        return cls(
            local_ip=address.to_bytes16(d["local_ip"]),
            remote_ip=address.to_bytes16(d["remote_ip"]),
            local_port=int(d["local_port"]),
            remote_port=int(d["remote_port"]),
            proto=int(d["proto"]),
            start_ms=int(d["start_ms"]),
            duration_ms=int(d["duration_ms"]),
            packets=int(d["packets"]),
            bytes=int(d["bytes"]),
            direction=FlowType(int(d["direction"])),
            tos=int(d.get("tos", 0)),
            magic=int(d.get("magic", CFLOW_MAGIC)),
        )


class FlowAggregator:
    """Merge RawFlows into FlowRecords keyed by the local/remote 5-tuple.

    Storage is bounded by `max_flows`; exceeding it raises CapacityError
    instead of dropping records.
    """

    def __init__(self, local_net: bytes, netmask: bytes, max_flows: int = 1_000_000):
        self._netmask = netmask
        self._local_net = address.apply_mask(local_net, netmask)
        self.max_flows = max_flows
        self._flows: dict[FixedKey, FlowRecord] = {}

    def classify(self, src_ip: bytes) -> FlowType:
        if address.apply_mask(src_ip, self._netmask) == self._local_net:
            return FlowType.OUTFLOW
        return FlowType.INFLOW

    def aggregate(self, raw: RawFlow) -> FlowRecord:
        flowtype = self.classify(raw.src_ip)
        if flowtype == FlowType.OUTFLOW:
            local_ip, local_port, remote_ip, remote_port = raw.src_ip, raw.src_port, raw.dst_ip, raw.dst_port
        else:
            local_ip, local_port, remote_ip, remote_port = raw.dst_ip, raw.dst_port, raw.src_ip, raw.src_port
        has_reverse = raw.reverse_bytes > 0 or raw.reverse_packets > 0

        key = flow_key(local_ip, remote_ip, local_port, remote_port, raw.proto)
        rec = self._flows.get(key)
        if rec is None:
            if len(self._flows) >= self.max_flows:
                raise CapacityError("too many distinct flows", self.max_flows)
            rec = FlowRecord(
                local_ip=local_ip,
                remote_ip=remote_ip,
                local_port=local_port,
                remote_port=remote_port,
                proto=raw.proto,
                start_ms=raw.start_ms,
                duration_ms=raw.duration_ms,
                packets=raw.packets + raw.reverse_packets,
                bytes=raw.bytes + raw.reverse_bytes,
                direction=FlowType.BIFLOW if has_reverse else flowtype,
                tos=raw.tos,
            )
            self._flows[key] = rec
            return rec

        rec.packets += raw.packets + raw.reverse_packets
        rec.bytes += raw.bytes + raw.reverse_bytes
        rec.tos |= raw.tos

        # later record: stretch to its end; otherwise move the start back
        if raw.start_ms > rec.start_ms:
            rec.duration_ms = raw.start_ms + raw.duration_ms - rec.start_ms
        else:
            rec.duration_ms = rec.end_ms - raw.start_ms
            rec.start_ms = raw.start_ms

        if rec.direction != FlowType.BIFLOW and (has_reverse or flowtype != rec.direction):
            log.debug("promote %s:%d <-> %s:%d/%d to biflow", address.to_text(local_ip), local_port, address.to_text(remote_ip), remote_port, raw.proto)
            rec.direction = FlowType.BIFLOW
        return rec

    def __len__(self) -> int:
        return len(self._flows)

    def __iter__(self) -> t.Iterator[FlowRecord]:
        return iter(self._flows.values())

    def records(self) -> list[FlowRecord]:
        """Flow list ordered by local host, remote host and start time."""
        return sorted(self._flows.values(), key=lambda r: (r.local_ip, r.remote_ip, r.start_ms))


def qualify_uniflows(records: t.Iterable[FlowRecord]) -> int:
    """Flag uniflows of host pairs that also exchanged a biflow as low-confidence.

    Such uniflows most likely belong to a conversation whose other half was
    missed. Records are changed in place; returns how many were flagged.
    """
    records = list(records)
    with_biflow: set[FixedKey] = set()
    for r in records:
        if r.direction & FlowType.BIFLOW:
            with_biflow.add(host_pair_key(r.local_ip, r.remote_ip))

    changed = 0
    for r in records:
        if r.direction in (FlowType.INFLOW, FlowType.OUTFLOW) and host_pair_key(r.local_ip, r.remote_ip) in with_biflow:
            r.direction = r.direction | FlowType.LOW_CONFIDENCE
            changed += 1
    log.info("qualified %d of %d flows as low-confidence uniflows", changed, len(records))
    return changed

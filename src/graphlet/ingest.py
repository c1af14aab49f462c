"""PCAP and PCAPNG streaming ingestion into the flow aggregator.

`iter_packets` yields timestamp and raw packet bytes without loading the
whole capture; `import_pcap` turns every packet into a single-packet
RawFlow and merges it into a FlowAggregator. Flow lists are persisted as
JSON.
"""
from __future__ import annotations

import json
import logging
import os
import typing as t

import dpkt
from pcapng import FileScanner

from .errors import SourceError
from .flow import FlowAggregator, FlowRecord
from .packet import parse_raw

log = logging.getLogger("graphlet.ingest")

_PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"


def _check_source(path: str):
    if not os.path.exists(path):
        raise SourceError("capture file not found", path)
    if os.path.getsize(path) == 0:
        raise SourceError("capture file is empty", path)


def _iter_pcap(path):
    with open(path, "rb") as fh:
        pcap = dpkt.pcap.Reader(fh)
        for ts, buf in pcap:
            yield float(ts), bytes(buf)


def _iter_pcapng(path):
    with open(path, "rb") as fh:
        for block in FileScanner(fh):
            if not hasattr(block, "packet_data"):
                continue
            # simple packet blocks carry no timestamp
            ts = getattr(block, "timestamp", None)
            yield float(ts or 0.0), bytes(block.packet_data)


def iter_packets(path: str) -> t.Iterator[tuple[float, bytes]]:
    """Yield (ts, raw_bytes) for packets in a pcap or pcapng file.

    The container format is recognized from the file magic, so misnamed
    files still work.
    """
    _check_source(path)
    with open(path, "rb") as fh:
        magic = fh.read(4)

    if magic == _PCAPNG_MAGIC:
        yield from _iter_pcapng(path)
        return
    try:
        yield from _iter_pcap(path)
    except ValueError as e:
        # dpkt rejects unknown magic with ValueError
        raise SourceError(f"not a pcap/pcapng file ({e})", path) from e


def import_pcap(path: str, aggregator: FlowAggregator) -> tuple[int, int]:
    """Feed every IP packet of a capture into `aggregator`.

    Returns (packets read, packets parsed). CapacityError from the
    aggregator propagates unchanged.
    """
    pkt_count = 0
    parsed_count = 0
    for ts, raw in iter_packets(path):
        pkt_count += 1
        flow = parse_raw(ts, raw)
        if flow is None:
            continue
        parsed_count += 1
        aggregator.aggregate(flow)
    log.info("Read %d packets, parsed %d, flows %d", pkt_count, parsed_count, len(aggregator))
    return pkt_count, parsed_count


def write_flows(records: t.Iterable[FlowRecord], path: str):
    data = [r.to_dict() for r in records]
    try:
        out_dir = os.path.dirname(path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(json.dumps(data, sort_keys=True, indent=2))
    except OSError as e:
        raise SourceError(f"cannot write flow list ({e.strerror})", path) from e


def read_flows(path: str) -> list[FlowRecord]:
    _check_source(path)
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return [FlowRecord.from_dict(d) for d in data]

"""Packet parsing helpers: convert raw frame bytes into single-packet RawFlows."""
from __future__ import annotations

import typing as t
import dpkt

from . import address
from .flow import RawFlow


def parse_raw(ts: float, raw: bytes) -> t.Optional[RawFlow]:
    """Parse raw packet bytes and return a RawFlow or None if unsupported.

    Supports Ethernet->IPv4/IPv6->TCP/UDP; other IP protocols get ports 0.
    Returns None for non-IP or malformed packets.
    """
    try:
        eth = dpkt.ethernet.Ethernet(raw)
    except Exception:
        return None

    if not isinstance(eth.data, (dpkt.ip.IP, dpkt.ip6.IP6)):
        return None

    ip = eth.data
    if isinstance(ip, dpkt.ip.IP):
        proto = ip.p
        tos = ip.tos
        length = ip.len
    else:
        # dpkt moves past extension headers; `p` is the upper layer protocol
        proto = getattr(ip, "p", getattr(ip, "nxt", 0))
        tos = getattr(ip, "fc", 0)
        length = ip.plen + 40

    src_port = dst_port = 0
    if proto in (dpkt.ip.IP_PROTO_TCP, dpkt.ip.IP_PROTO_UDP) and isinstance(ip.data, (dpkt.tcp.TCP, dpkt.udp.UDP)):
        src_port = ip.data.sport
        dst_port = ip.data.dport

    try:
        src_ip = address.to_bytes16(ip.src)
        dst_ip = address.to_bytes16(ip.dst)
    except ValueError:
        return None

    return RawFlow(
        src_ip=src_ip,
        dst_ip=dst_ip,
        src_port=src_port,
        dst_port=dst_port,
        proto=proto,
        start_ms=int(ts * 1000),
        duration_ms=0,
        packets=1,
        bytes=length,
        tos=tos,
    )

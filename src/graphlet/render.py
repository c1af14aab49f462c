"""Render one graphlet of an edge stream as a Graphviz DOT graph.

Nodes are laid out in five columns (localIP, protocol, localPort,
remotePort, remoteIP). For every partition the renderer writes the edge
statements as they come, then closes the partition with one same-rank
group listing its right-hand nodes and one annotation per node.
"""
from __future__ import annotations

import logging
import os
import typing as t

from .edges import (
    LOCAL_EPORT0_MASK,
    LOCAL_PORT_SUM_RANKS,
    PARTITION,
    PSEUDO_RANKS,
    REMOTE_IP_RANKS,
    REMOTE_IP_SUM_RANKS,
    REMOTE_PORT_SUM_RANKS,
    EdgeStream,
    Field,
    Rank,
    format_edge_detail,
    partition_changed,
    total_bytes,
)
from .errors import FormatError, SourceError
from .flow import FlowType
from .scanner import Graphlet

log = logging.getLogger("graphlet.render")

PROTOCOL_NAMES = {
    1: "ICMP",
    2: "IGMP",
    6: "TCP",
    17: "UDP",
    41: "IPv6",
    46: "RSVP",
    58: "ICMPv6",
    94: "IPIP",
}

HEADER = (
    "rankdir=LR;\n"
    'node[shape=plaintext,fontsize=16,fontname="Arial"];\n'
    'localIP[label="localIP"];protocol[label="protocol"];localPort[label="localPort"];'
    'remotePort[label="remotePort"];remoteIP[label="remoteIP"];\n'
    '"localIP"--"protocol"--"localPort";'
    '"localPort"--"remotePort"[label="B(pkts)"];'
    '"remotePort"--"remoteIP"[label="fl.(p./fl.)"];\n'
    "node[shape=ellipse];\n"
)

# column header of the right-hand nodes of each partition
_COLUMN = {1: "protocol", 2: "localPort", 3: "remotePort", 4: "remoteIP"}

# partition 3: direction of the local port's flows
FLOW_ATTRS = {
    FlowType.BIFLOW: "[style=bold,dir=both,color=black]",
    FlowType.INFLOW: "[dir=back, color=red]",
    FlowType.OUTFLOW: "[dir=forward, color=red]",
    FlowType.INFLOW | FlowType.LOW_CONFIDENCE: "[dir=back, color=green]",
    FlowType.OUTFLOW | FlowType.LOW_CONFIDENCE: "[dir=forward, color=green]",
}

# partition 4: color code of the remote port
COLOR_ATTRS = {1: "[color=red]", 2: "[color=green]"}
DEFAULT_COLOR_ATTR = "[color=black]"

_SUMMARY_STYLE = "shape=box, style=bold"


def protocol_name(proto: int) -> str:
    return PROTOCOL_NAMES.get(proto, f"prot{proto}")


class DotRenderer:
    """Graphlet to DOT text.

    The subgraph counter is owned by the instance, so one renderer keeps
    subgraph names unique across every graphlet it renders while separate
    renderers never interfere.
    """

    def __init__(self, show_packet_counts: bool = True, show_role_numbers: bool = False):
        self.show_packet_counts = show_packet_counts
        self.show_role_numbers = show_role_numbers
        self.subgraph_count = 0

    def render_graphlet(self, stream: EdgeStream, graphlet: Graphlet) -> str:
        return self.render(stream, graphlet.start_index)

    def render(self, stream: EdgeStream, start_index: int) -> str:
        if not 0 <= start_index < len(stream):
            raise FormatError(f"graphlet start {start_index} outside of stream ({len(stream)} edges)", edge_index=start_index, offset=stream.offset_of(start_index))
        # also rejects streams without a version 3 marker
        first = stream.data_start()
        if start_index < first:
            raise FormatError(f"graphlet start {start_index} is a version marker (data starts at {first})", edge_index=start_index, offset=stream.offset_of(start_index))
        out: list[str] = []
        _GraphletWriter(self, stream, out).write(start_index)
        return "".join(out)

    def _group(self, column: str, node_ids: t.Iterable[str]) -> str:
        members = "".join(f"{nid};" for nid in node_ids)
        line = f'subgraph {self.subgraph_count} {{rank=same;"{column}";{members}}}\n'
        self.subgraph_count += 1
        return line

    def _role(self, role: int) -> str:
        return f" r{role}" if self.show_role_numbers else ""


class _GraphletWriter:
    """State of one render call: current partition and its distinct nodes."""

    def __init__(self, renderer: DotRenderer, stream: EdgeStream, out: list[str]):
        self.r = renderer
        self.stream = stream
        self.out = out
        self.partition: t.Optional[int] = None
        self.last_rank: t.Optional[Rank] = None
        # (rank, node id) -> right-hand field, in first-seen order
        self.nodes: dict[tuple[Rank, str], Field] = {}
        self.pending_semicolon = False

    def write(self, start: int):
        stream = self.stream
        rank = stream.check_rank(start)
        if rank != Rank.LOCALIP_PROT:
            raise FormatError(
                f"graphlet starts with {rank.name.lower()}, expected localip_prot",
                edge_index=start,
                offset=stream.offset_of(start),
            )
        first = stream[start]
        tag = first.graphlet_number
        local_id = f"k1_{first.left.numeric_id}"

        self.out.append(f"graph G {{ /* graphlet {tag} */\n")
        self.out.append(HEADER)
        self.out.append(self.r._group("localIP", [f'"{local_id}"']))
        self.out.append(f'{local_id}[label="{first.left.address}"];\n')

        for index in range(start, len(stream)):
            edge = stream[index]
            # the next graphlet's edges are not checked here
            if edge.rank_code not in PSEUDO_RANKS and edge.graphlet_number != tag:
                break
            rank = stream.check_rank(index)
            if rank == Rank.TOTALBYTES:
                log.debug("graphlet %d total bytes %d", tag, total_bytes(edge))
                continue
            if rank == Rank.EDGE_LABEL:
                self._edge_label(edge.left.value, edge.right.value)
                continue
            if self.last_rank is not None and partition_changed(rank, self.last_rank):
                if PARTITION[rank] < self.partition:
                    raise FormatError(
                        f"partition {PARTITION[rank]} after partition {self.partition}",
                        edge_index=index,
                        offset=stream.offset_of(index),
                    )
                self.close_partition()
            self._edge(index, rank, edge)

        self.close_partition()
        self.out.append("}\n")

    def close_partition(self):
        """Finish the current partition: group line, then node annotations."""
        if self.pending_semicolon:
            self.out.append(";\n")
            self.pending_semicolon = False
        if self.partition is None:
            return
        p = self.partition
        self.out.append(self.r._group(_COLUMN[p], (f"k{p + 1}_{nid}" for _, nid in self.nodes)))
        for (rank, nid), field in self.nodes.items():
            self.out.append(f"k{p + 1}_{nid}{self._annotation(rank, field)};\n")
        self.nodes = {}
        self.partition = None
        self.last_rank = None

    def _edge(self, index: int, rank: Rank, edge):
        p = PARTITION[rank]
        left, right = edge.left, edge.right

        if p == 1:
            left_id, right_id = left.numeric_id, str(right.value)
        elif p == 2:
            left_id = str(left.value)
            right_id = str(right.value if rank == Rank.PROT_LOCALPORTSUM else right.value & LOCAL_EPORT0_MASK)
        elif p == 3:
            left_id = str(left.value if rank in LOCAL_PORT_SUM_RANKS else left.value & LOCAL_EPORT0_MASK)
            right_id = str(right.value)
        else:
            left_id, right_id = str(left.value), right.numeric_id

        if self.pending_semicolon:
            self.out.append(";\n")
        line = f"k{p}_{left_id}--k{p + 1}_{right_id}"
        if p == 3:
            flow_type = left.flow_type
            if flow_type:
                attrs = FLOW_ATTRS.get(flow_type)
                if attrs is None:
                    log.warning("edge %d: unknown flow type %d", index, flow_type)
                else:
                    line += attrs
        elif p == 4:
            line += COLOR_ATTRS.get(left.color_code, DEFAULT_COLOR_ATTR)
        self.out.append(line)
        self.pending_semicolon = True

        self.nodes.setdefault((rank, right_id), right)
        self.partition = p
        self.last_rank = rank

    def _edge_label(self, value: int, detail: int):
        text = str(value)
        if self.r.show_packet_counts and detail & 0xFFFFFFFF:
            text += f"({format_edge_detail(detail)})"
        self.out.append(f'[label="{text}"]')

    def _summary(self, kind: str, field: Field, hide_empty: bool) -> str:
        count = field.connection_count
        role = field.role_number
        if hide_empty and count == 0:
            return f'[label="", {_SUMMARY_STYLE}]'
        return f'[label="{kind}={count}{self.r._role(role)}", rolnum="{role}" , {_SUMMARY_STYLE}]'

    def _annotation(self, rank: Rank, field: Field) -> str:
        if rank == Rank.LOCALIP_PROT:
            return f'[label="{protocol_name(field.value)}"]'
        if rank == Rank.PROT_LOCALPORTSUM or rank in REMOTE_PORT_SUM_RANKS:
            return self._summary("#con", field, hide_empty=True)
        if rank in REMOTE_IP_SUM_RANKS:
            return self._summary("#hosts", field, hide_empty=False)
        if rank in REMOTE_IP_RANKS:
            ip = field.address
            return f'[label="{ip}", ip="{ip}" ]'
        # plain local or remote port
        return f'[label="{field.port}"]'


def write_dot(text: str, path: str):
    try:
        out_dir = os.path.dirname(path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(text)
    except OSError as e:
        raise SourceError(f"cannot write DOT output ({e.strerror})", path) from e
